"""
WebSocket Hub: the messaging-platform side of the game.

URL: /ws/{session_id}?userId={user_id}

Connection flow:
  1. Accept connection → validate session + player exist
  2. Send private "connected" message with the public game state
  3. Message loop (_handle_message dispatcher)
  4. On disconnect: forget the socket

Server → client message types:
  announce        — public line for the whole table
  private         — visible only to one player, inside the game
  direct          — private message outside the game (role cards)
  prompt_choice   — buttons; answered with an "action" carrying the correlation
  prompt_form     — structured input; answered with a "form_submission"
  error           — {message, code}; rule violations and malformed input
  pong            — heartbeat reply

Client → server message types handled here:
  ping             — keep-alive heartbeat → responds with "pong"
  action           — {correlation, payload: {value}}
  form_submission  — {correlation, values: {...}}
"""
import json
import logging
from typing import Dict, List

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query

from models.game import ChoiceOption, Correlation, FormField, FormSubmission, PlayerAction
from services.notifier import Notifier

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


class ConnectionManager(Notifier):
    """
    Tracks active WebSocket connections per game and delivers notifications.
    Safe for asyncio single-threaded event loop (no extra locking needed).
    """

    def __init__(self):
        # {session_id: {user_id: WebSocket}}
        self._games: Dict[str, Dict[str, WebSocket]] = {}

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def connect(self, session_id: str, user_id: str, ws: WebSocket) -> None:
        await ws.accept()
        self._games.setdefault(session_id, {})[user_id] = ws
        logger.debug(
            f"[{session_id}] {user_id} connected ({self.count(session_id)} total)"
        )

    def disconnect(self, session_id: str, user_id: str) -> None:
        game_conns = self._games.get(session_id, {})
        game_conns.pop(user_id, None)
        if not game_conns:
            self._games.pop(session_id, None)

    def count(self, session_id: str) -> int:
        return len(self._games.get(session_id, {}))

    # ── Sending ────────────────────────────────────────────────────────────────

    async def send_to(self, session_id: str, user_id: str, message: Dict) -> None:
        """Send a private message to a single player."""
        ws = self._games.get(session_id, {}).get(user_id)
        if ws:
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning(f"[{session_id}] send_to {user_id} failed: {exc}")
                self.disconnect(session_id, user_id)

    async def broadcast(self, session_id: str, message: Dict) -> None:
        """Broadcast a message to all connected players in a game."""
        for uid, ws in list(self._games.get(session_id, {}).items()):
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning(f"[{session_id}] broadcast to {uid} failed: {exc}")
                self.disconnect(session_id, uid)

    async def send_to_user(self, user_id: str, message: Dict) -> None:
        """Send to every socket the user holds, whatever game it belongs to."""
        for session_id in [sid for sid, conns in self._games.items() if user_id in conns]:
            await self.send_to(session_id, user_id, message)

    # ── Notifier ───────────────────────────────────────────────────────────────

    async def announce(self, session_id: str, text: str) -> None:
        await self.broadcast(session_id, {"type": "announce", "text": text})

    async def notify_privately(self, session_id: str, user_id: str, text: str) -> None:
        await self.send_to(session_id, user_id, {"type": "private", "text": text})

    async def direct(self, user_id: str, text: str) -> None:
        await self.send_to_user(user_id, {"type": "direct", "text": text})

    async def prompt_choice(
        self, user_id: str, options: List[ChoiceOption], correlation: str, text: str = ""
    ) -> None:
        await self.send_to(Correlation.decode(correlation).session_id, user_id, {
            "type": "prompt_choice",
            "correlation": correlation,
            "text": text,
            "options": [o.model_dump() for o in options],
        })

    async def prompt_form(
        self, user_id: str, fields: List[FormField], correlation: str, text: str = ""
    ) -> None:
        await self.send_to(Correlation.decode(correlation).session_id, user_id, {
            "type": "prompt_form",
            "correlation": correlation,
            "text": text,
            "fields": [f.model_dump() for f in fields],
        })

    async def notify_error(self, session_id: str, user_id: str, code: str, text: str) -> None:
        await self.send_to(session_id, user_id, {"type": "error", "message": text, "code": code})


# Module-level singleton
manager = ConnectionManager()


# ── WebSocket endpoint ─────────────────────────────────────────────────────────

@router.websocket("/ws/{session_id}")
async def websocket_endpoint(
    ws: WebSocket,
    session_id: str,
    userId: str = Query(..., description="Player id used to join the game"),
):
    from services.session_registry import get_session_registry
    registry = get_session_registry()

    # ── Validate session and player ────────────────────────────────────────────
    controller = registry.find(session_id)
    if controller is None:
        await ws.close(code=4404, reason="Game not found")
        return
    if controller.session.get_player(userId) is None:
        await ws.close(code=4403, reason="Player not found in this game")
        return

    # ── Accept and register ────────────────────────────────────────────────────
    await manager.connect(session_id, userId, ws)
    await manager.send_to(session_id, userId, {
        "type": "connected",
        "userId": userId,
        "gameState": controller.session.to_public(),
    })

    # ── Message loop ───────────────────────────────────────────────────────────
    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await manager.send_to(session_id, userId, {
                    "type": "error",
                    "message": "Invalid JSON",
                    "code": "PARSE_ERROR",
                })
                continue

            msg_type = data.get("type", "") if isinstance(data, dict) else ""
            # Frontend sends { type, data: { ... } }; unwrap inner payload for handlers
            inner_data = data.get("data") if isinstance(data, dict) and isinstance(data.get("data"), dict) else {}
            await _handle_message(session_id, userId, msg_type, inner_data)

    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(session_id, userId)


# ── Message dispatcher ─────────────────────────────────────────────────────────

async def _handle_message(
    session_id: str,
    user_id: str,
    msg_type: str,
    data: Dict,
) -> None:
    try:
        await _dispatch_message(session_id, user_id, msg_type, data)
    except WebSocketDisconnect:
        raise
    except Exception:
        logger.exception("[%s] Unhandled error in _handle_message (type=%s)", session_id, msg_type)
        await manager.send_to(session_id, user_id, {
            "type": "error", "message": "Internal server error", "code": "SERVER_ERROR"
        })


async def _dispatch_message(
    session_id: str,
    user_id: str,
    msg_type: str,
    data: Dict,
) -> None:
    from services.session_registry import get_session_registry
    registry = get_session_registry()

    if msg_type == "ping":
        await manager.send_to(session_id, user_id, {"type": "pong"})

    elif msg_type == "action":
        payload = data.get("payload") if isinstance(data.get("payload"), dict) else {}
        await registry.dispatch_action(PlayerAction(
            correlation=str(data.get("correlation", "")),
            user_id=user_id,
            payload=payload,
        ))

    elif msg_type == "form_submission":
        values = data.get("values") if isinstance(data.get("values"), dict) else {}
        await registry.dispatch_form(FormSubmission(
            correlation=str(data.get("correlation", "")),
            user_id=user_id,
            values=values,
        ))

    else:
        await manager.send_to(session_id, user_id, {
            "type": "error",
            "message": f"Unknown message type: {msg_type!r}",
            "code": "UNKNOWN_TYPE",
        })
