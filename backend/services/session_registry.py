"""
Session registry: one TurnController per live game.

Every command and callback event for a session runs under that session's
lock, so two events for the same game never interleave. Different sessions
run independently. A session is removed when its game completes or the host
ends it.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from agents.narrator import build_announcement
from agents.turn_controller import TurnController
from models.errors import GameExists, NotHost, SessionNotFound, StalePrompt
from models.game import Correlation, FormSubmission, GameSession, PlayerAction
from services.notifier import GuardedNotifier, LoggingNotifier, Notifier

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionRegistry:

    def __init__(self, notifier: Optional[Notifier] = None, **controller_options: Any):
        self.notifier = GuardedNotifier(notifier or LoggingNotifier())
        # Forwarded to every TurnController (timeouts, re-mutiny policy)
        self.controller_options = controller_options
        self._controllers: Dict[str, TurnController] = {}

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def create(
        self, host_id: str, host_name: str, session_id: Optional[str] = None
    ) -> TurnController:
        """Open a new lobby with the host as its first player."""
        if session_id and session_id in self._controllers:
            raise GameExists()
        session = (
            GameSession(id=session_id, host_id=host_id)
            if session_id else GameSession(host_id=host_id)
        )
        controller = TurnController(
            session,
            self.notifier,
            on_finished=self._on_finished,
            **self.controller_options,
        )
        self._controllers[session.id] = controller
        async with controller.lock:
            await controller.add_player(host_id, host_name)
        logger.info(f"[{session.id}] Session created by host {host_id} ({host_name})")
        return controller

    def get(self, session_id: str) -> TurnController:
        controller = self._controllers.get(session_id)
        if controller is None:
            raise SessionNotFound()
        return controller

    def find(self, session_id: str) -> Optional[TurnController]:
        return self._controllers.get(session_id)

    def session_ids(self) -> List[str]:
        return list(self._controllers)

    async def end(self, session_id: str, requester_id: Optional[str] = None) -> None:
        """Stop a session's timers and forget it. Only the host may end a game."""
        controller = self.get(session_id)
        async with controller.lock:
            if requester_id is not None and not controller.session.is_host(requester_id):
                raise NotHost("Only the host can end the game!")
            controller.stop()
            self._controllers.pop(session_id, None)
            logger.info(f"[{session_id}] Session ended")
            await self.notifier.announce(
                session_id, build_announcement("game_ended", controller.session, {})
            )

    def shutdown(self) -> None:
        for controller in self._controllers.values():
            controller.stop()
        self._controllers.clear()

    def _on_finished(self, session_id: str) -> None:
        controller = self._controllers.pop(session_id, None)
        if controller:
            controller.stop()
            logger.info(f"[{session_id}] Session completed and removed")

    # ── Commands & callback events ─────────────────────────────────────────────

    async def run(
        self, session_id: str, command: Callable[[TurnController], Awaitable[T]]
    ) -> T:
        """Run one command against a session under its lock."""
        controller = self.get(session_id)
        async with controller.lock:
            return await command(controller)

    async def dispatch_action(self, action: PlayerAction) -> bool:
        controller = await self._route(action.correlation, action.user_id)
        if controller is None:
            return False
        async with controller.lock:
            return await controller.handle_action(action)

    async def dispatch_form(self, submission: FormSubmission) -> bool:
        controller = await self._route(submission.correlation, submission.user_id)
        if controller is None:
            return False
        async with controller.lock:
            return await controller.handle_form(submission)

    async def _route(self, token: str, user_id: str) -> Optional[TurnController]:
        """Find the controller a correlation token belongs to, telling the user when none does."""
        try:
            correlation = Correlation.decode(token)
        except StalePrompt as exc:
            logger.info(f"Undecodable prompt token from {user_id}: {token!r}")
            await self.notifier.direct(user_id, exc.message)
            return None
        controller = self.find(correlation.session_id)
        if controller is None:
            logger.info(f"[{correlation.session_id}] Event from {user_id} for a session that is gone")
            await self.notifier.direct(user_id, SessionNotFound.default_message)
        return controller


_session_registry: Optional[SessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    """Lazy singleton bound to the WebSocket hub.
    Use as a FastAPI dependency: Depends(get_session_registry)
    """
    global _session_registry
    if _session_registry is None:
        from routers.ws_router import manager
        _session_registry = SessionRegistry(manager)
    return _session_registry
