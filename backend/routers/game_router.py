"""
Game HTTP endpoints.

Routes:
  POST   /api/games                      — Create game + register host as first player
  POST   /api/games/{game_id}/join       — Player joins the lobby
  POST   /api/games/{game_id}/begin      — Host starts game (roles dealt, first turn)
  GET    /api/games/{game_id}            — Public game state + status board (roles hidden)
  POST   /api/games/{game_id}/eliminate  — Host eliminates a player during discussion
  DELETE /api/games/{game_id}            — Host ends the game

Rule violations map to HTTP errors:
  ValidationError → 403, StateConflict → 409, PreconditionError → 400,
  SessionNotFound → 404
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from models.errors import (
    GameError,
    SessionNotFound,
    StateConflict,
    ValidationError,
)
from models.game import (
    BeginGameRequest,
    CreateGameRequest, CreateGameResponse,
    EliminateRequest,
    JoinGameRequest, JoinGameResponse,
)
from services.session_registry import SessionRegistry, get_session_registry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["games"])


def _http_error(exc: GameError) -> HTTPException:
    if isinstance(exc, SessionNotFound):
        status_code = 404
    elif isinstance(exc, ValidationError):
        status_code = 403
    elif isinstance(exc, StateConflict):
        status_code = 409
    else:
        # PreconditionError
        status_code = 400
    logger.info("Rejected with %d: %s (%s)", status_code, exc.message, exc.code)
    return HTTPException(status_code=status_code, detail=exc.message)


@router.post("/games", response_model=CreateGameResponse, status_code=201)
async def create_game(
    body: CreateGameRequest,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Create a new game and register the host as the first player."""
    try:
        controller = await registry.create(body.host_id, body.host_name, body.game_id)
    except GameError as exc:
        raise _http_error(exc)
    return CreateGameResponse(
        game_id=controller.session_id,
        host_id=body.host_id,
        player_count=controller.session.player_count(),
    )


@router.post("/games/{game_id}/join", response_model=JoinGameResponse, status_code=200)
async def join_game(
    game_id: str,
    body: JoinGameRequest,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Add a player to the lobby. Rejected if the game has already started."""
    try:
        count = await registry.run(
            game_id, lambda c: c.add_player(body.player_id, body.player_name)
        )
    except GameError as exc:
        raise _http_error(exc)
    return JoinGameResponse(game_id=game_id, player_id=body.player_id, player_count=count)


@router.post("/games/{game_id}/begin", status_code=200)
async def begin_game(
    game_id: str,
    body: BeginGameRequest,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """
    Host starts the game.
    - Deals hidden roles and sends private role cards.
    - Picks the first Captain and opens Navigation Selection.
    Requires at least 5 players to have joined.
    """
    try:
        controller = registry.get(game_id)
        await registry.run(game_id, lambda c: c.begin(body.host_id))
    except GameError as exc:
        raise _http_error(exc)
    session = controller.session
    return {
        "status": "started",
        "game_id": game_id,
        "phase": session.phase.value,
        "turn": session.turn,
        "captain": session.captain,
    }


@router.get("/games/{game_id}")
async def get_game(
    game_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """
    Public game state.
    Player roles are NOT included; they are delivered privately via WebSocket.
    """
    try:
        controller = registry.get(game_id)
    except GameError as exc:
        raise _http_error(exc)
    return {
        **controller.session.to_public(),
        "status_text": controller.status_text(),
    }


@router.post("/games/{game_id}/eliminate", status_code=200)
async def eliminate_player(
    game_id: str,
    body: EliminateRequest,
    registry: SessionRegistry = Depends(get_session_registry),
):
    try:
        controller = registry.get(game_id)
        await registry.run(game_id, lambda c: c.eliminate(body.host_id, body.target_id))
    except GameError as exc:
        raise _http_error(exc)
    return {
        "status": "eliminated",
        "game_id": game_id,
        "player_id": body.target_id,
        "captain": controller.session.captain,
    }


@router.delete("/games/{game_id}", status_code=200)
async def end_game(
    game_id: str,
    host_id: str = Query(..., description="Must match the game's host_id"),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Host ends the game; pending timers are cancelled."""
    try:
        await registry.end(game_id, host_id)
    except GameError as exc:
        raise _http_error(exc)
    return {"status": "ended", "game_id": game_id}
