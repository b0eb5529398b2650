"""
Game rule errors.

Every rejection the engine can produce is a GameError carrying a stable
machine-readable `code` (sent to clients the same way the WS hub reports
"WRONG_PHASE" style errors) and a human-readable message for the actor.

Three categories:
  ValidationError   — wrong actor or bad input for the action
  StateConflict     — the action collides with state that already exists
  PreconditionError — the action is legal but its prerequisites are missing

None of them mutate state; retrying against the current phase is always safe.
"""
from typing import Optional


class GameError(Exception):
    code: str = "GAME_ERROR"
    default_message: str = "That action is not allowed right now."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(GameError):
    code = "VALIDATION_ERROR"


class StateConflict(GameError):
    code = "STATE_CONFLICT"


class PreconditionError(GameError):
    code = "PRECONDITION_FAILED"


# ── Validation ────────────────────────────────────────────────────────────────

class NotHost(ValidationError):
    code = "NOT_HOST"
    default_message = "Only the host can do that!"


class NotCaptain(ValidationError):
    code = "NOT_CAPTAIN"
    default_message = "Only the Captain can do that!"


class NotNavigationProposer(ValidationError):
    code = "NOT_PROPOSER"
    default_message = "Only the Captain and the Lieutenant propose a heading!"


class NotNavigator(ValidationError):
    code = "NOT_NAVIGATOR"
    default_message = "Only the Navigator can choose the final heading!"


class CaptainCannotVote(ValidationError):
    code = "CAPTAIN_CANNOT_VOTE"
    default_message = "The Captain cannot vote in a mutiny!"


class NotEligible(ValidationError):
    code = "NOT_ELIGIBLE"
    default_message = "You are not eligible to vote in this mutiny."


class InvalidGunCount(ValidationError):
    code = "INVALID_GUN_COUNT"
    default_message = "That is not a valid number of guns."


class InvalidChoice(ValidationError):
    code = "INVALID_CHOICE"
    default_message = "That option was not offered to you."


class InvalidCrewmate(ValidationError):
    code = "INVALID_CREWMATE"
    default_message = "That crew member cannot take this post."


class SameCrewmate(ValidationError):
    code = "SAME_CREWMATE"
    default_message = "The Lieutenant and the Navigator must be different crew members."


class UnknownPlayer(ValidationError):
    code = "UNKNOWN_PLAYER"
    default_message = "That player is not in this game."


# ── State conflicts ───────────────────────────────────────────────────────────

class AlreadyJoined(StateConflict):
    code = "ALREADY_JOINED"
    default_message = "You are already in the game!"


class GameAlreadyStarted(StateConflict):
    code = "GAME_ALREADY_STARTED"
    default_message = "Game has already started!"


class GameExists(StateConflict):
    code = "GAME_EXISTS"
    default_message = "A game is already in progress in this channel!"


class AlreadyLocked(StateConflict):
    code = "ALREADY_LOCKED"
    default_message = "Your choice is already locked in."


class AlreadyVoted(StateConflict):
    code = "ALREADY_VOTED"
    default_message = "You have already voted in this mutiny."


class AlreadyEliminated(StateConflict):
    code = "ALREADY_ELIMINATED"
    default_message = "That player has already been eliminated."


class StalePrompt(StateConflict):
    code = "STALE_PROMPT"
    default_message = "That prompt has expired."


class WrongPhase(StateConflict):
    code = "WRONG_PHASE"
    default_message = "That action is not available in this phase."


class GameOver(StateConflict):
    code = "GAME_OVER"
    default_message = "The game is over."


class IllegalTransition(StateConflict):
    code = "ILLEGAL_TRANSITION"
    default_message = "The game cannot move to that phase from here."


# ── Preconditions ─────────────────────────────────────────────────────────────

class NotEnoughPlayers(PreconditionError):
    code = "NOT_ENOUGH_PLAYERS"
    default_message = "Not enough players to start."


class CrewTooSmall(PreconditionError):
    code = "CREW_TOO_SMALL"
    default_message = "The ship needs at least three living crew members to sail."


class IncompleteSelection(PreconditionError):
    code = "INCOMPLETE_SELECTION"
    default_message = "Please select both Lieutenant and Navigator first!"


class ProposalsPending(PreconditionError):
    code = "PROPOSALS_PENDING"
    default_message = "The Captain and Lieutenant have not both chosen yet."


class SessionNotFound(PreconditionError):
    code = "SESSION_NOT_FOUND"
    default_message = "No game found in this channel. Create one first!"
