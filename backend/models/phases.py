"""
Phase state machine.

Canonical flow:
  LOBBY ─BEGIN→ NIGHT ─NEW_TURN→ NAVIGATION_SELECTION ─TEAM_CONFIRMED→ MUTINY
  MUTINY ─MUTINY_FAILED→ NAVIGATION ─SHIP_MOVED→ VOTING ─NEW_TURN→ NAVIGATION_SELECTION

Special edges:
  MUTINY ─MUTINY_SUCCEEDED→ NAVIGATION_SELECTION   (new captain re-picks a team)
  NAVIGATION_SELECTION ─TEAM_CONFIRMED_SKIP_MUTINY→ NAVIGATION   (re-selection after a mutiny)
  VOTING ─NEW_TURN_TEAM_KEPT→ MUTINY   (team persists, selection skipped)
  MUTINY ─TEAM_DISBANDED→ NAVIGATION_SELECTION   (kept team no longer valid)
  any in-progress phase ─GAME_WON→ COMPLETED   (terminal)
"""
from enum import Enum
from typing import Dict, FrozenSet, Tuple

from models.errors import IllegalTransition


class Phase(str, Enum):
    LOBBY = "lobby"
    NIGHT = "night"
    NAVIGATION_SELECTION = "navigation_selection"
    MUTINY = "mutiny"
    NAVIGATION = "navigation"
    VOTING = "voting"
    COMPLETED = "completed"


class Transition(str, Enum):
    BEGIN = "begin"
    NEW_TURN = "new_turn"
    NEW_TURN_TEAM_KEPT = "new_turn_team_kept"
    TEAM_CONFIRMED = "team_confirmed"
    TEAM_CONFIRMED_SKIP_MUTINY = "team_confirmed_skip_mutiny"
    TEAM_DISBANDED = "team_disbanded"
    MUTINY_FAILED = "mutiny_failed"
    MUTINY_SUCCEEDED = "mutiny_succeeded"
    SHIP_MOVED = "ship_moved"
    GAME_WON = "game_won"


IN_PROGRESS_PHASES: FrozenSet[Phase] = frozenset({
    Phase.NIGHT,
    Phase.NAVIGATION_SELECTION,
    Phase.MUTINY,
    Phase.NAVIGATION,
    Phase.VOTING,
})

# transition → (allowed source phases, target phase)
TRANSITIONS: Dict[Transition, Tuple[FrozenSet[Phase], Phase]] = {
    Transition.BEGIN: (frozenset({Phase.LOBBY}), Phase.NIGHT),
    Transition.NEW_TURN: (frozenset({Phase.NIGHT, Phase.VOTING}), Phase.NAVIGATION_SELECTION),
    Transition.NEW_TURN_TEAM_KEPT: (frozenset({Phase.VOTING}), Phase.MUTINY),
    Transition.TEAM_CONFIRMED: (frozenset({Phase.NAVIGATION_SELECTION}), Phase.MUTINY),
    Transition.TEAM_CONFIRMED_SKIP_MUTINY: (frozenset({Phase.NAVIGATION_SELECTION}), Phase.NAVIGATION),
    Transition.TEAM_DISBANDED: (frozenset({Phase.MUTINY}), Phase.NAVIGATION_SELECTION),
    Transition.MUTINY_FAILED: (frozenset({Phase.MUTINY}), Phase.NAVIGATION),
    Transition.MUTINY_SUCCEEDED: (frozenset({Phase.MUTINY}), Phase.NAVIGATION_SELECTION),
    Transition.SHIP_MOVED: (frozenset({Phase.NAVIGATION}), Phase.VOTING),
    Transition.GAME_WON: (IN_PROGRESS_PHASES, Phase.COMPLETED),
}

# Transitions that start a new turn cycle (turn counter + captain rotation).
NEW_TURN_TRANSITIONS: FrozenSet[Transition] = frozenset({
    Transition.NEW_TURN,
    Transition.NEW_TURN_TEAM_KEPT,
})

# Plain forward successor used by next_phase(). Phases missing here
# (NIGHT, VOTING) are "past the end of the cycle" and start a new turn.
FORWARD_TRANSITIONS: Dict[Phase, Transition] = {
    Phase.NAVIGATION_SELECTION: Transition.TEAM_CONFIRMED,
    Phase.MUTINY: Transition.MUTINY_FAILED,
    Phase.NAVIGATION: Transition.SHIP_MOVED,
}


def resolve_transition(current: Phase, transition: Transition) -> Phase:
    """Return the target phase, or raise IllegalTransition if `current` is not a valid source."""
    sources, target = TRANSITIONS[transition]
    if current not in sources:
        raise IllegalTransition(
            f"Cannot apply {transition.value} from phase {current.value}"
        )
    return target


def forward_transition(current: Phase) -> Transition:
    return FORWARD_TRANSITIONS.get(current, Transition.NEW_TURN)
