from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Tuple
from enum import Enum
from datetime import datetime, timezone
import random
import uuid

from config import settings
from models.errors import (
    AlreadyEliminated,
    AlreadyJoined,
    GameAlreadyStarted,
    InvalidCrewmate,
    NotEnoughPlayers,
    SameCrewmate,
    StalePrompt,
    UnknownPlayer,
)
from models.phases import (
    NEW_TURN_TRANSITIONS,
    Phase,
    Transition,
    forward_transition,
    resolve_transition,
)


def _utcnow() -> datetime:
    """Timezone-aware UTC datetime (replaces deprecated datetime.utcnow)."""
    return datetime.now(timezone.utc)


class Role(str, Enum):
    SAILOR = "sailor"
    PIRATE = "pirate"
    CULT_LEADER = "cult_leader"
    CULTIST = "cultist"


class GameStatus(str, Enum):
    WAITING = "waiting"          # lobby: players may join
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Winner(str, Enum):
    SAILORS = "sailors"
    PIRATES = "pirates"
    CULT = "cult"


class Direction(str, Enum):
    NORTH = "north"
    SOUTH = "south"
    EAST = "east"
    WEST = "west"

    @property
    def vector(self) -> Tuple[int, int]:
        return DIRECTION_VECTORS[self]

    @property
    def label(self) -> str:
        return DIRECTION_LABELS[self]


DIRECTION_VECTORS: Dict[Direction, Tuple[int, int]] = {
    Direction.NORTH: (0, 1),
    Direction.SOUTH: (0, -1),
    Direction.EAST: (1, 0),
    Direction.WEST: (-1, 0),
}

DIRECTION_LABELS: Dict[Direction, str] = {
    Direction.NORTH: "North ⬆️",
    Direction.SOUTH: "South ⬇️",
    Direction.EAST: "East ➡️",
    Direction.WEST: "West ⬅️",
}


# Role counts keyed by player count; 9+ players use the last row.
# Everyone not covered here is a Sailor.
ROLE_DISTRIBUTION: Dict[int, Dict[Role, int]] = {
    5: {Role.PIRATE: 2, Role.CULT_LEADER: 1, Role.CULTIST: 0},
    6: {Role.PIRATE: 2, Role.CULT_LEADER: 1, Role.CULTIST: 0},
    7: {Role.PIRATE: 2, Role.CULT_LEADER: 1, Role.CULTIST: 1},
    8: {Role.PIRATE: 3, Role.CULT_LEADER: 1, Role.CULTIST: 1},
    9: {Role.PIRATE: 3, Role.CULT_LEADER: 1, Role.CULTIST: 2},
}

# Captain, Lieutenant and Navigator are three distinct living players.
MIN_CREW_TO_SAIL = 3


def minimum_players() -> int:
    """Smallest table that can start; never below the smallest role table row."""
    return max(settings.min_players, min(ROLE_DISTRIBUTION))

# Win zones
BLUEWATER_BAY_X = 10
BLUEWATER_BAY_Y = 5
CRIMSON_COVE_Y = -5
KRAKEN_Y = 10


class PlayerState(BaseModel):
    id: str
    name: str
    role: Optional[Role] = None
    alive: bool = True
    guns: int = Field(default=3, ge=0)
    character_card: Optional[str] = None  # reserved for character abilities
    joined_at: datetime = Field(default_factory=_utcnow)

    def assign_role(self, role: Role) -> None:
        if self.role is not None:
            raise ValueError(f"Player {self.id} already has role {self.role.value}")
        self.role = role

    def to_public(self) -> Dict[str, Any]:
        """Safe representation: omits role (hidden during game)."""
        return {
            "id": self.id,
            "name": self.name,
            "alive": self.alive,
            "guns": self.guns,
        }


class Position(BaseModel):
    x: int = 0
    y: int = 0

    def as_tuple(self) -> Tuple[int, int]:
        return (self.x, self.y)


class WinResult(BaseModel):
    winner: Optional[Winner] = None
    reason: Optional[str] = None


class GameSession(BaseModel):
    """
    The long-lived state aggregate for one game.

    Owns players (join order preserved by dict insertion order), the command
    posts, the ship and the phase. Mutation goes through the methods below so
    the invariants hold:
      - a non-null captain is always an alive player
      - players are append-only while WAITING, frozen afterwards
      - status only moves forward: WAITING → IN_PROGRESS → COMPLETED
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8].upper())
    host_id: str
    players: Dict[str, PlayerState] = Field(default_factory=dict)
    status: GameStatus = GameStatus.WAITING
    turn: int = 0
    phase: Phase = Phase.LOBBY
    captain: Optional[str] = None
    lieutenant: Optional[str] = None
    navigator: Optional[str] = None
    ship_position: Position = Field(default_factory=Position)
    cult_leader: Optional[str] = None
    winner: Optional[Winner] = None
    # Set when a mutiny elected the captain this cycle; suppresses the
    # rotation at the start of the next turn.
    captain_elected_this_cycle: bool = False
    created_at: datetime = Field(default_factory=_utcnow)

    # ── Queries ───────────────────────────────────────────────────────────────

    def get_player(self, player_id: str) -> Optional[PlayerState]:
        return self.players.get(player_id)

    def require_player(self, player_id: str) -> PlayerState:
        player = self.players.get(player_id)
        if player is None:
            raise UnknownPlayer()
        return player

    def get_all_players(self) -> List[PlayerState]:
        return list(self.players.values())

    def get_alive_players(self) -> List[PlayerState]:
        return [p for p in self.players.values() if p.alive]

    def player_count(self) -> int:
        return len(self.players)

    def is_host(self, player_id: str) -> bool:
        return self.host_id == player_id

    def display_name(self, player_id: Optional[str]) -> str:
        player = self.players.get(player_id) if player_id else None
        return player.name if player else (player_id or "nobody")

    # ── Lobby ─────────────────────────────────────────────────────────────────

    def add_player(self, player_id: str, name: str) -> int:
        """Join the lobby. Returns the new player count."""
        if player_id in self.players:
            raise AlreadyJoined()
        if self.status != GameStatus.WAITING:
            raise GameAlreadyStarted()
        self.players[player_id] = PlayerState(
            id=player_id, name=name, guns=settings.starting_guns
        )
        return len(self.players)

    def can_start(self) -> bool:
        return len(self.players) >= minimum_players() and self.status == GameStatus.WAITING

    def start(self, assigner=None) -> None:
        """Lock the lobby, assign hidden roles and pick the first captain."""
        if self.status != GameStatus.WAITING:
            raise GameAlreadyStarted()
        if not self.can_start():
            raise NotEnoughPlayers(
                f"Need at least {minimum_players()} players to start. "
                f"Currently have {len(self.players)} players."
            )
        if assigner is None:
            from agents.role_assigner import role_assigner as assigner

        # Roles first: the lobby stays open if dealing fails.
        assigner.assign_roles(self)
        self.apply_transition(Transition.BEGIN)
        self.status = GameStatus.IN_PROGRESS
        self.assign_initial_captain()

    # ── Command posts ─────────────────────────────────────────────────────────

    def assign_initial_captain(self) -> Optional[str]:
        alive = self.get_alive_players()
        self.captain = random.choice(alive).id if alive else None
        return self.captain

    def rotate_captain(self) -> Optional[str]:
        """Hand command to the next alive player after the captain, in join order."""
        order = list(self.players)
        if self.captain in self.players:
            start = order.index(self.captain)
            candidates = order[start + 1:] + order[:start + 1]
        else:
            candidates = order
        self.captain = next(
            (pid for pid in candidates if self.players[pid].alive), None
        )
        return self.captain

    def elect_captain_by_guns(self) -> Optional[str]:
        """
        Post-mutiny election: the eligible crew member holding the most guns
        takes command. Ties are broken uniformly at random.
        The previous captain is not eligible; with nobody eligible they stay.
        """
        previous = self.captain
        eligible = [p for p in self.get_alive_players() if p.id != previous]
        if not eligible:
            return self.captain
        most = max(p.guns for p in eligible)
        leaders = [p.id for p in eligible if p.guns == most]
        self.captain = random.choice(leaders)
        self.captain_elected_this_cycle = True
        return self.captain

    def set_navigation_team(self, lieutenant_id: str, navigator_id: str) -> None:
        for pid in (lieutenant_id, navigator_id):
            player = self.require_player(pid)
            if not player.alive or pid == self.captain:
                raise InvalidCrewmate(
                    f"{player.name} cannot serve on the navigation team."
                )
        if lieutenant_id == navigator_id:
            raise SameCrewmate()
        self.lieutenant = lieutenant_id
        self.navigator = navigator_id

    def clear_navigation_team(self) -> None:
        self.lieutenant = None
        self.navigator = None

    def has_navigation_team(self) -> bool:
        return self.lieutenant is not None and self.navigator is not None

    def navigation_team_is_valid(self) -> bool:
        if not self.has_navigation_team():
            return False
        members = (self.lieutenant, self.navigator)
        if self.lieutenant == self.navigator or self.captain in members:
            return False
        return all(
            pid in self.players and self.players[pid].alive for pid in members
        )

    # ── Elimination ───────────────────────────────────────────────────────────

    def eliminate_player(self, player_id: str) -> None:
        player = self.require_player(player_id)
        if not player.alive:
            raise AlreadyEliminated()
        player.alive = False
        if self.captain == player_id:
            self.rotate_captain()

    # ── Ship & win condition ──────────────────────────────────────────────────

    def move_ship(self, direction: Direction) -> Position:
        dx, dy = direction.vector
        self.ship_position.x += dx
        self.ship_position.y += dy
        return self.ship_position

    def check_win_condition(self) -> WinResult:
        x, y = self.ship_position.x, self.ship_position.y
        if x >= BLUEWATER_BAY_X and y >= BLUEWATER_BAY_Y:
            return WinResult(winner=Winner.SAILORS, reason="The ship reached Bluewater Bay!")
        if x >= BLUEWATER_BAY_X and y <= CRIMSON_COVE_Y:
            return WinResult(winner=Winner.PIRATES, reason="The ship reached Crimson Cove!")
        if y >= KRAKEN_Y:
            return WinResult(winner=Winner.CULT, reason="The ship was fed to the Kraken!")
        return WinResult()

    def finish(self, result: WinResult) -> None:
        self.apply_transition(Transition.GAME_WON)
        self.status = GameStatus.COMPLETED
        self.winner = result.winner

    # ── Phases ────────────────────────────────────────────────────────────────

    def apply_transition(self, transition: Transition) -> Phase:
        target = resolve_transition(self.phase, transition)
        if transition in NEW_TURN_TRANSITIONS:
            self.turn += 1
            if self.captain_elected_this_cycle:
                self.captain_elected_this_cycle = False
            else:
                self.rotate_captain()
        self.phase = target
        return target

    def next_phase(self) -> Phase:
        """Plain forward step through the turn cycle."""
        return self.apply_transition(forward_transition(self.phase))

    def to_public(self) -> Dict[str, Any]:
        return {
            "game_id": self.id,
            "host_id": self.host_id,
            "status": self.status.value,
            "phase": self.phase.value,
            "turn": self.turn,
            "captain": self.captain,
            "lieutenant": self.lieutenant,
            "navigator": self.navigator,
            "ship_position": self.ship_position.model_dump(),
            "winner": self.winner.value if self.winner else None,
            "players": [p.to_public() for p in self.players.values()],
            "player_count": len(self.players),
        }


# ── Prompts & callback events ─────────────────────────────────────────────────

class Prompt(str, Enum):
    """What a correlation token is answering."""
    SELECT_LIEUTENANT = "select_lieutenant"
    SELECT_NAVIGATOR = "select_navigator"
    CONFIRM_TEAM = "confirm_team"
    MUTINY_VOTE = "mutiny_vote"
    NAV_PROPOSAL = "nav_proposal"
    NAV_COMMIT = "nav_commit"
    END_DISCUSSION = "end_discussion"


class Correlation(BaseModel):
    """
    Routing token attached to every prompt: "{session_id}|{prompt}|{instance}".
    The session id routes the callback to its controller; the instance pins it
    to one phase instance so answers to an expired prompt are rejected.
    """

    session_id: str
    prompt: Prompt
    instance: int

    def encode(self) -> str:
        return f"{self.session_id}|{self.prompt.value}|{self.instance}"

    @classmethod
    def decode(cls, token: str) -> "Correlation":
        try:
            session_id, prompt, instance = token.rsplit("|", 2)
            return cls(session_id=session_id, prompt=Prompt(prompt), instance=int(instance))
        except ValueError:
            raise StalePrompt(f"Unrecognised prompt token: {token!r}")


class ChoiceOption(BaseModel):
    value: str
    label: str


class FormField(BaseModel):
    name: str
    label: str
    kind: str = "integer"
    min_value: Optional[int] = None
    max_value: Optional[int] = None


class PlayerAction(BaseModel):
    correlation: str
    user_id: str
    payload: Dict[str, Any] = {}


class FormSubmission(BaseModel):
    correlation: str
    user_id: str
    values: Dict[str, Any] = {}


# ── WebSocket message shapes ──────────────────────────────────────────────────

class WSMessage(BaseModel):
    type: str
    data: Dict[str, Any] = {}


# ── HTTP request/response models ──────────────────────────────────────────────

class CreateGameRequest(BaseModel):
    host_id: str
    host_name: str = "Host"
    game_id: Optional[str] = None  # e.g. the chat channel id; generated when omitted


class CreateGameResponse(BaseModel):
    game_id: str
    host_id: str
    player_count: int


class JoinGameRequest(BaseModel):
    player_id: str
    player_name: str = "Player"


class JoinGameResponse(BaseModel):
    game_id: str
    player_id: str
    player_count: int


class BeginGameRequest(BaseModel):
    host_id: str


class EliminateRequest(BaseModel):
    host_id: str
    target_id: str
