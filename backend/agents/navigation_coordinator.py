"""
Navigation: two-stage propose/commit protocol.

  1. Captain and Lieutenant each privately receive two of the four headings
     and lock in one of them.
  2. Once both are locked, the Navigator is shown exactly those two
     proposals and commits one. The ship moves by the chosen vector.

Every seat is write-once: the first submission locks it and later ones are
rejected with the recorded choice left untouched.
"""
import logging
import random
from enum import Enum
from typing import Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

from models.errors import AlreadyLocked, InvalidChoice, ProposalsPending, WrongPhase
from models.game import ChoiceOption, Direction, GameSession
from models.phases import Phase

logger = logging.getLogger(__name__)

T = TypeVar("T")

OFFER_SIZE = 2


class ChoiceState(str, Enum):
    UNSET = "unset"      # seat not yet asked
    PENDING = "pending"  # asked, waiting for an answer
    LOCKED = "locked"    # answered; immutable


class Choice(BaseModel, Generic[T]):
    state: ChoiceState = ChoiceState.UNSET
    value: Optional[T] = None

    @property
    def locked(self) -> bool:
        return self.state == ChoiceState.LOCKED

    def open(self) -> None:
        if self.state == ChoiceState.UNSET:
            self.state = ChoiceState.PENDING

    def lock(self, value: T) -> T:
        if self.state == ChoiceState.LOCKED:
            raise AlreadyLocked()
        self.value = value
        self.state = ChoiceState.LOCKED
        return value


class Proposer(str, Enum):
    CAPTAIN = "captain"
    LIEUTENANT = "lieutenant"


class NavigationRound(BaseModel):
    instance: int
    offers: Dict[Proposer, List[Direction]] = Field(default_factory=dict)
    captain: Choice[Direction] = Field(default_factory=Choice[Direction])
    lieutenant: Choice[Direction] = Field(default_factory=Choice[Direction])
    navigator: Choice[Proposer] = Field(default_factory=Choice[Proposer])

    def proposal(self, proposer: Proposer) -> Choice[Direction]:
        return self.captain if proposer == Proposer.CAPTAIN else self.lieutenant

    def proposals_locked(self) -> bool:
        return self.captain.locked and self.lieutenant.locked


class NavigationCoordinator:

    def draw_offer(self) -> List[Direction]:
        return random.sample(list(Direction), OFFER_SIZE)

    def open_round(self, instance: int) -> NavigationRound:
        nav = NavigationRound(
            instance=instance,
            offers={proposer: self.draw_offer() for proposer in Proposer},
        )
        nav.captain.open()
        nav.lieutenant.open()
        return nav

    def propose(
        self, nav: NavigationRound, proposer: Proposer, direction: Direction
    ) -> bool:
        """Lock a proposer's heading. Returns True once both proposals are in."""
        choice = nav.proposal(proposer)
        if choice.locked:
            raise AlreadyLocked()
        if direction not in nav.offers.get(proposer, []):
            raise InvalidChoice(
                "Choose one of the two headings you were dealt: "
                + ", ".join(d.label for d in nav.offers.get(proposer, []))
            )
        choice.lock(direction)
        if nav.proposals_locked():
            nav.navigator.open()
        return nav.proposals_locked()

    def options_for_navigator(self, nav: NavigationRound) -> List[ChoiceOption]:
        """The Navigator's two options; identical proposals give two equivalent options."""
        if not nav.proposals_locked():
            raise ProposalsPending()
        return [
            ChoiceOption(
                value=proposer.value,
                label=f"{nav.proposal(proposer).value.label} (from {proposer.value.title()})",
            )
            for proposer in Proposer
        ]

    def commit(self, nav: NavigationRound, session: GameSession, source: str) -> Direction:
        """
        Navigator picks one of the two proposals by its source seat and the
        ship moves. Returns the direction travelled.
        """
        if session.phase != Phase.NAVIGATION:
            raise WrongPhase()
        if not nav.proposals_locked():
            raise ProposalsPending()
        if nav.navigator.locked:
            raise AlreadyLocked()
        try:
            picked = Proposer(source)
        except ValueError:
            raise InvalidChoice("Pick the Captain's or the Lieutenant's heading.")

        nav.navigator.lock(picked)
        direction = nav.proposal(picked).value
        position = session.move_ship(direction)
        logger.info(
            "[%s] Navigator chose %s (from %s) → ship at (%d, %d)",
            session.id, direction.value, picked.value, position.x, position.y,
        )
        return direction


# Module-level singleton
navigation_coordinator = NavigationCoordinator()
