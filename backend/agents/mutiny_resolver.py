"""
Mutiny resolution: secret gun-weighted vote against the Captain.

Every alive crew member except the Captain may commit between 0 and their
current gun count. Non-responders count as 0. The mutiny succeeds when the
guns committed reach a strict majority of the crew's total guns:

    threshold = floor(total_crew_guns / 2) + 1

Guns are committed, not spent: gun counts are unchanged by a vote.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, Field

from models.errors import (
    AlreadyVoted,
    CaptainCannotVote,
    InvalidGunCount,
    NotEligible,
    WrongPhase,
)
from models.game import GameSession
from models.phases import Phase, Transition

logger = logging.getLogger(__name__)


class MutinyRound(BaseModel):
    instance: int
    captain: Optional[str]
    eligible: Set[str] = Field(default_factory=set)
    votes: Dict[str, int] = Field(default_factory=dict)
    deadline: datetime
    resolved: bool = False

    def all_in(self) -> bool:
        return self.eligible.issubset(self.votes)


class MutinyOutcome(BaseModel):
    succeeded: bool
    total_guns_used: int
    total_crew_guns: int
    threshold: int
    votes: Dict[str, int]
    non_voters: List[str]
    previous_captain: Optional[str]
    new_captain: Optional[str]


class MutinyResolver:

    @staticmethod
    def threshold(total_crew_guns: int) -> int:
        return total_crew_guns // 2 + 1

    def open_round(
        self, session: GameSession, instance: int, timeout_seconds: float
    ) -> MutinyRound:
        eligible = {p.id for p in session.get_alive_players() if p.id != session.captain}
        return MutinyRound(
            instance=instance,
            captain=session.captain,
            eligible=eligible,
            deadline=datetime.now(timezone.utc) + timedelta(seconds=timeout_seconds),
        )

    def submit(
        self, mutiny: MutinyRound, session: GameSession, voter_id: str, guns
    ) -> bool:
        """
        Record one secret vote. Returns True once every eligible voter is in.
        Rejections leave the round untouched.
        """
        if mutiny.resolved:
            raise WrongPhase("This mutiny has already been resolved.")
        if voter_id == session.captain:
            raise CaptainCannotVote()
        if voter_id not in mutiny.eligible:
            raise NotEligible()
        if voter_id in mutiny.votes:
            raise AlreadyVoted()

        player = session.require_player(voter_id)
        try:
            count = int(guns)
        except (TypeError, ValueError):
            raise InvalidGunCount()
        if isinstance(guns, float) and guns != count:
            raise InvalidGunCount()
        if count < 0 or count > player.guns:
            raise InvalidGunCount(
                f"You can commit between 0 and {player.guns} guns."
            )

        mutiny.votes[voter_id] = count
        return mutiny.all_in()

    def tally(self, mutiny: MutinyRound, session: GameSession) -> MutinyOutcome:
        """Count the round without touching the session."""
        total_used = sum(mutiny.votes.values())
        total_crew = sum(
            session.players[pid].guns for pid in mutiny.eligible if pid in session.players
        )
        threshold = self.threshold(total_crew)
        non_voters = [pid for pid in session.players if pid in mutiny.eligible and pid not in mutiny.votes]
        return MutinyOutcome(
            succeeded=total_used >= threshold,
            total_guns_used=total_used,
            total_crew_guns=total_crew,
            threshold=threshold,
            votes=dict(mutiny.votes),
            non_voters=non_voters,
            previous_captain=mutiny.captain,
            new_captain=mutiny.captain,
        )

    def resolve(self, mutiny: MutinyRound, session: GameSession) -> MutinyOutcome:
        """
        Settle the mutiny and move the session on.

        Success: the Captain is deposed, a new one is elected by guns, the
        navigation team is disbanded and the phase returns to
        NAVIGATION_SELECTION. Failure: the Captain stays and the ship moves
        on to NAVIGATION. A round can only be resolved once.
        """
        if mutiny.resolved:
            raise WrongPhase("This mutiny has already been resolved.")
        if session.phase != Phase.MUTINY:
            raise WrongPhase(f"Cannot resolve a mutiny during {session.phase.value}.")

        mutiny.resolved = True
        outcome = self.tally(mutiny, session)

        if outcome.succeeded:
            outcome.new_captain = session.elect_captain_by_guns()
            session.clear_navigation_team()
            session.apply_transition(Transition.MUTINY_SUCCEEDED)
        else:
            session.apply_transition(Transition.MUTINY_FAILED)

        logger.info(
            "[%s] Mutiny %s: %d/%d guns (threshold %d), captain %s → %s",
            session.id,
            "succeeded" if outcome.succeeded else "failed",
            outcome.total_guns_used, outcome.total_crew_guns, outcome.threshold,
            outcome.previous_captain, outcome.new_captain,
        )
        return outcome


# Module-level singleton
mutiny_resolver = MutinyResolver()
