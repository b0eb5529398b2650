"""
Role Assignment: random hidden-role dealing.

Responsibilities:
- Pick role counts for the table size (pirates, cult leader, cultists; the rest sail)
- Shuffle the crew uniformly and hand out roles in table order
- Record the Cult Leader on the session

Called once by GameSession.start() when the host begins the game.
"""
import logging
import random
from typing import Dict, List

from models.game import Role, GameSession, PlayerState, ROLE_DISTRIBUTION, minimum_players

logger = logging.getLogger(__name__)


class RoleAssigner:
    """
    Assigns hidden roles to every player exactly once.

    ROLE_DISTRIBUTION is keyed by player count; tables of 9 or more share the
    largest row. Everyone left over after the special roles is a Sailor.
    """

    # Order in which roles are dealt off the shuffled crew.
    DEAL_ORDER = (Role.CULT_LEADER, Role.PIRATE, Role.CULTIST)

    def role_counts(self, player_count: int) -> Dict[Role, int]:
        """Return {role: count} for a table of `player_count` players, sailors included."""
        if player_count < minimum_players():
            raise ValueError(
                f"Need at least {minimum_players()} players to assign roles; got {player_count}."
            )
        row = ROLE_DISTRIBUTION[min(player_count, max(ROLE_DISTRIBUTION))]
        counts = dict(row)
        counts[Role.SAILOR] = player_count - sum(row.values())
        return counts

    def deal(self, players: List[PlayerState]) -> List[PlayerState]:
        """Shuffle `players` (Fisher–Yates) and assign roles. Returns the shuffled list."""
        counts = self.role_counts(len(players))
        crew = list(players)
        random.shuffle(crew)

        roles: List[Role] = []
        for role in self.DEAL_ORDER:
            roles.extend([role] * counts[role])
        roles.extend([Role.SAILOR] * counts[Role.SAILOR])

        for player, role in zip(crew, roles):
            player.assign_role(role)
        return crew

    def assign_roles(self, session: GameSession) -> Dict[str, Role]:
        """
        Assign roles for every player in the session and record the Cult Leader.

        Returns {player_id: role}.
        Raises ValueError below the minimum player count.
        """
        crew = self.deal(session.get_all_players())
        session.cult_leader = next(p.id for p in crew if p.role == Role.CULT_LEADER)

        assignments = {p.id: p.role for p in session.get_all_players()}
        logger.info(
            "[%s] Roles assigned to %d players: %s",
            session.id, len(assignments),
            {r.value: c for r, c in self.role_counts(len(assignments)).items()},
        )
        return assignments


# Module-level singleton
role_assigner = RoleAssigner()
