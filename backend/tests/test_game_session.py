"""Tests for the GameSession aggregate and the phase machine."""

from collections import Counter

import pydantic
import pytest

from models.errors import (
    AlreadyEliminated,
    AlreadyJoined,
    GameAlreadyStarted,
    IllegalTransition,
    InvalidCrewmate,
    NotEnoughPlayers,
    SameCrewmate,
)
from config import Settings, settings
from models.game import Direction, GameSession, GameStatus, Position, Winner, minimum_players
from models.phases import Phase, Transition, forward_transition, resolve_transition
from conftest import make_lobby


class TestLobby:

    def test_add_player_returns_count(self):
        session = GameSession(id="C1", host_id="U1")
        assert session.add_player("U1", "Ahab") == 1
        assert session.add_player("U2", "Ishmael") == 2

    def test_new_player_defaults(self):
        session = make_lobby(1)
        player = session.players["U1"]
        assert player.guns == 3
        assert player.alive is True
        assert player.role is None

    def test_duplicate_join_rejected(self):
        """The second join fails and the count is unchanged."""
        session = make_lobby(3)
        with pytest.raises(AlreadyJoined):
            session.add_player("U2", "Again")
        assert session.player_count() == 3

    def test_join_after_start_rejected(self, started_session):
        with pytest.raises(GameAlreadyStarted):
            started_session.add_player("U99", "Latecomer")
        assert started_session.player_count() == 5

    def test_can_start_threshold(self):
        assert make_lobby(4).can_start() is False
        assert make_lobby(5).can_start() is True

    def test_cannot_start_twice(self, started_session):
        assert started_session.can_start() is False
        with pytest.raises(GameAlreadyStarted):
            started_session.start()

    def test_start_below_minimum(self):
        session = make_lobby(4)
        with pytest.raises(NotEnoughPlayers):
            session.start()
        assert session.status == GameStatus.WAITING
        assert session.phase == Phase.LOBBY

    def test_minimum_never_below_role_table(self, monkeypatch):
        monkeypatch.setattr(settings, "min_players", 4)
        assert minimum_players() == 5
        session = make_lobby(4)
        assert session.can_start() is False
        with pytest.raises(NotEnoughPlayers):
            session.start()
        assert session.status == GameStatus.WAITING
        assert all(p.role is None for p in session.get_all_players())

    def test_min_players_setting_rejects_small_tables(self):
        with pytest.raises(pydantic.ValidationError):
            Settings(min_players=4)
        assert Settings(min_players=7).min_players == 7

    def test_failed_deal_leaves_lobby_open(self):
        class BrokenAssigner:
            def assign_roles(self, session):
                raise ValueError("no table for this crew")

        session = make_lobby(5)
        with pytest.raises(ValueError):
            session.start(assigner=BrokenAssigner())
        assert session.status == GameStatus.WAITING
        assert session.phase == Phase.LOBBY
        assert session.captain is None

    def test_start(self, started_session):
        """Start locks the lobby, deals roles and picks a captain."""
        assert started_session.status == GameStatus.IN_PROGRESS
        assert started_session.phase == Phase.NIGHT
        assert started_session.captain in started_session.players
        assert started_session.cult_leader is not None
        assert all(p.role for p in started_session.get_all_players())


class TestCaptaincy:

    def test_rotate_wraps_in_join_order(self, started_session):
        started_session.captain = "U4"
        assert started_session.rotate_captain() == "U5"
        assert started_session.rotate_captain() == "U1"

    def test_rotate_skips_dead(self, started_session):
        started_session.captain = "U2"
        started_session.players["U3"].alive = False
        started_session.players["U4"].alive = False
        assert started_session.rotate_captain() == "U5"

    def test_eliminating_captain_rotates(self, started_session):
        started_session.captain = "U5"
        started_session.eliminate_player("U5")
        assert started_session.players["U5"].alive is False
        assert started_session.captain == "U1"

    def test_eliminating_crew_keeps_captain(self, started_session):
        started_session.captain = "U1"
        started_session.eliminate_player("U3")
        assert started_session.captain == "U1"

    def test_eliminate_twice(self, started_session):
        started_session.eliminate_player("U3")
        with pytest.raises(AlreadyEliminated):
            started_session.eliminate_player("U3")

    def test_election_picks_most_guns(self, started_session):
        started_session.captain = "U1"
        started_session.players["U4"].guns = 5
        assert started_session.elect_captain_by_guns() == "U4"
        assert started_session.captain_elected_this_cycle is True

    def test_election_excludes_previous_captain(self, started_session):
        started_session.captain = "U1"
        started_session.players["U1"].guns = 9
        assert started_session.elect_captain_by_guns() != "U1"

    def test_election_tie_break_is_fair(self, started_session):
        """Two players tied at the maximum are each elected about half the time."""
        for pid in ("U2", "U3", "U4", "U5"):
            started_session.players[pid].guns = 1
        started_session.players["U2"].guns = 4
        started_session.players["U3"].guns = 4

        wins = Counter()
        for _ in range(2000):
            started_session.captain = "U1"
            wins[started_session.elect_captain_by_guns()] += 1

        assert set(wins) == {"U2", "U3"}
        assert 800 < wins["U2"] < 1200


class TestNavigationTeam:

    def test_set_team(self, started_session):
        started_session.captain = "U1"
        started_session.set_navigation_team("U2", "U3")
        assert started_session.has_navigation_team()
        assert started_session.navigation_team_is_valid()

    def test_captain_cannot_serve(self, started_session):
        started_session.captain = "U1"
        with pytest.raises(InvalidCrewmate):
            started_session.set_navigation_team("U1", "U3")
        assert not started_session.has_navigation_team()

    def test_posts_must_differ(self, started_session):
        started_session.captain = "U1"
        with pytest.raises(SameCrewmate):
            started_session.set_navigation_team("U2", "U2")

    def test_dead_crew_cannot_serve(self, started_session):
        started_session.captain = "U1"
        started_session.players["U2"].alive = False
        with pytest.raises(InvalidCrewmate):
            started_session.set_navigation_team("U2", "U3")

    def test_team_invalid_once_member_is_captain(self, started_session):
        started_session.captain = "U1"
        started_session.set_navigation_team("U2", "U3")
        started_session.captain = "U2"
        assert started_session.navigation_team_is_valid() is False


class TestWinCondition:

    @pytest.mark.parametrize("position, winner", [
        ((10, 5), Winner.SAILORS),
        ((12, 8), Winner.SAILORS),
        ((10, -5), Winner.PIRATES),
        ((11, -7), Winner.PIRATES),
        ((0, 10), Winner.CULT),
        ((9, 5), None),
        ((0, 0), None),
        ((10, 4), None),
    ])
    def test_boundaries(self, lobby, position, winner):
        lobby.ship_position = Position(x=position[0], y=position[1])
        assert lobby.check_win_condition().winner == winner

    def test_move_ship(self, lobby):
        lobby.move_ship(Direction.NORTH)
        lobby.move_ship(Direction.EAST)
        lobby.move_ship(Direction.EAST)
        lobby.move_ship(Direction.SOUTH)
        lobby.move_ship(Direction.WEST)
        assert lobby.ship_position.as_tuple() == (1, 0)


class TestPhaseMachine:

    def test_first_advance_starts_turn_one(self, started_session):
        started_session.captain = "U2"
        started_session.next_phase()
        assert started_session.phase == Phase.NAVIGATION_SELECTION
        assert started_session.turn == 1
        assert started_session.captain == "U3"

    def test_plain_cycle(self, started_session):
        started_session.next_phase()
        seen = [started_session.phase]
        for _ in range(4):
            started_session.next_phase()
            seen.append(started_session.phase)
        assert seen == [
            Phase.NAVIGATION_SELECTION,
            Phase.MUTINY,
            Phase.NAVIGATION,
            Phase.VOTING,
            Phase.NAVIGATION_SELECTION,
        ]
        assert started_session.turn == 2

    def test_mutiny_success_loops_back(self, started_session):
        started_session.next_phase()
        started_session.apply_transition(Transition.TEAM_CONFIRMED)
        started_session.apply_transition(Transition.MUTINY_SUCCEEDED)
        assert started_session.phase == Phase.NAVIGATION_SELECTION
        assert started_session.turn == 1

    def test_team_kept_skips_selection(self, started_session):
        for _ in range(4):
            started_session.next_phase()
        assert started_session.phase == Phase.VOTING
        started_session.apply_transition(Transition.NEW_TURN_TEAM_KEPT)
        assert started_session.phase == Phase.MUTINY
        assert started_session.turn == 2

    def test_election_suppresses_next_rotation(self, started_session):
        started_session.phase = Phase.VOTING
        started_session.captain = "U2"
        started_session.captain_elected_this_cycle = True
        started_session.next_phase()
        assert started_session.captain == "U2"
        assert started_session.captain_elected_this_cycle is False

    def test_illegal_transition(self, started_session):
        with pytest.raises(IllegalTransition):
            started_session.apply_transition(Transition.SHIP_MOVED)
        assert started_session.phase == Phase.NIGHT

    def test_lobby_has_no_forward_step(self, lobby):
        with pytest.raises(IllegalTransition):
            lobby.next_phase()

    def test_completed_is_terminal(self):
        with pytest.raises(IllegalTransition):
            resolve_transition(Phase.COMPLETED, forward_transition(Phase.COMPLETED))

    def test_finish(self, started_session):
        started_session.ship_position = Position(x=0, y=10)
        started_session.finish(started_session.check_win_condition())
        assert started_session.status == GameStatus.COMPLETED
        assert started_session.phase == Phase.COMPLETED
        assert started_session.winner == Winner.CULT


class TestPublicState:

    def test_roles_hidden(self, started_session):
        public = started_session.to_public()
        assert public["status"] == "in_progress"
        assert all("role" not in p for p in public["players"])
        assert "cult_leader" not in public
