"""
Pytest fixtures for the Feed the Kraken engine tests.

Provides a recording notifier, lobbies of various sizes and helpers for
answering prompts the way a client would.
"""

from typing import List, Optional

import pytest

from agents.turn_controller import TurnController
from models.game import ChoiceOption, Correlation, FormField, GameSession, Prompt
from services.notifier import Notifier


PLAYER_IDS = ["U1", "U2", "U3", "U4", "U5", "U6", "U7", "U8", "U9", "U10", "U11", "U12"]


class RecordingNotifier(Notifier):
    """Keeps every notification in memory instead of delivering it."""

    def __init__(self):
        self.announcements: List[str] = []
        self.private: List[tuple] = []   # (session_id, user_id, text)
        self.directs: List[tuple] = []   # (user_id, text)
        self.choices: List[tuple] = []   # (user_id, options, correlation, text)
        self.forms: List[tuple] = []     # (user_id, fields, correlation, text)
        self.errors: List[tuple] = []    # (user_id, code)

    async def announce(self, session_id, text):
        self.announcements.append(text)

    async def notify_privately(self, session_id, user_id, text):
        self.private.append((session_id, user_id, text))

    async def direct(self, user_id, text):
        self.directs.append((user_id, text))

    async def prompt_choice(self, user_id, options: List[ChoiceOption], correlation, text=""):
        self.choices.append((user_id, options, correlation, text))

    async def prompt_form(self, user_id, fields: List[FormField], correlation, text=""):
        self.forms.append((user_id, fields, correlation, text))

    async def notify_error(self, session_id, user_id, code, text):
        self.errors.append((user_id, code))
        await super().notify_error(session_id, user_id, code, text)

    def announced(self, fragment: str) -> int:
        return sum(1 for text in self.announcements if fragment in text)

    def private_to(self, user_id: str) -> List[str]:
        return [text for _, uid, text in self.private if uid == user_id]

    def last_choice(self, user_id: str, prompt: Prompt) -> Optional[tuple]:
        for entry in reversed(self.choices):
            if entry[0] == user_id and Correlation.decode(entry[2]).prompt == prompt:
                return entry
        return None


class FailingNotifier(Notifier):
    """Every delivery blows up."""

    async def announce(self, session_id, text):
        raise ConnectionError("platform down")

    async def notify_privately(self, session_id, user_id, text):
        raise ConnectionError("platform down")

    async def direct(self, user_id, text):
        raise ConnectionError("platform down")

    async def prompt_choice(self, user_id, options, correlation, text=""):
        raise ConnectionError("platform down")

    async def prompt_form(self, user_id, fields, correlation, text=""):
        raise ConnectionError("platform down")


def make_lobby(count: int = 5, session_id: str = "C1") -> GameSession:
    """WAITING session with `count` players joined in order U1, U2, ...; U1 hosts."""
    session = GameSession(id=session_id, host_id=PLAYER_IDS[0])
    for pid in PLAYER_IDS[:count]:
        session.add_player(pid, f"Player {pid}")
    return session


def token(controller: TurnController, prompt: Prompt) -> str:
    """Correlation token for `prompt` in the controller's current phase instance."""
    return Correlation(
        session_id=controller.session_id,
        prompt=prompt,
        instance=controller.phase_instance,
    ).encode()


def next_alive_after(session: GameSession, player_id: str) -> str:
    order = list(session.players)
    start = order.index(player_id)
    for pid in order[start + 1:] + order[:start]:
        if session.players[pid].alive:
            return pid
    return player_id


def pick_team(session: GameSession) -> tuple:
    """Lieutenant and Navigator that stay valid after the next captain rotation."""
    captain = session.captain
    upcoming = next_alive_after(session, captain)
    candidates = [
        p.id for p in session.get_alive_players() if p.id not in (captain, upcoming)
    ]
    return candidates[0], candidates[1]


@pytest.fixture
def notifier():
    """Recording notifier for inspecting what players were told."""
    return RecordingNotifier()


@pytest.fixture
def lobby():
    """Five-player lobby hosted by U1."""
    return make_lobby(5)


@pytest.fixture
def started_session():
    """Five-player session that has been started (roles dealt, phase NIGHT)."""
    session = make_lobby(5)
    session.start()
    return session
