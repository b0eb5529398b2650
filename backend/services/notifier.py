"""
Notifier: the engine's only way out to the messaging platform.

The core never knows how a message is delivered. It calls one of its
operations and, for prompts, later receives a PlayerAction / FormSubmission
carrying the same correlation token.

GuardedNotifier wraps a transport so delivery failures are logged and
swallowed: a message that fails to arrive never rolls back a state change
that was already committed (at-most-once notification, exactly-once mutation).
"""
import logging
from abc import ABC, abstractmethod
from typing import List

from models.game import ChoiceOption, FormField

logger = logging.getLogger(__name__)


class Notifier(ABC):

    @abstractmethod
    async def announce(self, session_id: str, text: str) -> None:
        """Broadcast to every participant of the session."""

    @abstractmethod
    async def notify_privately(self, session_id: str, user_id: str, text: str) -> None:
        """Visible only to one participant, inside the shared context."""

    @abstractmethod
    async def direct(self, user_id: str, text: str) -> None:
        """Private message outside the shared context."""

    @abstractmethod
    async def prompt_choice(
        self, user_id: str, options: List[ChoiceOption], correlation: str, text: str = ""
    ) -> None:
        """Private mutually-exclusive choice; answered by a PlayerAction."""

    @abstractmethod
    async def prompt_form(
        self, user_id: str, fields: List[FormField], correlation: str, text: str = ""
    ) -> None:
        """Private structured input; answered by a FormSubmission."""

    async def notify_error(self, session_id: str, user_id: str, code: str, text: str) -> None:
        """A rejected action, reported to its actor. Plain transports show the text privately."""
        await self.notify_privately(session_id, user_id, text)


class GuardedNotifier(Notifier):
    """Delegates to another Notifier, logging and swallowing delivery errors."""

    def __init__(self, inner: Notifier):
        self.inner = inner

    async def announce(self, session_id: str, text: str) -> None:
        try:
            await self.inner.announce(session_id, text)
        except Exception as exc:
            logger.warning("[%s] announce failed: %s", session_id, exc)

    async def notify_privately(self, session_id: str, user_id: str, text: str) -> None:
        try:
            await self.inner.notify_privately(session_id, user_id, text)
        except Exception as exc:
            logger.warning("[%s] private notice to %s failed: %s", session_id, user_id, exc)

    async def direct(self, user_id: str, text: str) -> None:
        try:
            await self.inner.direct(user_id, text)
        except Exception as exc:
            logger.warning("direct message to %s failed: %s", user_id, exc)

    async def prompt_choice(
        self, user_id: str, options: List[ChoiceOption], correlation: str, text: str = ""
    ) -> None:
        try:
            await self.inner.prompt_choice(user_id, options, correlation, text)
        except Exception as exc:
            logger.warning("choice prompt %s to %s failed: %s", correlation, user_id, exc)

    async def prompt_form(
        self, user_id: str, fields: List[FormField], correlation: str, text: str = ""
    ) -> None:
        try:
            await self.inner.prompt_form(user_id, fields, correlation, text)
        except Exception as exc:
            logger.warning("form prompt %s to %s failed: %s", correlation, user_id, exc)

    async def notify_error(self, session_id: str, user_id: str, code: str, text: str) -> None:
        try:
            await self.inner.notify_error(session_id, user_id, code, text)
        except Exception as exc:
            logger.warning("[%s] error notice %s to %s failed: %s", session_id, code, user_id, exc)


class LoggingNotifier(Notifier):
    """Writes every notification to the log. Used when no transport is attached."""

    async def announce(self, session_id: str, text: str) -> None:
        logger.info("[%s] announce: %s", session_id, text)

    async def notify_privately(self, session_id: str, user_id: str, text: str) -> None:
        logger.info("[%s] private → %s: %s", session_id, user_id, text)

    async def direct(self, user_id: str, text: str) -> None:
        logger.info("direct → %s: %s", user_id, text)

    async def prompt_choice(
        self, user_id: str, options: List[ChoiceOption], correlation: str, text: str = ""
    ) -> None:
        logger.info("choice → %s (%s): %s", user_id, correlation, [o.value for o in options])

    async def prompt_form(
        self, user_id: str, fields: List[FormField], correlation: str, text: str = ""
    ) -> None:
        logger.info("form → %s (%s): %s", user_id, correlation, [f.name for f in fields])
