"""User-facing status and error messages.

Flow components report outcomes to end users through a :class:`Messenger`.
Messages are fire-and-forget: they never change control flow.

- :class:`MessageList` keeps messages in memory (tests, CLI).
- :class:`SessionFlashMessenger` queues messages in the user's session so
  the next rendered page can display them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ni_oidc.session import SessionStore

FLASH_KEY = "ni_oidc_messages"

STATUS = "status"
WARNING = "warning"
ERROR = "error"


class Messenger(ABC):
    """Sink for messages shown to the end user."""

    @abstractmethod
    def add(self, level: str, text: str) -> None:
        ...

    def status(self, text: str) -> None:
        self.add(STATUS, text)

    def warning(self, text: str) -> None:
        self.add(WARNING, text)

    def error(self, text: str) -> None:
        self.add(ERROR, text)


class MessageList(Messenger):
    """Collects messages as ``(level, text)`` tuples."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def add(self, level: str, text: str) -> None:
        self.messages.append((level, text))

    def texts(self, level: str | None = None) -> list[str]:
        """Return message texts, optionally filtered by *level*."""
        return [text for lvl, text in self.messages if level is None or lvl == level]


class SessionFlashMessenger(Messenger):
    """Queues messages under :data:`FLASH_KEY` in the session."""

    def __init__(self, session: "SessionStore") -> None:
        self._session = session

    def add(self, level: str, text: str) -> None:
        queued = list(self._session.get(FLASH_KEY) or [])
        queued.append({"level": level, "text": text})
        self._session.set(FLASH_KEY, queued)

    def pop_all(self) -> list[dict[str, str]]:
        """Drain and return all queued messages."""
        return list(self._session.pop(FLASH_KEY) or [])
