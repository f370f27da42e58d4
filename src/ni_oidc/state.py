"""CSRF ``state`` parameter handling.

The state token binds an authorization request to its callback. It is
generated at authorize time, kept in the session, and consumed by the
first validation attempt whether or not it matches, so a replayed
callback always fails.
"""

from __future__ import annotations

import hmac
import logging
import secrets

from ni_oidc.session import STATE_KEY, SessionStore

logger = logging.getLogger(__name__)

STATE_BYTES = 16


class StateTokenGuard:
    """Generate and validate single-use state tokens in a session."""

    def __init__(self, session: SessionStore) -> None:
        self._session = session

    def generate(self) -> str:
        """Create a 128-bit hex token, store it as pending, and return it.

        A new token replaces any pending one.
        """
        state = secrets.token_hex(STATE_BYTES)
        self._session.set(STATE_KEY, state)
        return state

    def validate(self, received_state: str | None) -> bool:
        # Consumed before comparing: a second callback with the same value fails.
        pending = self._session.pop(STATE_KEY)
        if not pending or not received_state:
            logger.warning("Invalid state parameter in OIDC callback: no pending state or none received")
            return False
        if not hmac.compare_digest(str(pending).encode(), received_state.encode()):
            logger.warning("Invalid state parameter in OIDC callback: mismatch (possible CSRF)")
            return False
        return True

    @property
    def pending(self) -> str | None:
        """The pending state token, if any."""
        return self._session.get(STATE_KEY)
