"""Session-scoped key/value storage for the OIDC flow.

The flow never touches ambient global state: every component receives a
:class:`SessionStore` scoped to the current end user's session. Three
implementations are provided:

- :class:`InMemorySessionStore` -- a lock-guarded dict, used by tests and
  the CLI.
- :class:`DiskSessionStore` -- server-side storage in a shared
  :mod:`diskcache` cache, namespaced by an opaque session id. This is what
  the web router uses.
- :class:`MappingSessionStore` -- adapts a mutable mapping held on the
  server. A signed-cookie session such as Starlette's ``request.session``
  is not suitable: replaying an older cookie would restore a consumed
  state token.

:class:`SessionAuthState` is a typed view over the ``ni_oidc_*`` keys.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import MutableMapping
from typing import Any, Optional

import diskcache

from ni_oidc.models import UserInfoClaims

KEY_PREFIX = "ni_oidc_"

STATE_KEY = f"{KEY_PREFIX}state"
REDIRECT_URI_KEY = f"{KEY_PREFIX}redirect_uri"
ACCESS_TOKEN_KEY = f"{KEY_PREFIX}access_token"
ID_TOKEN_KEY = f"{KEY_PREFIX}id_token"
REFRESH_TOKEN_KEY = f"{KEY_PREFIX}refresh_token"
USERINFO_KEY = f"{KEY_PREFIX}userinfo"

AUTH_STATE_KEYS = (
    STATE_KEY,
    ACCESS_TOKEN_KEY,
    ID_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    USERINFO_KEY,
    REDIRECT_URI_KEY,
)
"""Every key owned by the flow; all of them are removed by logout."""


class SessionStore(ABC):
    """Key/value storage scoped to one end-user session."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove *key*. Missing keys are ignored."""
        ...

    def pop(self, key: str, default: Any = None) -> Any:
        """Read and remove *key* in one step.

        Implementations backed by shared storage must make this atomic for
        a single session; the state token guard relies on it to defeat
        callback replay.
        """
        value = self.get(key, default)
        self.delete(key)
        return value


class InMemorySessionStore(SessionStore):
    """Dict-backed session store guarded by a lock."""

    def __init__(self, initial: Optional[dict[str, Any]] = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def pop(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.pop(key, default)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)


class DiskSessionStore(SessionStore):
    """Server-side session store in a shared :class:`diskcache.Cache`.

    Every key is prefixed with *session_id*, so one cache serves all
    sessions. :meth:`pop` runs as a single diskcache transaction: of two
    concurrent callbacks, in any thread or worker process, only one sees
    the pending state token.

    Args:
        cache: The shared cache.
        session_id: Opaque id of the end user's session.
        ttl_seconds: Expiry applied to every write. ``None`` keeps entries
            until they are deleted.
    """

    def __init__(
        self,
        cache: diskcache.Cache,
        session_id: str,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self._cache = cache
        self._session_id = session_id
        self._ttl_seconds = ttl_seconds

    @property
    def session_id(self) -> str:
        return self._session_id

    def get(self, key: str, default: Any = None) -> Any:
        return self._cache.get(self._key(key), default)

    def set(self, key: str, value: Any) -> None:
        self._cache.set(self._key(key), value, expire=self._ttl_seconds)

    def delete(self, key: str) -> None:
        self._cache.delete(self._key(key))

    def pop(self, key: str, default: Any = None) -> Any:
        return self._cache.pop(self._key(key), default)

    def _key(self, key: str) -> str:
        return f"{self._session_id}:{key}"


class MappingSessionStore(SessionStore):
    """Adapts a server-held mutable mapping to :class:`SessionStore`."""

    def __init__(self, mapping: MutableMapping[str, Any]) -> None:
        self._mapping = mapping

    def get(self, key: str, default: Any = None) -> Any:
        return self._mapping.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._mapping[key] = value

    def delete(self, key: str) -> None:
        self._mapping.pop(key, None)

    def pop(self, key: str, default: Any = None) -> Any:
        return self._mapping.pop(key, default)


class SessionAuthState:
    """Typed accessors for the tokens and claims kept in the session.

    Example::

        auth_state = SessionAuthState(session)
        if auth_state.has_valid_access_token():
            headers = {"Authorization": f"Bearer {auth_state.access_token}"}
    """

    def __init__(self, session: SessionStore) -> None:
        self._session = session

    @property
    def access_token(self) -> Optional[str]:
        return self._session.get(ACCESS_TOKEN_KEY)

    @property
    def id_token(self) -> Optional[str]:
        return self._session.get(ID_TOKEN_KEY)

    @property
    def refresh_token(self) -> Optional[str]:
        return self._session.get(REFRESH_TOKEN_KEY)

    @property
    def userinfo(self) -> Optional[UserInfoClaims]:
        data = self._session.get(USERINFO_KEY)
        if not data:
            return None
        return UserInfoClaims.model_validate(data)

    def store_tokens(self, tokens: dict[str, Any]) -> None:
        """Persist the token endpoint response.

        A missing ``id_token`` removes any stale one; ``refresh_token`` is
        only written when the provider returned one.
        """
        self._session.set(ACCESS_TOKEN_KEY, tokens["access_token"])
        if tokens.get("id_token"):
            self._session.set(ID_TOKEN_KEY, tokens["id_token"])
        else:
            self._session.delete(ID_TOKEN_KEY)
        if tokens.get("refresh_token"):
            self._session.set(REFRESH_TOKEN_KEY, tokens["refresh_token"])

    def store_userinfo(self, claims: UserInfoClaims) -> None:
        self._session.set(USERINFO_KEY, claims.model_dump(mode="json", exclude_none=True))

    def has_valid_access_token(self) -> bool:
        """Return True if an access token is present.

        Only presence is checked; expiry and revocation are not.
        """
        return bool(self.access_token)

    def clear(self) -> None:
        """Remove every auth-state key from the session."""
        for key in AUTH_STATE_KEYS:
            self._session.delete(key)
