"""FastAPI router for the ``/ni-oidc/*`` paths.

Binds the :class:`~ni_oidc.controller.AuthController` entry points to
routes::

    GET /ni-oidc/login          -> authorize()
    GET /ni-oidc/register       -> register()
    GET /ni-oidc/edit-profile   -> edit_profile()
    GET /ni-oidc/callback       -> callback(query)
    GET /ni-oidc/logout         -> logout()

The application must install Starlette's ``SessionMiddleware``, but the
cookie only carries an opaque session id. The flow keys (pending state,
tokens, claims, flash messages) live server-side in a
:class:`ServerSessions` store, so replaying an older cookie cannot bring
back a state token that a callback already consumed. Pass your own
:class:`ServerSessions` to choose its directory, or override it as a
dependency (``ServerSessions.store_for``) to plug in any other
:class:`~ni_oidc.session.SessionStore`.

When no ``discovery_cache`` is passed, the ``discovery_cache`` settings of
the loaded :class:`~ni_oidc.models.ProviderConfig` decide whether a shared
cache under :func:`~ni_oidc.config.get_cache_dir` is used.

Handlers are plain ``def`` functions so the blocking provider calls run in
the threadpool rather than on the event loop.

Example::

    app = FastAPI()
    app.add_middleware(SessionMiddleware, secret_key=SECRET)
    app.include_router(create_router(load_provider_config, repository, on_login=start_session))
"""

from __future__ import annotations

import logging
import secrets
from functools import lru_cache, partial
from pathlib import Path
from typing import Callable, Optional

import diskcache
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse

from ni_oidc.accounts import AccountRepository
from ni_oidc.cache import DiscoveryCache
from ni_oidc.config import get_cache_dir
from ni_oidc.controller import AuthController
from ni_oidc.messages import SessionFlashMessenger
from ni_oidc.models import (
    CallbackQuery,
    DiscoveryCacheConfig,
    LocalAccount,
    ProviderConfig,
    Redirect,
)
from ni_oidc.session import DiskSessionStore, SessionStore

logger = logging.getLogger(__name__)

SESSION_ID_KEY = "ni_oidc_sid"
"""Key of the opaque session id in ``request.session``."""

DEFAULT_SESSION_TTL = 86400


class ServerSessions:
    """Dependency resolving the server-side flow session of a request.

    Args:
        directory: Directory of the :mod:`diskcache` store.
        ttl_seconds: Lifetime of each stored key, renewed on every write.
    """

    def __init__(self, directory: str | Path, ttl_seconds: int = DEFAULT_SESSION_TTL) -> None:
        self.directory = Path(directory)
        self.ttl_seconds = ttl_seconds
        self._cache = diskcache.Cache(str(self.directory))

    def store_for(self, request: Request) -> SessionStore:
        """Return the store of the request's session, issuing a session id if needed."""
        session_id = request.session.get(SESSION_ID_KEY)
        if not session_id:
            session_id = secrets.token_urlsafe(32)
            request.session[SESSION_ID_KEY] = session_id
        return DiskSessionStore(self._cache, session_id, self.ttl_seconds)

    def close(self) -> None:
        self._cache.close()


@lru_cache(maxsize=None)
def _shared_discovery_cache(cache_dir: Path, ttl_seconds: int) -> DiscoveryCache:
    return DiscoveryCache(cache_dir, DiscoveryCacheConfig(enabled=True, ttl_seconds=ttl_seconds))


def discovery_cache_for(config: ProviderConfig) -> Optional[DiscoveryCache]:
    """Return the shared discovery cache *config* asks for, or ``None`` when disabled.

    Instances are reused per cache directory and TTL, so a TTL change in
    the settings takes effect on the next request.
    """
    if not config.discovery_cache.enabled:
        return None
    return _shared_discovery_cache(get_cache_dir(), config.discovery_cache.ttl_seconds)


def _respond(redirect: Redirect) -> RedirectResponse:
    return RedirectResponse(redirect.url, status_code=302)


def create_router(
    config_loader: Callable[[], ProviderConfig],
    repository: AccountRepository,
    *,
    on_login: Optional[Callable[[Request, LocalAccount], None]] = None,
    on_logout: Optional[Callable[[Request], None]] = None,
    discovery_cache: Optional[DiscoveryCache] = None,
    language_prefix: Optional[Callable[[Request], str]] = None,
    sessions: Optional[ServerSessions] = None,
    prefix: str = "/ni-oidc",
) -> APIRouter:
    """Build the router.

    Args:
        config_loader: Returns the current provider settings. Called once
            per request so settings changes apply without a restart.
        repository: Local account storage.
        on_login: Starts the local session for a reconciled account.
        on_logout: Ends the local session.
        discovery_cache: Shared discovery cache. Defaults to the one
            configured in the provider settings.
        language_prefix: Returns the language path prefix for a request.
        sessions: Server-side session store. Defaults to a store under
            ``get_cache_dir() / "sessions"``.
        prefix: Path prefix of all routes.
    """
    router = APIRouter(prefix=prefix, tags=["ni-oidc"])
    if sessions is None:
        sessions = ServerSessions(get_cache_dir() / "sessions")
    logger.debug("Flow sessions stored in %s", sessions.directory)

    def controller_for(request: Request, session: SessionStore) -> AuthController:
        config = config_loader()
        return AuthController(
            config,
            session,
            repository,
            SessionFlashMessenger(session),
            on_login=partial(on_login, request) if on_login else None,
            on_logout=partial(on_logout, request) if on_logout else None,
            discovery_cache=(
                discovery_cache if discovery_cache is not None else discovery_cache_for(config)
            ),
            language_prefix=language_prefix(request) if language_prefix else "",
        )

    @router.get("/login")
    def login(request: Request, session: SessionStore = Depends(sessions.store_for)):
        return _respond(controller_for(request, session).authorize())

    @router.get("/register")
    def register(request: Request, session: SessionStore = Depends(sessions.store_for)):
        return _respond(controller_for(request, session).register())

    @router.get("/edit-profile")
    def edit_profile(request: Request, session: SessionStore = Depends(sessions.store_for)):
        return _respond(controller_for(request, session).edit_profile())

    @router.get("/callback")
    def callback(
        request: Request,
        session: SessionStore = Depends(sessions.store_for),
        code: Optional[str] = Query(None),
        state: Optional[str] = Query(None),
        error: Optional[str] = Query(None),
        error_description: Optional[str] = Query(None),
        destination: Optional[str] = Query(None),
    ):
        query = CallbackQuery(
            code=code,
            state=state,
            error=error,
            error_description=error_description,
            destination=destination,
        )
        return _respond(controller_for(request, session).callback(query))

    @router.get("/logout")
    def logout(request: Request, session: SessionStore = Depends(sessions.store_for)):
        return _respond(controller_for(request, session).logout())

    return router
