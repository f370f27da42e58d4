"""Entry points invoked by the HTTP handlers of the ``/ni-oidc/*`` paths.

:class:`AuthController` wires the flow components together for a single
request and exposes the five operations the web layer binds to routes:
:meth:`~AuthController.authorize`, :meth:`~AuthController.register`,
:meth:`~AuthController.edit_profile`, :meth:`~AuthController.callback`
and :meth:`~AuthController.logout`. Each returns a
:class:`~ni_oidc.models.Redirect` and never raises a flow error: failures
are logged, reported through the messenger, and turned into a redirect to
the front page.

The host application plugs in two hooks: ``on_login`` receives the
reconciled :class:`~ni_oidc.models.LocalAccount` and starts the local
session; ``on_logout`` ends it.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Callable, Optional, Union
from urllib.parse import urlparse

from pydantic import ValidationError

from ni_oidc.accounts import AccountRepository
from ni_oidc.authorize import AuthorizationRedirector
from ni_oidc.cache import DiscoveryCache
from ni_oidc.callback import CallbackProcessor
from ni_oidc.discovery import DiscoveryClient
from ni_oidc.exceptions import AccountResolutionFailed, NiOidcError, ProtocolViolation
from ni_oidc.logout import LogoutCoordinator
from ni_oidc.messages import MessageList, Messenger
from ni_oidc.models import (
    CallbackQuery,
    FlowAction,
    LocalAccount,
    ProviderConfig,
    Redirect,
)
from ni_oidc.reconcile import IdentityReconciler
from ni_oidc.session import REDIRECT_URI_KEY, SessionAuthState, SessionStore

logger = logging.getLogger(__name__)

LOGGED_IN_MESSAGE = "You have been logged in."
AUTH_FAILED_MESSAGE = "Failed to authenticate with Next Identity."


def is_local_path(destination: str) -> bool:
    """Return True if *destination* is a path on this site (no scheme or host)."""
    if not destination.startswith("/") or destination.startswith("//"):
        return False
    if "\\" in destination:
        return False
    parsed = urlparse(destination)
    return not parsed.scheme and not parsed.netloc


class AuthController:
    """Per-request facade over the OIDC flow.

    Args:
        config: Provider settings.
        session: The current user's session.
        repository: Local account storage.
        messenger: Sink for user-visible messages. Defaults to a
            :class:`~ni_oidc.messages.MessageList`.
        on_login: Called with the local account after a successful callback.
        on_logout: Called after the flow's session keys have been cleared.
        discovery_cache: Optional shared discovery cache.
        language_prefix: Language path prefix for the callback URL.

    Example::

        controller = AuthController(config, session, repository, on_login=start_session)
        redirect = controller.callback(request.query_params)
    """

    def __init__(
        self,
        config: ProviderConfig,
        session: SessionStore,
        repository: AccountRepository,
        messenger: Optional[Messenger] = None,
        *,
        on_login: Optional[Callable[[LocalAccount], None]] = None,
        on_logout: Optional[Callable[[], None]] = None,
        discovery_cache: Optional[DiscoveryCache] = None,
        language_prefix: str = "",
    ) -> None:
        self.config = config
        self.session = session
        self.messenger = messenger if messenger is not None else MessageList()
        self.auth_state = SessionAuthState(session)
        self._on_login = on_login
        self._on_logout = on_logout

        self.discovery = DiscoveryClient(config, self.messenger, discovery_cache)
        self.redirector = AuthorizationRedirector(
            config, self.discovery, session, self.messenger, language_prefix
        )
        self.callback_processor = CallbackProcessor(
            config, self.discovery, session, language_prefix
        )
        self.reconciler = IdentityReconciler(config, repository)
        self.logout_coordinator = LogoutCoordinator(config, self.discovery, session)

    # -- authorization --------------------------------------------------------

    def authorize(self, **options: Any) -> Redirect:
        """Send the user to the provider's login page.

        Keyword options: ``prompt``, ``max_age``, ``redirect_uri``, ``scopes``.
        """
        return self._start(None, options)

    login = authorize

    def register(self, **options: Any) -> Redirect:
        """Send the user to the provider's registration page."""
        return self._start(FlowAction.REGISTER, options)

    def edit_profile(self, **options: Any) -> Redirect:
        """Send the user to the provider's personal-details page."""
        return self._start(FlowAction.PERSONAL_DETAILS, options)

    def _start(self, action: Optional[FlowAction], options: dict[str, Any]) -> Redirect:
        try:
            return self.redirector.build_redirect(action, **options)
        except NiOidcError as exc:
            return self._fail(exc)

    # -- callback -------------------------------------------------------------

    def callback(self, query: Union[CallbackQuery, Mapping[str, Any]]) -> Redirect:
        """Complete the flow and redirect to ``destination`` or the account page."""
        if not isinstance(query, CallbackQuery):
            try:
                query = CallbackQuery.model_validate(dict(query))
            except ValidationError as exc:
                self.session.delete(REDIRECT_URI_KEY)
                return self._fail(
                    ProtocolViolation(f"Malformed callback parameters: {exc.error_count()} invalid")
                )

        result = self.callback_processor.process(query)
        if not result.authenticated:
            if result.error is None:
                return self._fail(ProtocolViolation(f"Callback ended in state {result.state.value}"))
            return self._fail(result.error)

        if result.userinfo is None:
            # Token-only session: tokens stay, no local login.
            self.messenger.error(AUTH_FAILED_MESSAGE)
            return self._home()

        account = self.reconciler.reconcile(result.userinfo)
        if account is None:
            self.auth_state.clear()
            return self._fail(
                AccountResolutionFailed(
                    f"No local account for subject {result.userinfo.sub}"
                )
            )

        if self._on_login is not None:
            self._on_login(account)
        self.messenger.status(LOGGED_IN_MESSAGE)
        logger.info("User %s logged in via Next Identity", account.username)

        if query.destination and is_local_path(query.destination):
            return Redirect(url=query.destination)
        if query.destination:
            logger.warning("Ignoring non-local destination %r", query.destination)
        return Redirect(url=self.config.account_page_path)

    # -- logout ---------------------------------------------------------------

    def logout(self) -> Redirect:
        """Clear the flow's session state, end the local session, and redirect."""
        redirect = self.logout_coordinator.logout()
        if self._on_logout is not None:
            self._on_logout()
        return redirect

    # -- helpers --------------------------------------------------------------

    def _fail(self, exc: NiOidcError) -> Redirect:
        logger.error("%s: %s", type(exc).__name__, exc)
        self.messenger.error(exc.user_message)
        return self._home()

    def _home(self) -> Redirect:
        return Redirect(url=self.config.front_page_path)
