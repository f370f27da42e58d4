"""Authorization redirect construction.

:class:`AuthorizationRedirector` sends the user to the provider for one of
three flows:

* **login** -- the discovered ``authorization_endpoint`` with the standard
  query (``client_id``, ``redirect_uri``, ``response_type=code``,
  ``scope``, ``state`` and optional ``prompt`` / ``max_age``).
* **register** / **personal-details** -- the provider serves these as
  separate pages at ``{provider_url}/{action}``, which replace the
  authorization endpoint. The same query is attached.

A fresh state token is generated for every flow, and the redirect URI is
remembered in the session so the token exchange can send it back
byte-for-byte.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from ni_oidc.discovery import DiscoveryClient
from ni_oidc.messages import Messenger
from ni_oidc.models import (
    CALLBACK_PATH,
    AuthorizationRequest,
    FlowAction,
    ProviderConfig,
    Redirect,
)
from ni_oidc.session import REDIRECT_URI_KEY, SessionStore
from ni_oidc.state import StateTokenGuard

logger = logging.getLogger(__name__)


def build_callback_url(base_url: str, language_prefix: str = "") -> str:
    """Return ``{base_url}{/language_prefix}/ni-oidc/callback``.

    Example::

        >>> build_callback_url("https://example.com", "fr")
        'https://example.com/fr/ni-oidc/callback'
    """
    prefix = language_prefix.strip("/")
    if prefix:
        prefix = f"/{prefix}"
    return f"{base_url.rstrip('/')}{prefix}{CALLBACK_PATH}"


class AuthorizationRedirector:
    """Build provider redirects for the login, register and edit-profile flows.

    Args:
        config: Provider settings.
        discovery: Discovery client for the current request.
        session: The current user's session.
        messenger: Receives user-visible failure messages.
        language_prefix: Optional path prefix of the current language
            (e.g. ``"fr"``), inserted into the callback URL.
    """

    def __init__(
        self,
        config: ProviderConfig,
        discovery: DiscoveryClient,
        session: SessionStore,
        messenger: Optional[Messenger] = None,
        language_prefix: str = "",
    ) -> None:
        self._config = config
        self._discovery = discovery
        self._session = session
        self._messenger = messenger
        self._language_prefix = language_prefix
        self._state_guard = StateTokenGuard(session)

    def callback_url(self) -> str:
        url = build_callback_url(self._config.base_url, self._language_prefix)
        logger.debug("Generated callback URL: %s", url)
        return url

    def build_redirect(
        self,
        action: Union[FlowAction, str, None] = None,
        *,
        prompt: Optional[str] = None,
        max_age: Optional[int] = None,
        redirect_uri: Optional[str] = None,
        scopes: Optional[str] = None,
    ) -> Redirect:
        """Return the redirect that starts the requested flow.

        Falls back to a redirect to the front page, with an error message,
        when required settings are missing or the authorization endpoint
        cannot be discovered.

        Args:
            action: ``"register"``, ``"personal-details"`` or ``None`` for login.
            prompt: Optional ``prompt`` parameter (e.g. ``"login"``).
            max_age: Optional ``max_age`` in seconds.
            redirect_uri: Override for the computed callback URL.
            scopes: Override for the configured scope string.
        """
        flow_action = FlowAction(action) if action else None

        missing = self._config.missing_required()
        if missing:
            logger.error("Cannot start OIDC flow, missing settings: %s", ", ".join(missing))
            self._report("Next Identity is not configured.")
            return self._fallback()

        endpoints = self._discovery.discover()
        authorization_endpoint = endpoints.get("authorization_endpoint")
        if not authorization_endpoint:
            logger.error("No authorization_endpoint available from discovery")
            self._report("Failed to discover OIDC authorization endpoint.")
            return self._fallback()

        if flow_action is not None:
            authorization_endpoint = f"{self._config.provider_url}/{flow_action.value}"

        request = AuthorizationRequest(
            client_id=self._config.client_id,
            redirect_uri=redirect_uri or self.callback_url(),
            scope=scopes or self._config.scopes,
            state=self._state_guard.generate(),
            prompt=prompt,
            max_age=max_age,
            action=flow_action,
        )
        self._session.set(REDIRECT_URI_KEY, request.redirect_uri)

        return Redirect(url=request.to_url(authorization_endpoint), external=True)

    def _report(self, text: str) -> None:
        if self._messenger is not None:
            self._messenger.error(text)

    def _fallback(self) -> Redirect:
        return Redirect(url=self._config.front_page_path)
