"""Session teardown and provider end-session redirect."""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from ni_oidc.discovery import DiscoveryClient
from ni_oidc.models import DiscoveredEndpoints, ProviderConfig, Redirect
from ni_oidc.session import SessionAuthState, SessionStore

logger = logging.getLogger(__name__)


class LogoutCoordinator:
    """Clear the flow's session keys and pick the post-logout redirect.

    The ID token is read before the session is cleared so that it can be
    sent to the provider as ``id_token_hint``. Clearing happens even if
    building the redirect fails, and always completes before
    :meth:`logout` returns, so the host's local logout runs on a clean
    session. Discovery is skipped when there is no ID token to send.
    """

    def __init__(
        self,
        config: ProviderConfig,
        discovery: DiscoveryClient,
        session: SessionStore,
    ) -> None:
        self._config = config
        self._discovery = discovery
        self._auth_state = SessionAuthState(session)

    def logout(self) -> Redirect:
        id_token = self._auth_state.id_token
        endpoints: DiscoveredEndpoints = {}
        try:
            if id_token:
                endpoints = self._discovery.discover()
        finally:
            self._auth_state.clear()

        end_session_endpoint = endpoints.get("end_session_endpoint")
        if end_session_endpoint and id_token:
            separator = "&" if "?" in end_session_endpoint else "?"
            url = f"{end_session_endpoint}{separator}{urlencode({'id_token_hint': id_token})}"
            logger.info("Redirecting to provider end-session endpoint")
            return Redirect(url=url, external=True)

        return Redirect(url=self._config.front_page_path)
