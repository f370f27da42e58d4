"""Callback processing for the Authorization Code flow.

:class:`CallbackProcessor` drives the callback through a small state
machine::

    RECEIVED
      +-> ERROR_FROM_PROVIDER    provider sent ``error``            (terminal)
      +-> MISSING_PARAMETERS     ``code`` or ``state`` absent       (terminal)
      +-> STATE_INVALID          state token rejected               (terminal)
      +-> ENDPOINTS_UNAVAILABLE  no ``token_endpoint``              (terminal)
      +-> TOKEN_EXCHANGE_FAILED  non-2xx or no ``access_token``     (terminal)
      +-> USERINFO_FETCH_FAILED  tokens kept, no claims             -> AUTHENTICATED
      +-> AUTHENTICATED          tokens + claims                    (terminal)

Tokens are written to the session as soon as the exchange succeeds, so a
failed userinfo fetch still leaves a token-only authenticated session.
No failure raises out of :meth:`CallbackProcessor.process`.

The ID token is stored as received. Its signature, ``nonce`` and
audience are not verified.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Optional, Union

import httpx
from pydantic import ValidationError

from ni_oidc.authorize import build_callback_url
from ni_oidc.discovery import DiscoveryClient
from ni_oidc.exceptions import (
    CsrfMismatch,
    NiOidcError,
    ProtocolViolation,
    ProviderUnreachable,
)
from ni_oidc.models import (
    CallbackQuery,
    CallbackResult,
    CallbackState,
    DiscoveredEndpoints,
    ProviderConfig,
    UserInfoClaims,
)
from ni_oidc.session import REDIRECT_URI_KEY, SessionAuthState, SessionStore
from ni_oidc.state import StateTokenGuard

logger = logging.getLogger(__name__)


class CallbackProcessor:
    """Validate a provider callback, exchange the code, and fetch userinfo.

    Args:
        config: Provider settings.
        discovery: Discovery client for the current request.
        session: The current user's session.
        language_prefix: Language path prefix, used only when the session
            holds no redirect URI from the authorization request.
    """

    def __init__(
        self,
        config: ProviderConfig,
        discovery: DiscoveryClient,
        session: SessionStore,
        language_prefix: str = "",
    ) -> None:
        self._config = config
        self._discovery = discovery
        self._session = session
        self._language_prefix = language_prefix
        self._state_guard = StateTokenGuard(session)
        self._auth_state = SessionAuthState(session)

    def process(self, query: Union[CallbackQuery, Mapping[str, Any]]) -> CallbackResult:
        """Run the callback state machine for the received query parameters.

        Every terminal failure removes the stored redirect URI, so no flow
        data from the failed attempt stays in the session.
        """
        history = [CallbackState.RECEIVED]

        def fail(state: CallbackState, error: NiOidcError) -> CallbackResult:
            self._session.delete(REDIRECT_URI_KEY)
            history.append(state)
            return CallbackResult(state=state, error=error, history=history)

        if not isinstance(query, CallbackQuery):
            try:
                query = CallbackQuery.model_validate(dict(query))
            except ValidationError as exc:
                logger.error("Malformed callback parameters: %s", exc)
                return fail(
                    CallbackState.MISSING_PARAMETERS,
                    ProtocolViolation(f"Malformed callback parameters: {exc.error_count()} invalid"),
                )

        if query.error:
            logger.error(
                "Provider returned an error on callback: %s (%s)",
                query.error,
                query.error_description or "",
            )
            return fail(
                CallbackState.ERROR_FROM_PROVIDER,
                ProtocolViolation(
                    f"Provider returned error '{query.error}'",
                    user_message=(
                        f"Authentication error: {query.error} - "
                        f"{query.error_description or ''}"
                    ),
                ),
            )

        if not query.code or not query.state:
            logger.error("Callback is missing the code or state parameter")
            return fail(
                CallbackState.MISSING_PARAMETERS,
                ProtocolViolation("Callback is missing the code or state parameter"),
            )

        if not self._state_guard.validate(query.state):
            return fail(
                CallbackState.STATE_INVALID,
                CsrfMismatch("State parameter did not match the pending session state"),
            )

        endpoints = self._discovery.discover()
        token_endpoint = endpoints.get("token_endpoint")
        if not token_endpoint:
            logger.error("No token_endpoint available from discovery")
            return fail(
                CallbackState.ENDPOINTS_UNAVAILABLE,
                ProtocolViolation(
                    "Token endpoint could not be discovered",
                    user_message="Failed to discover OIDC token endpoint.",
                ),
            )

        try:
            tokens = self.exchange_code(token_endpoint, query.code)
        except NiOidcError as exc:
            logger.error("Failed to exchange code for tokens: %s", exc)
            return fail(CallbackState.TOKEN_EXCHANGE_FAILED, exc)

        self._auth_state.store_tokens(tokens)

        try:
            claims = self.fetch_userinfo(tokens["access_token"], endpoints)
        except NiOidcError as exc:
            logger.error("Failed to fetch user info: %s", exc)
            history.extend([CallbackState.USERINFO_FETCH_FAILED, CallbackState.AUTHENTICATED])
            return CallbackResult(
                state=CallbackState.AUTHENTICATED,
                tokens=tokens,
                error=exc,
                history=history,
            )

        self._auth_state.store_userinfo(claims)
        history.append(CallbackState.AUTHENTICATED)
        return CallbackResult(
            state=CallbackState.AUTHENTICATED,
            tokens=tokens,
            userinfo=claims,
            history=history,
        )

    def redirect_uri(self) -> str:
        """Return the redirect URI sent with the authorization request.

        Falls back to recomputing the callback URL when the session has no
        record of it.
        """
        stored = self._session.get(REDIRECT_URI_KEY)
        if stored:
            return stored
        return build_callback_url(self._config.base_url, self._language_prefix)

    def exchange_code(self, token_endpoint: str, code: str) -> dict[str, Any]:
        """Exchange the authorization code for tokens.

        Returns:
            The parsed token response containing at least ``access_token``.

        Raises:
            ProviderUnreachable: On network errors or non-2xx responses.
            ProtocolViolation: If the body is not JSON or lacks ``access_token``.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self._config.client_id,
            "client_secret": self._config.client_secret,
            "redirect_uri": self.redirect_uri(),
        }

        try:
            response = httpx.post(
                token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
                timeout=self._config.http_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderUnreachable(
                f"Token exchange failed with status {exc.response.status_code}: "
                f"{exc.response.text}",
                status_code=exc.response.status_code,
                body=exc.response.text,
                user_message="Failed to authenticate with Next Identity.",
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnreachable(
                f"Token exchange failed: {exc}",
                user_message="Failed to authenticate with Next Identity.",
            ) from exc
        finally:
            self._session.delete(REDIRECT_URI_KEY)

        token_data = _json_object(response)
        if not token_data or not token_data.get("access_token"):
            raise ProtocolViolation(
                "Invalid token response from OIDC provider: missing 'access_token'",
                user_message="Failed to authenticate with Next Identity.",
            )
        return token_data

    def fetch_userinfo(
        self, access_token: str, endpoints: Optional[DiscoveredEndpoints] = None
    ) -> UserInfoClaims:
        """Fetch claims from the userinfo endpoint with a bearer token.

        Raises:
            ProtocolViolation: If no userinfo endpoint is known or the
                response is not a claims object with a non-empty ``sub``.
            ProviderUnreachable: On network errors or non-2xx responses.
        """
        if endpoints is None:
            endpoints = self._discovery.discover()
        userinfo_endpoint = endpoints.get("userinfo_endpoint")
        if not userinfo_endpoint:
            raise ProtocolViolation("Failed to discover OIDC userinfo endpoint")

        try:
            response = httpx.get(
                userinfo_endpoint,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
                timeout=self._config.http_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderUnreachable(
                f"Userinfo request failed with status {exc.response.status_code}",
                status_code=exc.response.status_code,
                body=exc.response.text,
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnreachable(f"Userinfo request failed: {exc}") from exc

        try:
            return UserInfoClaims.model_validate(_json_object(response))
        except ValidationError as exc:
            raise ProtocolViolation(
                f"Invalid user info response from OIDC provider: {exc.error_count()} error(s)"
            ) from exc


def _json_object(response: httpx.Response) -> dict[str, Any]:
    """Return the response body as a dict, or ``{}`` if it is not a JSON object."""
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
