"""Provider endpoint discovery.

This module provides :class:`DiscoveryClient`, which fetches the provider's
discovery document from ``{provider_url}/.well-known/openid-configuration``
and exposes the endpoint mapping the rest of the flow consumes
(``authorization_endpoint``, ``token_endpoint``, ``userinfo_endpoint``,
``end_session_endpoint``; any other keys pass through untouched).

Results are memoised for the lifetime of the client instance, which the
flow creates once per request. No retry or backoff is applied: each new
instance makes a fresh attempt. A :class:`~ni_oidc.cache.DiscoveryCache`
can optionally share results across requests for a bounded time.

A configured ``userinfo_endpoint`` always overrides the discovered value.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ni_oidc.cache import DiscoveryCache
from ni_oidc.exceptions import (
    ConfigurationMissing,
    NiOidcError,
    ProtocolViolation,
    ProviderUnreachable,
)
from ni_oidc.messages import Messenger
from ni_oidc.models import DiscoveredEndpoints, ProviderConfig

logger = logging.getLogger(__name__)


class DiscoveryClient:
    """Fetch and memoise a provider's discovery document.

    :meth:`discover` never raises: on failure it logs, reports a message to
    the user, records the failure in :attr:`last_error`, and returns an
    empty dict. Callers must treat an empty result as "the flow cannot
    proceed". :meth:`fetch_document` is the raising variant.

    Args:
        config: Provider settings.
        messenger: Receives the user-visible failure message.
        cache: Optional shared cache consulted before the network.
    """

    def __init__(
        self,
        config: ProviderConfig,
        messenger: Optional[Messenger] = None,
        cache: Optional[DiscoveryCache] = None,
    ) -> None:
        self._config = config
        self._messenger = messenger
        self._cache = cache
        self._endpoints: DiscoveredEndpoints = {}
        self.last_error: Optional[NiOidcError] = None

    def discover(self) -> DiscoveredEndpoints:
        """Return the discovered endpoints, or ``{}`` if discovery failed."""
        if self._endpoints:
            return dict(self._endpoints)

        try:
            document = self._load_document()
        except NiOidcError as exc:
            self.last_error = exc
            logger.error("Failed to discover OIDC configuration: %s", exc)
            if isinstance(exc, ProviderUnreachable):
                if exc.status_code is not None:
                    logger.error(
                        "Response status code: %s, body: %s", exc.status_code, exc.body
                    )
                else:
                    logger.error(
                        "No response from server. This may indicate network "
                        "connectivity issues or an incorrect provider URL."
                    )
            if self._messenger is not None:
                self._messenger.error(exc.user_message)
            return {}

        self.last_error = None
        self._endpoints = self._apply_overrides(document)
        return dict(self._endpoints)

    def fetch_document(self) -> dict[str, Any]:
        """Fetch the discovery document over HTTP, bypassing all caches.

        Returns:
            The parsed JSON document.

        Raises:
            ConfigurationMissing: If no provider URL is configured.
            ProviderUnreachable: On network errors or non-2xx responses.
            ProtocolViolation: If the body is not a JSON object.
        """
        if not self._config.provider_url:
            raise ConfigurationMissing("Next Identity provider URL not configured")

        url = self._config.well_known_url
        logger.info("Attempting to discover OIDC configuration from: %s", url)
        try:
            response = httpx.get(
                url,
                headers={"Accept": "application/json"},
                timeout=self._config.http_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderUnreachable(
                f"OpenID discovery failed with status {exc.response.status_code}",
                status_code=exc.response.status_code,
                body=exc.response.text,
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnreachable(f"OpenID discovery failed: {exc}") from exc

        try:
            document = response.json()
        except ValueError as exc:
            raise ProtocolViolation(
                f"OpenID discovery returned invalid JSON: {exc}",
                user_message=ProviderUnreachable.default_user_message,
            ) from exc
        if not isinstance(document, dict) or not document:
            raise ProtocolViolation(
                "OpenID discovery document is empty or not a JSON object",
                user_message=ProviderUnreachable.default_user_message,
            )

        logger.info(
            "Successfully discovered OIDC configuration: %s", ", ".join(sorted(document))
        )
        return document

    def reset(self) -> None:
        """Forget the memoised endpoints so the next call re-discovers."""
        self._endpoints = {}

    def _load_document(self) -> dict[str, Any]:
        if self._cache is not None and self._config.provider_url:
            cached = self._cache.get(self._config.provider_url)
            if cached:
                logger.debug("Using cached discovery document for %s", self._config.provider_url)
                return cached

        document = self.fetch_document()
        if self._cache is not None:
            self._cache.set(self._config.provider_url, document)
        return document

    def _apply_overrides(self, document: dict[str, Any]) -> DiscoveredEndpoints:
        endpoints = dict(document)
        if self._config.userinfo_endpoint:
            endpoints["userinfo_endpoint"] = self._config.userinfo_endpoint
        return endpoints
