"""Disk-based, time-bounded cache for provider discovery documents.

Uses :mod:`diskcache` so that discovery results can be shared across
requests and worker processes. The cache is strictly optional: when
disabled (the default) every flow invocation re-discovers the provider.

Staleness is bounded by :attr:`~ni_oidc.models.DiscoveryCacheConfig.ttl_seconds`.
Operators who change the provider's configuration can drop entries early
with :meth:`DiscoveryCache.invalidate` or :meth:`DiscoveryCache.clear`
(``ni-oidc cache clear``).

Cache keys are SHA-256 hashes of the well-known URL.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any, Optional

import diskcache

from ni_oidc.models import DiscoveryCacheConfig


def _well_known_url(provider_url: str) -> str:
    return f"{provider_url.rstrip('/')}/.well-known/openid-configuration"


class DiscoveryCache:
    """Disk-backed cache of discovery documents keyed by provider.

    Args:
        cache_dir: Root directory for the cache. A ``discovery/``
            subdirectory is created inside it.
        config: Cache configuration (``enabled`` flag and ``ttl_seconds``).

    Example::

        cache = DiscoveryCache("/tmp/ni-oidc", DiscoveryCacheConfig(enabled=True))
        cache.set("https://auth.example.com", {"authorization_endpoint": "..."})
        doc = cache.get("https://auth.example.com")
    """

    def __init__(self, cache_dir: str | Path, config: DiscoveryCacheConfig) -> None:
        self._config = config
        self._cache_dir = Path(cache_dir)
        self._cache: Optional[diskcache.Cache] = None
        if config.enabled:
            self._cache = diskcache.Cache(str(self._cache_dir / "discovery"))

    @property
    def enabled(self) -> bool:
        return self._cache is not None

    def get(self, provider_url: str) -> Optional[dict[str, Any]]:
        """Return the cached document, or ``None`` on a miss, expiry, or when disabled."""
        if self._cache is None:
            return None
        doc = self._cache.get(self._make_key(provider_url))
        return dict(doc) if doc else None

    def set(self, provider_url: str, document: dict[str, Any]) -> None:
        """Store a discovery document. Empty documents are never cached."""
        if self._cache is None or not document:
            return
        self._cache.set(
            self._make_key(provider_url),
            dict(document),
            expire=self._config.ttl_seconds,
        )

    def invalidate(self, provider_url: str) -> None:
        """Drop the cached document for one provider."""
        if self._cache is None:
            return
        self._cache.delete(self._make_key(provider_url))

    def clear(self) -> None:
        """Drop every provider's document."""
        if self._cache is not None:
            self._cache.clear()

    def stats(self) -> dict[str, Any]:
        """Summary for ``ni-oidc cache stats``: entry count, location and TTL."""
        if self._cache is None:
            return {"enabled": False}
        return {
            "enabled": True,
            "size": len(self._cache),
            "directory": str(self._cache_dir / "discovery"),
            "ttl_seconds": self._config.ttl_seconds,
        }

    def close(self) -> None:
        if self._cache is not None:
            self._cache.close()

    def _make_key(self, provider_url: str) -> str:
        return hashlib.sha256(_well_known_url(provider_url).encode()).hexdigest()
