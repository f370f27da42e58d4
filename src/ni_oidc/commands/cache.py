"""Cache commands -- inspect and clear the shared discovery cache."""

from __future__ import annotations

import typer

from ni_oidc.commands import load_config_or_exit
from ni_oidc.output import format_response, success

cache_app = typer.Typer(no_args_is_help=True)


@cache_app.command("stats")
def cache_stats(ctx: typer.Context) -> None:
    """Show whether the discovery cache is enabled and how many entries it holds."""
    from ni_oidc.cache import DiscoveryCache
    from ni_oidc.config import get_cache_dir

    config = load_config_or_exit(ctx)
    cache = DiscoveryCache(get_cache_dir(), config.discovery_cache)
    try:
        format_response(cache.stats())
    finally:
        cache.close()


@cache_app.command("clear")
def cache_clear(ctx: typer.Context) -> None:
    """Remove every cached discovery document.

    Works even when caching is currently disabled, so stale entries from
    an earlier configuration can be dropped.
    """
    from ni_oidc.cache import DiscoveryCache
    from ni_oidc.config import get_cache_dir

    config = load_config_or_exit(ctx)
    cache = DiscoveryCache(
        get_cache_dir(), config.discovery_cache.model_copy(update={"enabled": True})
    )
    try:
        cache.clear()
    finally:
        cache.close()
    success("Discovery cache cleared.")
