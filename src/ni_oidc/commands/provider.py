"""Provider commands -- discovery check, callback URL and authorization URL."""

from __future__ import annotations

from typing import Optional

import typer

from ni_oidc.commands import load_config_or_exit
from ni_oidc.exit_codes import EXIT_CONFIGURATION_MISSING, EXIT_PROTOCOL_VIOLATION
from ni_oidc.output import debug, error, format_response, info, print_data, warning

provider_app = typer.Typer(no_args_is_help=True)


@provider_app.command("discover")
def provider_discover(
    ctx: typer.Context,
    refresh: bool = typer.Option(
        False, "--refresh", help="Drop the cached document before discovering."
    ),
) -> None:
    """Fetch the discovery document and print the endpoints.

    Uses the shared discovery cache when it is enabled. Exits non-zero
    with the failure's exit code when the provider cannot be discovered.

    Example::

        ni-oidc provider discover
        ni-oidc --json provider discover --refresh
    """
    from ni_oidc.cache import DiscoveryCache
    from ni_oidc.config import get_cache_dir
    from ni_oidc.discovery import DiscoveryClient

    config = load_config_or_exit(ctx)
    cache = DiscoveryCache(get_cache_dir(), config.discovery_cache)
    try:
        if refresh:
            cache.invalidate(config.provider_url)
        client = DiscoveryClient(config, cache=cache)
        endpoints = client.discover()
    finally:
        cache.close()

    if not endpoints:
        exc = client.last_error
        error(str(exc) if exc else "Discovery returned no endpoints")
        raise typer.Exit(code=exc.exit_code if exc else EXIT_PROTOCOL_VIOLATION)

    debug(f"Discovered from {config.well_known_url}")
    format_response(endpoints)


@provider_app.command("callback-url")
def provider_callback_url(
    ctx: typer.Context,
    language_prefix: str = typer.Option(
        "", "--language-prefix", "-l", help="Language path prefix, e.g. 'fr'."
    ),
) -> None:
    """Print the callback URL to register with the provider."""
    from ni_oidc.authorize import build_callback_url

    config = load_config_or_exit(ctx)
    if not config.base_url:
        warning("base_url is not set; printing a site-relative path")
    print_data(build_callback_url(config.base_url, language_prefix))


@provider_app.command("authorize-url")
def provider_authorize_url(
    ctx: typer.Context,
    action: Optional[str] = typer.Option(
        None, "--action", "-a", help="Provider page: 'register' or 'personal-details'."
    ),
    prompt: Optional[str] = typer.Option(None, "--prompt", help="OIDC prompt value."),
    max_age: Optional[int] = typer.Option(None, "--max-age", help="Maximum authentication age in seconds."),
) -> None:
    """Build a sample authorization URL.

    The state token printed on stderr is bound to a throwaway session, so
    the URL is for inspection only.

    Example::

        ni-oidc provider authorize-url --action register
    """
    from ni_oidc.authorize import AuthorizationRedirector
    from ni_oidc.discovery import DiscoveryClient
    from ni_oidc.messages import ERROR, MessageList
    from ni_oidc.models import FlowAction
    from ni_oidc.session import InMemorySessionStore
    from ni_oidc.state import StateTokenGuard

    if action is not None and action not in {a.value for a in FlowAction}:
        raise typer.BadParameter(
            "must be 'register' or 'personal-details'", param_hint="--action"
        )

    config = load_config_or_exit(ctx)
    missing = config.missing_required()
    if missing:
        error(f"Missing required settings: {', '.join(missing)}")
        raise typer.Exit(code=EXIT_CONFIGURATION_MISSING)

    session = InMemorySessionStore()
    messages = MessageList()
    discovery = DiscoveryClient(config, messages)
    redirector = AuthorizationRedirector(config, discovery, session, messages)
    redirect = redirector.build_redirect(action, prompt=prompt, max_age=max_age)

    if not redirect.external:
        for text in messages.texts(ERROR):
            error(text)
        exc = discovery.last_error
        raise typer.Exit(code=exc.exit_code if exc else EXIT_PROTOCOL_VIOLATION)

    info(f"state: {StateTokenGuard(session).pending}")
    print_data(redirect.url)
