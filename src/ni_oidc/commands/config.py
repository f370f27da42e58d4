"""Config commands -- view, edit and validate provider settings.

Provides the ``ni-oidc config`` sub-command group. Settings live in a
single JSON file (see :func:`~ni_oidc.config.config_path`) and are
validated against :class:`~ni_oidc.models.ProviderConfig` before every
save.
"""

from __future__ import annotations

from typing import Any

import typer
from pydantic import ValidationError

from ni_oidc.commands import context_config_path, load_config_or_exit
from ni_oidc.exit_codes import EXIT_CONFIGURATION_MISSING, EXIT_INVALID_USAGE
from ni_oidc.output import error, format_response, info, success, warning

config_app = typer.Typer(no_args_is_help=True)

SECRET_MASK = "********"


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Show the effective settings, environment overrides included.

    The client secret is masked.

    Example::

        ni-oidc config show
        ni-oidc --json config show
    """
    from ni_oidc.config import config_path

    config = load_config_or_exit(ctx)
    data = config.model_dump(mode="json")
    if data.get("client_secret"):
        data["client_secret"] = SECRET_MASK

    info(f"Settings file: {config_path(context_config_path(ctx))}")
    format_response(data)


@config_app.command("set")
def config_set(
    ctx: typer.Context,
    key: str = typer.Argument(
        help="Setting key (dot notation, e.g. 'discovery_cache.enabled')."
    ),
    value: str = typer.Argument(help="Value to set. Lists are comma-separated."),
) -> None:
    """Set a single setting.

    The value is coerced to the type of the current value (bool, int,
    float, or comma-separated list) and the result is validated before it
    is written. Environment overrides are never written to the file.

    Raises:
        typer.Exit: With code 2 if the key is unknown, the value cannot be
            coerced, or validation fails.

    Example::

        ni-oidc config set provider_url https://auth.example.com
        ni-oidc config set user_roles editor,reviewer
        ni-oidc config set discovery_cache.ttl_seconds 600
    """
    from ni_oidc.config import load_settings_data, save_provider_config
    from ni_oidc.exceptions import ConfigError
    from ni_oidc.models import ProviderConfig

    path = context_config_path(ctx)
    try:
        current = ProviderConfig.model_validate(load_settings_data(path))
    except (ConfigError, ValidationError) as exc:
        error(f"Cannot read current settings: {exc}")
        raise typer.Exit(code=EXIT_INVALID_USAGE) from None
    data = current.model_dump(mode="json")

    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        if not isinstance(target.get(k), dict):
            error(f"Invalid settings key: {key}")
            raise typer.Exit(code=EXIT_INVALID_USAGE)
        target = target[k]

    final_key = keys[-1]
    if final_key not in target:
        error(f"Unknown settings key: {key}")
        raise typer.Exit(code=EXIT_INVALID_USAGE)

    try:
        coerced = _coerce(target[final_key], value)
    except ValueError:
        error(f"Invalid value for {key}: {value}")
        raise typer.Exit(code=EXIT_INVALID_USAGE) from None
    target[final_key] = coerced

    try:
        new_config = ProviderConfig.model_validate(data)
    except ValidationError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=EXIT_INVALID_USAGE) from None

    save_provider_config(new_config, path)
    shown = SECRET_MASK if final_key == "client_secret" else coerced
    success(f"Set {key} = {shown}")


@config_app.command("validate")
def config_validate(ctx: typer.Context) -> None:
    """Check that the settings needed to start a flow are present.

    Exits with code 3 when the provider URL or client id is missing.
    """
    config = load_config_or_exit(ctx)

    missing = config.missing_required()
    if missing:
        error(f"Missing required settings: {', '.join(missing)}")
        raise typer.Exit(code=EXIT_CONFIGURATION_MISSING)

    if not config.client_secret:
        warning("client_secret is empty; the token exchange will be rejected")
    if not config.base_url:
        warning("base_url is empty; the callback URL will be a bare path")
    success("Settings are valid.")


def _coerce(current: Any, value: str) -> Any:
    if isinstance(current, bool):
        return value.lower() in ("true", "1", "yes")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    if isinstance(current, list):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value
