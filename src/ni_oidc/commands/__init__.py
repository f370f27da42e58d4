"""Built-in CLI sub-command groups for ni-oidc.

* :mod:`~ni_oidc.commands.config` -- view, edit and validate provider settings.
* :mod:`~ni_oidc.commands.provider` -- discovery check, callback and authorization URLs.
* :mod:`~ni_oidc.commands.cache` -- discovery cache statistics and clearing.

Each module exports a :class:`typer.Typer` sub-application registered on
the root app in :mod:`ni_oidc.app`.
"""

from __future__ import annotations

from typing import Optional

import typer

from ni_oidc.exceptions import ConfigError
from ni_oidc.models import ProviderConfig


def context_config_path(ctx: typer.Context) -> Optional[str]:
    """Return the ``--config`` path given to the root command, if any."""
    return (ctx.obj or {}).get("config_path")


def load_config_or_exit(ctx: typer.Context) -> ProviderConfig:
    """Load provider settings, exiting with the error's code if they are invalid."""
    from ni_oidc.config import load_provider_config
    from ni_oidc.output import error

    try:
        return load_provider_config(context_config_path(ctx))
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
