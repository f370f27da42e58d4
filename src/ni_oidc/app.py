"""Typer application and CLI entry point for ni-oidc.

The CLI is an operator tool: it inspects and edits the provider settings,
checks that the provider is reachable, prints the callback URL to register
with the provider, builds a sample authorization URL, and manages the
shared discovery cache. End users never see it.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. Unhandled :class:`~ni_oidc.exceptions.NiOidcError`
instances exit with the error's ``exit_code``; anything else is written to
a crash log under the data directory.

See Also:
    :mod:`ni_oidc.config`: Settings resolution.
    :mod:`ni_oidc.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from ni_oidc import __version__
from ni_oidc.commands.cache import cache_app
from ni_oidc.commands.config import config_app
from ni_oidc.commands.provider import provider_app
from ni_oidc.exceptions import NiOidcError
from ni_oidc.exit_codes import EXIT_GENERIC_FAILURE, EXIT_INTERRUPTED
from ni_oidc.output import OutputFormat, OutputManager, error, set_output

app = typer.Typer(
    name="ni-oidc",
    help="Operate the Next Identity OpenID Connect integration.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

app.add_typer(config_app, name="config", help="Provider settings management.")
app.add_typer(provider_app, name="provider", help="Provider discovery and URLs.")
app.add_typer(cache_app, name="cache", help="Discovery cache management.")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"ni-oidc {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    """Send the package's log records to stderr through Rich when *verbose*."""
    package_logger = logging.getLogger("ni_oidc")
    for handler in list(package_logger.handlers):
        if isinstance(handler, RichHandler):
            package_logger.removeHandler(handler)
    if not verbose:
        package_logger.setLevel(logging.NOTSET)
        return
    handler = RichHandler(console=Console(stderr=True), show_path=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG)


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    config_file: Optional[str] = typer.Option(
        None, "--config", "-c", help="Settings file path (overrides NI_OIDC_CONFIG)."
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output and log records."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Installs the global :class:`~ni_oidc.output.OutputManager` and stores
    the settings path in ``ctx.obj`` for sub-commands.
    """
    if json_output:
        fmt = OutputFormat.JSON
    else:
        fmt = OutputFormat.PLAIN if plain_output else OutputFormat.AUTO
    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))
    _configure_logging(verbose)

    ctx.ensure_object(dict)
    ctx.obj.update(config_path=config_file, verbose=verbose)


def _on_interrupt(signum: int, frame: Any) -> None:  # noqa: ANN401
    sys.stderr.write("\nCancelled.\n")
    sys.exit(EXIT_INTERRUPTED)


def _write_crash_log(exc: BaseException) -> Path:
    """Write *exc* with its traceback under the data directory."""
    from ni_oidc.config import get_data_dir

    log_path = get_data_dir() / f"crash-{datetime.now():%Y%m%d-%H%M%S}.log"
    log_path.write_text(
        f"ni-oidc {__version__}\n" + "".join(traceback.format_exception(exc)),
        encoding="utf-8",
    )
    return log_path


def main() -> None:
    """Console-script entry point.

    :class:`~ni_oidc.exceptions.NiOidcError` exits with its own code; any
    other exception is written to a crash log and exits with code 1.
    """
    signal.signal(signal.SIGINT, _on_interrupt)
    try:
        app()
    except SystemExit:
        raise
    except NiOidcError as exc:
        error(str(exc))
        sys.exit(exc.exit_code)
    except Exception as exc:
        log_path = _write_crash_log(exc)
        error(f"Unexpected error. Details written to {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
