"""Operator-facing output for the ``ni-oidc`` CLI.

Data (endpoint maps, settings, cache stats) goes to stdout; status lines,
warnings and errors go to stderr so scripts can pipe the data stream.
On a terminal, mappings are rendered as a two-column Rich table; piped
output is tab-separated, or JSON with ``--json``. ``NO_COLOR``,
``TERM=dumb`` and ``--no-color`` disable colour.

:class:`OutputManager` is created once in :func:`~ni_oidc.app.main_callback`
and installed with :func:`set_output`; the module-level helpers delegate
to it.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from typing import Any, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table


class OutputFormat(str, Enum):
    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


def _stdout_is_terminal() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _color_disabled_by_env() -> bool:
    return "NO_COLOR" in os.environ or os.environ.get("TERM") == "dumb"


def _resolve_format(requested: OutputFormat, no_color: bool) -> OutputFormat:
    """``AUTO`` becomes ``RICH`` on a colour terminal and ``PLAIN`` otherwise."""
    if requested != OutputFormat.AUTO:
        return requested
    if _stdout_is_terminal() and not no_color:
        return OutputFormat.RICH
    return OutputFormat.PLAIN


def _cell(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return "" if value is None else str(value)


class OutputManager:
    """Routes CLI output to stdout or stderr in the selected format.

    Args:
        format: Desired output format.
        no_color: Disable colour and Rich markup.
        quiet: Suppress info and success messages.
        verbose: Show debug messages.
    """

    _STYLES = {
        "info": ("", ""),
        "success": ("", "[green]{}[/green]"),
        "warning": ("Warning: ", "[yellow]Warning:[/yellow] {}"),
        "error": ("Error: ", "[bold red]Error:[/bold red] {}"),
        "debug": ("[debug] ", "[dim]\\[debug] {}[/dim]"),
    }

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self.no_color = no_color or _color_disabled_by_env()
        self.quiet = quiet
        self.verbose = verbose
        self.format = _resolve_format(format, self.no_color)
        self._console = Console(
            file=sys.stdout,
            no_color=self.no_color,
            force_terminal=self.format == OutputFormat.RICH,
        )
        self._err_console = Console(file=sys.stderr, no_color=self.no_color, stderr=True)

    # -- stdout -----------------------------------------------------------

    def format_response(self, data: Any) -> None:
        """Print a mapping, list or scalar to stdout in the active format."""
        if self.format == OutputFormat.JSON:
            self.print_data(json.dumps(data, indent=2, ensure_ascii=False, default=str))
            return

        if not isinstance(data, dict):
            items = data if isinstance(data, list) else [data]
            for item in items:
                self.print_data(_cell(item))
            return

        if self.format == OutputFormat.PLAIN:
            for key, value in data.items():
                self.print_data(f"{key}\t{_cell(value)}")
            return

        table = Table(show_header=False, box=None, pad_edge=False)
        table.add_column(style="bold cyan", no_wrap=True)
        table.add_column(overflow="fold")
        for key, value in data.items():
            table.add_row(str(key), _cell(value))
        self._console.print(table)

    def print_data(self, text: str) -> None:
        print(text, file=sys.stdout, flush=True)

    # -- stderr -----------------------------------------------------------

    def info(self, message: str) -> None:
        if not self.quiet:
            self._diagnostic("info", message)

    def success(self, message: str) -> None:
        if not self.quiet:
            self._diagnostic("success", message)

    def warning(self, message: str) -> None:
        self._diagnostic("warning", message)

    def error(self, message: str) -> None:
        self._diagnostic("error", message)

    def debug(self, message: str) -> None:
        if self.verbose:
            self._diagnostic("debug", message)

    def _diagnostic(self, kind: str, message: str) -> None:
        prefix, markup = self._STYLES[kind]
        if self.no_color or not markup:
            print(f"{prefix}{message}", file=sys.stderr, flush=True)
        else:
            self._err_console.print(markup.format(escape(message)), highlight=False)


_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the installed :class:`OutputManager`, creating a default one lazily."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    """Drop the global manager. Used by tests between CLI invocations."""
    global _output
    _output = None


def format_response(data: Any) -> None:
    get_output().format_response(data)


def print_data(text: str) -> None:
    get_output().print_data(text)


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)


def debug(message: str) -> None:
    get_output().debug(message)
