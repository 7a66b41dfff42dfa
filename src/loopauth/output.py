"""Terminal output for the loopauth CLI.

Token responses, the configuration and the environment list are *data* and
go to stdout, so ``loopauth --json login`` can be piped into another tool.
Sign-in URLs, progress, warnings and errors are *diagnostics* and go to
stderr.

The format is chosen once per invocation in :func:`~loopauth.app.main_callback`:
JSON with ``--json``, tab-separated text with ``--plain`` or when stdout is
not a terminal, Rich tables otherwise. ``NO_COLOR``, ``TERM=dumb`` and
``--no-color`` turn colour off.

Error descriptions can come straight from the identity provider, so
diagnostics are escaped before Rich renders them.

The login library itself never prints; only the CLI layer uses this module.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table


class OutputFormat(str, Enum):
    """Output formats. ``AUTO`` becomes ``RICH`` on a colour TTY, else ``PLAIN``."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


# kind -> (Rich markup, plain text, shown under --quiet)
_DIAGNOSTICS: dict[str, tuple[str, str, bool]] = {
    "info": ("{}", "{}", False),
    "success": ("[green]{}[/green]", "{}", False),
    "suggest": ("[dim]→ {}[/dim]", "→ {}", False),
    "warning": ("[yellow]Warning:[/yellow] {}", "Warning: {}", True),
    "error": ("[bold red]Error:[/bold red] {}", "Error: {}", True),
    "debug": ("[dim]\\[debug] {}[/dim]", "[debug] {}", True),
}


class OutputManager:
    """Writes login results to stdout and diagnostics to stderr.

    Args:
        format: Desired output format.
        no_color: Disable colour and Rich markup.
        quiet: Hide info, success and suggestion lines. Warnings and errors
            are always shown.
        verbose: Show debug lines (resolved tenant, authority, client id).
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose

        if format == OutputFormat.AUTO:
            use_rich = _is_tty() and not self._no_color
            format = OutputFormat.RICH if use_rich else OutputFormat.PLAIN
        self._format = format

        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=(format == OutputFormat.RICH),
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    # ------------------------------------------------------------------ #
    # Data (stdout)
    # ------------------------------------------------------------------ #

    def format_response(self, data: Mapping[str, Any]) -> None:
        """Write one record, such as a token response or the configuration.

        JSON mode dumps the mapping as is. Plain mode prints ``key<TAB>value``
        lines and Rich mode a two-column table; nested values (``timeouts``)
        are shown as compact JSON in both.
        """
        if self._format == OutputFormat.JSON:
            self._write(json.dumps(dict(data), indent=2, ensure_ascii=False, default=str))
            return

        rows = [[key, _cell(value)] for key, value in data.items()]
        if self._format == OutputFormat.PLAIN:
            for key, value in rows:
                self._write(f"{key}\t{value}")
        else:
            self._stdout.print(_rich_table(["field", "value"], rows))

    def print_table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        title: Optional[str] = None,
    ) -> None:
        """Write rows: a list of objects in JSON mode, TSV in plain mode."""
        if self._format == OutputFormat.JSON:
            records = [dict(zip(headers, row)) for row in rows]
            self._write(json.dumps(records, indent=2, ensure_ascii=False))
        elif self._format == OutputFormat.PLAIN:
            for row in [headers, *rows]:
                self._write("\t".join(row))
        else:
            self._stdout.print(_rich_table(headers, rows, title))

    # ------------------------------------------------------------------ #
    # Diagnostics (stderr)
    # ------------------------------------------------------------------ #

    def info(self, message: str) -> None:
        self._diagnose("info", message)

    def success(self, message: str) -> None:
        self._diagnose("success", message)

    def suggest(self, message: str) -> None:
        self._diagnose("suggest", message)

    def warning(self, message: str) -> None:
        self._diagnose("warning", message)

    def error(self, message: str) -> None:
        self._diagnose("error", message)

    def debug(self, message: str) -> None:
        if self._verbose:
            self._diagnose("debug", message)

    def _diagnose(self, kind: str, message: str) -> None:
        markup, plain, always = _DIAGNOSTICS[kind]
        if self._quiet and not always:
            return
        if self._no_color:
            print(plain.format(message), file=sys.stderr, flush=True)
        else:
            self._stderr.print(markup.format(escape(message)))

    def _write(self, text: str) -> None:
        print(text, file=sys.stdout, flush=True)


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def _rich_table(
    headers: Sequence[str],
    rows: Sequence[Sequence[str]],
    title: Optional[str] = None,
) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    for header in headers:
        table.add_column(header)
    for row in rows:
        table.add_row(*(escape(cell) for cell in row))
    return table


def _is_tty() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _should_disable_color() -> bool:
    """True when ``NO_COLOR`` is set (any value) or ``TERM=dumb``."""
    return os.environ.get("NO_COLOR") is not None or os.environ.get("TERM") == "dumb"


# ------------------------------------------------------------------ #
# Process-wide instance, installed by the root CLI callback
# ------------------------------------------------------------------ #

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the installed :class:`OutputManager`, creating a default one."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    """Forget the installed manager; the next call creates a fresh one."""
    global _output
    _output = None


def format_response(data: Mapping[str, Any]) -> None:
    get_output().format_response(data)


def print_table(
    headers: Sequence[str],
    rows: Sequence[Sequence[str]],
    title: Optional[str] = None,
) -> None:
    get_output().print_table(headers, rows, title)


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def suggest(message: str) -> None:
    get_output().suggest(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)


def debug(message: str) -> None:
    get_output().debug(message)
