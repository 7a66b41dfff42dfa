"""``loopauth`` command-line entry point.

:data:`app` is the Typer application behind the ``loopauth`` console script.
Its root callback turns the global flags into an
:class:`~loopauth.output.OutputManager` and, with ``--verbose``, sends the
login library's log records to stderr.

:func:`main` wraps the app. Ctrl-C exits with 130, a
:class:`~loopauth.exceptions.LoopauthError` that escapes a command exits with
its own code, and anything else leaves a crash report under the data
directory.
"""

from __future__ import annotations

import logging
import platform
import signal
import sys
import traceback
from datetime import datetime
from typing import Any

import typer

from loopauth import __version__
from loopauth.commands import report_error
from loopauth.commands.config import config_app
from loopauth.commands.login import (
    check_redirect_command,
    environments_command,
    login_command,
)
from loopauth.exceptions import LoopauthError
from loopauth.exit_codes import EXIT_CANCELED, EXIT_GENERIC_FAILURE
from loopauth.output import OutputFormat, OutputManager, error, set_output


app = typer.Typer(
    name="loopauth",
    help="Sign in to Azure AD and ADFS through a loopback redirect.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"loopauth {__version__}")
        raise typer.Exit()


def _output_format(json_output: bool, plain_output: bool) -> OutputFormat:
    if json_output:
        return OutputFormat.JSON
    if plain_output:
        return OutputFormat.PLAIN
    return OutputFormat.AUTO


def _show_library_logs(verbose: bool) -> None:
    """Route ``loopauth.*`` debug records (server, flow, probe) to stderr.

    Without ``--verbose`` nothing is attached; warnings still reach stderr
    through logging's last-resort handler.
    """
    if not verbose:
        return
    library = logging.getLogger("loopauth")
    library.setLevel(logging.DEBUG)
    if not library.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        library.addHandler(handler)


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
    json_output: bool = typer.Option(
        False, "--json", help="Print tokens, config and tables as JSON."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Print tab-separated text."
    ),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Only print data, warnings and errors."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show the resolved authority and server logs."
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmations."),
) -> None:
    """Sign in to Azure AD and ADFS through a loopback redirect."""
    set_output(
        OutputManager(
            format=_output_format(json_output, plain_output),
            no_color=no_color,
            quiet=quiet,
            verbose=verbose,
        )
    )
    _show_library_logs(verbose)

    ctx.ensure_object(dict)
    ctx.obj["force"] = force
    ctx.obj["verbose"] = verbose


app.command("login")(login_command)
app.command("check-redirect")(check_redirect_command)
app.command("environments")(environments_command)
app.add_typer(config_app, name="config", help="View and change login defaults.")


def _setup_signal_handlers() -> None:
    """Exit with 130 on Ctrl-C, even while the login waits on the browser."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELED)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash report for *exc* and return its path.

    The report starts with the loopauth and Python versions and the command
    line, followed by the traceback.
    """
    from loopauth.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    path = logs_dir / f"crash-{datetime.now():%Y%m%d-%H%M%S}.log"
    header = (
        f"loopauth {__version__} on Python {platform.python_version()}\n"
        f"argv: {' '.join(sys.argv)}\n\n"
    )
    path.write_text(
        header + "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    )
    return str(path)


def main() -> None:
    """Console-script entry point; always ends in :class:`SystemExit`."""
    _setup_signal_handlers()
    try:
        app()
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELED)
    except LoopauthError as exc:
        sys.exit(report_error(exc))
    except Exception as exc:
        path = _write_crash_log(exc)
        error(f"Unexpected error. Crash report: {path}")
        sys.exit(EXIT_GENERIC_FAILURE)
