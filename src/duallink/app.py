"""The ``duallink`` command line.

Mounts the ``auth`` and ``config`` groups under one Typer app. The root
callback turns the global flags into an :class:`~duallink.output.OutputManager`,
logging levels, and a ``ctx.obj`` dict the sub-commands read their session
and API overrides from.

:func:`main` is the console-script entry point. Ctrl-C exits 130 through
:class:`SystemExit`, which ``asyncio.run`` lets through after cancelling
the pending handshake. Anything that is not a
:class:`~duallink.exceptions.DuallinkError` leaves an owner-only crash log
behind.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path
from types import FrameType
from typing import Optional

import typer

from duallink import __version__
from duallink.commands.auth import auth_app
from duallink.commands.config import config_app
from duallink.exceptions import DuallinkError
from duallink.exit_codes import EXIT_GENERIC_FAILURE, EXIT_INVALID_USAGE
from duallink.output import OutputFormat, OutputManager, error, set_output

EXIT_INTERRUPTED = 130

app = typer.Typer(
    name="duallink",
    help="Browser-approved sessions with dual-channel code verification.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)
app.add_typer(auth_app, name="auth", help="Log in, inspect, refresh, and end the session.")
app.add_typer(config_app, name="config", help="Show and change saved settings.")


def _show_version(value: bool) -> None:
    if value:
        typer.echo(f"duallink {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    """Send ``duallink.*`` log records to stderr; DEBUG with ``--verbose``."""
    logging.basicConfig(
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("duallink").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _record_format(json_output: bool, plain_output: bool) -> OutputFormat:
    if json_output and plain_output:
        typer.echo("Error: --json and --plain cannot be combined.", err=True)
        raise typer.Exit(code=EXIT_INVALID_USAGE)
    if json_output:
        return OutputFormat.JSON
    if plain_output:
        return OutputFormat.PLAIN
    return OutputFormat.AUTO


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False, "--version", callback=_show_version, is_eager=True, help="Print the version."
    ),
    api_url: Optional[str] = typer.Option(
        None, "--api-url", help="Authorization service base URL (overrides DUALLINK_API_URL)."
    ),
    session: Optional[str] = typer.Option(
        None, "--session", "-s", help="Name of the stored session (overrides DUALLINK_SESSION)."
    ),
    json_output: bool = typer.Option(False, "--json", help="Print records as JSON, unmasked."),
    plain_output: bool = typer.Option(False, "--plain", help="Print records as key<TAB>value."),
    no_color: bool = typer.Option(False, "--no-color", help="No colours or styling."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only records, warnings and errors."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log handshake and HTTP detail."),
    no_input: bool = typer.Option(
        False, "--no-input", help="Never prompt; fail when a value is missing."
    ),
) -> None:
    """Browser-approved sessions with dual-channel code verification."""
    fmt = _record_format(json_output, plain_output)
    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))
    _configure_logging(verbose)

    ctx.obj = {"api_url": api_url, "session": session, "no_input": no_input, "verbose": verbose}


def _write_crash_log() -> Path:
    """Save the active traceback under ``<data_dir>/logs``, readable by the owner only."""
    from duallink.config import atomic_write, get_data_dir

    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    path = get_data_dir() / "logs" / f"crash-{stamp}.log"
    atomic_write(path, traceback.format_exc(), mode=0o600)
    return path


def _exit_on_interrupt(signum: int, frame: Optional[FrameType]) -> None:
    # Click would otherwise report "Aborted!" with exit code 1.
    sys.stderr.write("\nCancelled.\n")
    sys.exit(EXIT_INTERRUPTED)


def main() -> None:
    """Console-script entry point. Always ends in :class:`SystemExit`."""
    signal.signal(signal.SIGINT, _exit_on_interrupt)
    try:
        app()
    except DuallinkError as exc:
        error(str(exc))
        sys.exit(exc.exit_code)
    except Exception:
        try:
            where = f"Debug log: {_write_crash_log()}"
        except OSError as log_exc:
            where = f"Could not write a debug log: {log_exc}"
        error(f"Unexpected error. {where}")
        sys.exit(EXIT_GENERIC_FAILURE)
