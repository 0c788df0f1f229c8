"""Terminal output for the ``duallink`` CLI.

Records (session status, authorization headers, settings) go to stdout;
everything a human reads while a command runs (approval link, progress,
warnings, errors, next steps) goes to stderr so piping stdout stays clean.

Records are flat mappings. ``--json`` prints them verbatim for scripts.
The plain and rich renderings are meant for eyes and shoulder-surfers, so
values of :data:`SECRET_FIELDS` are masked there unless the caller asks
to reveal them.

Diagnostics are rendered as :class:`rich.text.Text`, never as markup, so
server messages containing square brackets print as sent.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

# Keys whose values can mint or replay a session.
SECRET_FIELDS = frozenset({"Authorization", "X-Sync-Id", "sync_id"})

# level -> (prefix, style, style applies to the message as well)
_LEVELS: dict[str, tuple[str, Optional[str], bool]] = {
    "info": ("", None, True),
    "success": ("", "green", True),
    "warning": ("Warning: ", "yellow", False),
    "error": ("Error: ", "bold red", False),
    "suggest": ("→ ", "dim", True),
    "debug": ("[debug] ", "dim", True),
}
_QUIET_LEVELS = frozenset({"info", "success", "suggest"})


class OutputFormat(str, Enum):
    """How records are written to stdout. ``AUTO`` picks rich on a colour TTY."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


def mask_secret(value: str) -> str:
    """Hide a credential, keeping an auth scheme and, for long values, the last 4 chars.

    >>> mask_secret("Bearer eyJhbGciOiJIUzI1NiJ9")
    'Bearer ****NiJ9'
    >>> mask_secret("token-0")
    '****'
    """
    scheme, sep, secret = value.rpartition(" ")
    tail = secret[-4:] if len(secret) > 8 else ""
    return f"{scheme}{sep}****{tail}"


class OutputManager:
    """Routes records to stdout and diagnostics to stderr.

    Args:
        format: Record format; ``AUTO`` resolves from the terminal.
        no_color: Plain ``print`` everywhere, no Rich styling.
        quiet: Drop info, success and suggestions. Warnings and errors stay.
        verbose: Show debug lines.
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
            rich_ok = _is_tty() and not self._no_color
            format = OutputFormat.RICH if rich_ok else OutputFormat.PLAIN
        self._format = format

        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=format == OutputFormat.RICH,
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    def record(self, data: Mapping[str, Any], reveal: bool = False) -> None:
        """Write one record to stdout.

        JSON output is never masked. Otherwise secret fields are masked
        unless *reveal* is set, and ``None`` shows as ``-``.
        """
        if self._format == OutputFormat.JSON:
            text = json.dumps(dict(data), indent=2, ensure_ascii=False, default=str)
            print(text, file=sys.stdout, flush=True)
            return

        rows = [(key, self._display(key, value, reveal)) for key, value in data.items()]
        if self._format == OutputFormat.PLAIN:
            for key, shown in rows:
                print(f"{key}\t{shown}", file=sys.stdout, flush=True)
            return

        table = Table(show_header=False, box=None, pad_edge=False)
        table.add_column(style="bold cyan", no_wrap=True)
        table.add_column(overflow="fold")
        for key, shown in rows:
            table.add_row(key, Text(shown))
        self._stdout.print(table)

    @staticmethod
    def _display(key: str, value: Any, reveal: bool) -> str:
        if value is None:
            return "-"
        text = str(value)
        if key in SECRET_FIELDS and not reveal:
            return mask_secret(text)
        return text

    def say(self, level: str, message: str) -> None:
        """Write a diagnostic line to stderr.

        ``--quiet`` drops info, success and suggest. ``debug`` needs
        ``--verbose``. Warnings and errors are always shown.
        """
        if level in _QUIET_LEVELS and self._quiet:
            return
        if level == "debug" and not self._verbose:
            return
        prefix, style, whole_line = _LEVELS[level]
        if self._no_color:
            print(f"{prefix}{message}", file=sys.stderr, flush=True)
            return
        line = Text(prefix, style=style or "")
        line.append(message, style=style if whole_line else None)
        self._stderr.print(line)


def _is_tty() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _should_disable_color() -> bool:
    """True when ``NO_COLOR`` is set to anything or ``TERM=dumb``."""
    if os.environ.get("NO_COLOR") is not None:
        return True
    return os.environ.get("TERM") == "dumb"


_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the process-wide manager, creating a default one on first use."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    global _output
    _output = None


def record(data: Mapping[str, Any], reveal: bool = False) -> None:
    get_output().record(data, reveal=reveal)


def _level(name: str) -> Callable[[str], None]:
    def say(message: str) -> None:
        get_output().say(name, message)

    say.__name__ = say.__qualname__ = name
    return say


info = _level("info")
success = _level("success")
warning = _level("warning")
error = _level("error")
suggest = _level("suggest")
debug = _level("debug")
