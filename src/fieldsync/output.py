"""Terminal output for the fieldsync CLI.

stdout carries data only (tier stats, queue listings, response bodies) so
it can be piped into other tools; stderr carries diagnostics and the live
sync messages a foreground client would see.  Rich formatting is used
when stdout is an interactive terminal and colour is not disabled by
``NO_COLOR``, ``TERM=dumb``, or ``--no-color``.

:class:`OutputManager` is created once in
:func:`~fieldsync.app.main_callback` and installed with :func:`set_output`;
commands call the module-level helpers.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from typing import Any, Optional

from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

# Style and prefix per diagnostic level.
_LEVELS = {
    "info": (None, ""),
    "success": ("green", ""),
    "warning": ("yellow", "Warning: "),
    "error": ("bold red", "Error: "),
    "debug": ("dim", "[debug] "),
    "sync": ("cyan", "sync: "),
}

_TIER_COLUMNS = ["tier", "partition", "entries", "size", "budget", "ttl"]


class OutputFormat(str, Enum):
    """``AUTO`` becomes ``RICH`` on an interactive TTY and ``PLAIN`` otherwise."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


class OutputManager:
    """Writes command results to stdout and diagnostics to stderr.

    Args:
        format: Desired output format.
        no_color: Disable colour and Rich markup.
        quiet: Suppress informational, success, and sync messages.
        verbose: Show debug messages.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _color_disabled_by_env()
        self._quiet = quiet
        self._verbose = verbose

        if format == OutputFormat.AUTO:
            interactive = sys.stdout.isatty() if hasattr(sys.stdout, "isatty") else False
            format = OutputFormat.RICH if interactive and not self._no_color else OutputFormat.PLAIN
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

    # --- stdout ---

    def format_response(self, data: Any) -> None:
        """Print a JSON-compatible value (or a response body string)."""
        if self._format == OutputFormat.JSON:
            self._write(data if isinstance(data, str) else _to_json(data))
        elif self._format == OutputFormat.RICH and isinstance(data, (dict, list)):
            self._stdout.print(Syntax(_to_json(data), "json", theme="monokai", word_wrap=True))
        elif isinstance(data, dict):
            for key, value in data.items():
                self._write(f"{key}\t{_cell(value)}")
        elif isinstance(data, list):
            for item in data:
                self._write(_cell(item))
        else:
            self._write(str(data))

    def print_records(
        self,
        records: list[dict[str, Any]],
        columns: list[str],
        title: Optional[str] = None,
    ) -> None:
        """Print *records* as a table restricted to *columns*.

        JSON output keeps every field of every record; plain output is a
        header line followed by tab-separated rows.
        """
        if self._format == OutputFormat.JSON:
            self._write(_to_json(records))
            return
        rows = [[_cell(record.get(column)) for column in columns] for record in records]
        if self._format == OutputFormat.PLAIN:
            for row in [columns, *rows]:
                self._write("\t".join(row))
            return
        table = Table(title=title, header_style="bold cyan")
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*row)
        self._stdout.print(table)

    def print_tier_stats(self, stats: dict[str, dict[str, Any]]) -> None:
        """Print the per-tier report of :meth:`~fieldsync.cache.CacheManager.stats`."""
        if self._format == OutputFormat.JSON:
            self._write(_to_json(stats))
            return
        records = [
            {
                "tier": tier,
                "partition": row["partition"],
                "entries": row["entries"],
                "size": format_size(row["size_bytes"]),
                "budget": format_size(row["max_size_bytes"]),
                "ttl": f"{row['ttl_seconds']}s",
            }
            for tier, row in stats.items()
        ]
        self.print_records(records, _TIER_COLUMNS, title="Cache tiers")

    # --- stderr ---

    def client_message(self, message: dict[str, Any]) -> None:
        """Show one broadcast client message as a single ``sync:`` line."""
        payload = message.get("payload") or {}
        details = " ".join(f"{key}={value}" for key, value in payload.items())
        self.diagnostic("sync", f"{message['type']} {message.get('tag', '')} {details}".strip())

    def diagnostic(self, level: str, message: str) -> None:
        """Write *message* to stderr at *level* (a key of ``_LEVELS``).

        ``warning`` and ``error`` are never suppressed; ``debug`` needs
        ``--verbose``; everything else is hidden by ``--quiet``.
        """
        if level == "debug" and not self._verbose:
            return
        if self._quiet and level not in ("warning", "error"):
            return
        style, prefix = _LEVELS[level]
        text = f"{prefix}{message}"
        if self._no_color:
            print(text, file=sys.stderr, flush=True)
        else:
            self._stderr.print(text, style=style, markup=False, highlight=False)

    def _write(self, text: str) -> None:
        print(text, file=sys.stdout, flush=True)


def format_size(size_bytes: int) -> str:
    """Render a byte count with a binary unit, e.g. ``1.5 MiB``."""
    size = float(size_bytes)
    for unit in ("B", "KiB", "MiB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GiB"


def _to_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def _color_disabled_by_env() -> bool:
    return os.environ.get("NO_COLOR") is not None or os.environ.get("TERM") == "dumb"


# --- Installed instance ---

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
    """Forget the installed manager. Used between tests."""
    global _output
    _output = None


def format_response(data: Any) -> None:
    get_output().format_response(data)


def print_records(
    records: list[dict[str, Any]], columns: list[str], title: Optional[str] = None
) -> None:
    get_output().print_records(records, columns, title)


def print_tier_stats(stats: dict[str, dict[str, Any]]) -> None:
    get_output().print_tier_stats(stats)


def client_message(message: dict[str, Any]) -> None:
    get_output().client_message(message)


def info(message: str) -> None:
    get_output().diagnostic("info", message)


def success(message: str) -> None:
    get_output().diagnostic("success", message)


def warning(message: str) -> None:
    get_output().diagnostic("warning", message)


def error(message: str) -> None:
    get_output().diagnostic("error", message)


def debug(message: str) -> None:
    get_output().diagnostic("debug", message)
