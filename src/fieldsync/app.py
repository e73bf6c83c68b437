"""Typer application and console-script entry point for fieldsync.

The root callback configures output and logging from the global flags and
stores shared options in ``ctx.obj``.  Sub-command groups live in
:mod:`fieldsync.commands`.

:func:`main` is the ``fieldsync`` console script.  A
:class:`~fieldsync.exceptions.FieldsyncError` ends the process with its
``exit_code``; any other exception is written to a crash log under the
data directory.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from fieldsync import __version__
from fieldsync.exit_codes import EXIT_GENERIC_FAILURE

app = typer.Typer(
    name="fieldsync",
    help="Offline caching and mutation sync for field inspection clients.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"fieldsync {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool, quiet: bool) -> None:
    """Send library log records to stderr through Rich."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING
    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        show_time=verbose,
        rich_tracebacks=verbose,
    )
    logger = logging.getLogger("fieldsync")
    logger.handlers = [handler]
    logger.setLevel(level)
    logger.propagate = False


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
    backend_host: Optional[str] = typer.Option(
        None, "--backend-host", help="Host of the Backend API (overrides config)."
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmations."),
) -> None:
    """Install the output manager and logging, and record shared options."""
    from fieldsync.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))
    _configure_logging(verbose, quiet)

    ctx.ensure_object(dict)
    ctx.obj["backend_host"] = backend_host
    ctx.obj["force"] = force
    ctx.obj["verbose"] = verbose


@app.command("version")
def version_command(ctx: typer.Context) -> None:
    """Show the package version and the configured worker version."""
    from fieldsync.config import resolve_config
    from fieldsync.output import format_response

    config = resolve_config(ctx.obj.get("backend_host") if ctx.obj else None)
    format_response({"fieldsync": __version__, "worker": config.version})


from fieldsync.commands.cache import cache_app  # noqa: E402
from fieldsync.commands.config import config_app  # noqa: E402
from fieldsync.commands.fetch import fetch_command  # noqa: E402
from fieldsync.commands.queue import queue_app  # noqa: E402

app.add_typer(config_app, name="config", help="Configuration management.")
app.add_typer(cache_app, name="cache", help="Inspect and manage the cache tiers.")
app.add_typer(queue_app, name="queue", help="Inspect, manage, and replay queued mutations.")
app.command("fetch")(fetch_command)


def _setup_signal_handlers() -> None:
    def _handler(signum: int, frame: Any) -> None:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log() -> str:
    from fieldsync.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / f"crash-{datetime.now().strftime('%Y%m%d-%H%M%S')}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """Entry point of the ``fieldsync`` console script.

    Raises:
        SystemExit: Always, either from Typer or with the error's exit code.
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from fieldsync.exceptions import FieldsyncError
        from fieldsync.output import error

        if isinstance(exc, FieldsyncError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log()
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
