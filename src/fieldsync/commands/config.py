"""Config commands -- view and modify the worker configuration.

``fieldsync config show`` prints the effective configuration (user file,
project file, and environment overrides applied).  ``set`` and ``reset``
edit the user file only.
"""

from __future__ import annotations

import json
from typing import Any

import typer

from fieldsync.exceptions import FieldsyncError
from fieldsync.exit_codes import EXIT_INVALID_USAGE
from fieldsync.output import error, format_response, info, success

config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Show the effective configuration.

    Example::

        fieldsync config show
        fieldsync --json config show
    """
    from fieldsync.config import config_path, resolve_config

    try:
        config = resolve_config(ctx.obj.get("backend_host") if ctx.obj else None)
    except FieldsyncError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    info(f"Config file: {config_path()}")
    format_response(config.model_dump(mode="json"))


def _coerce(current: Any, value: str, key: str) -> Any:
    """Convert *value* to the type of the field's current value."""
    if isinstance(current, bool):
        return value.lower() in ("true", "1", "yes")
    if isinstance(current, int):
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"Expected integer for {key}, got: {value}") from None
    if isinstance(current, float):
        try:
            return float(value)
        except ValueError:
            raise ValueError(f"Expected number for {key}, got: {value}") from None
    if isinstance(current, (list, dict)):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            if isinstance(current, list):
                return [item.strip() for item in value.split(",") if item.strip()]
            raise ValueError(f"Expected a JSON object for {key}") from None
    return value


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="Config key in dot notation, e.g. 'cache.static.ttl_seconds'."),
    value: str = typer.Argument(help="Value to set. Lists accept JSON or comma-separated items."),
) -> None:
    """Set one value in the user configuration file.

    Example::

        fieldsync config set router.backend_host api.example.com
        fieldsync config set network.network_first_timeout 5
        fieldsync config set cache.runtime.max_size_bytes 10485760
    """
    from fieldsync.config import load_worker_config, save_worker_config
    from fieldsync.models import WorkerConfig

    try:
        data = load_worker_config().model_dump(mode="json")
    except FieldsyncError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    parts = key.split(".")
    target = data
    for part in parts[:-1]:
        if not isinstance(target.get(part), dict):
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=EXIT_INVALID_USAGE)
        target = target[part]

    final = parts[-1]
    if final not in target:
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=EXIT_INVALID_USAGE)

    try:
        target[final] = _coerce(target[final], value, key)
        config = WorkerConfig.model_validate(data)
    except ValueError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=EXIT_INVALID_USAGE) from None

    save_worker_config(config)
    success(f"Set {key} = {target[final]}")


@config_app.command("reset")
def config_reset(ctx: typer.Context) -> None:
    """Reset the user configuration to defaults. Asks first unless ``--force``."""
    from fieldsync.config import save_worker_config
    from fieldsync.models import WorkerConfig

    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force and not typer.confirm("Reset all config to defaults?"):
        info("Cancelled.")
        raise typer.Exit()

    save_worker_config(WorkerConfig())
    success("Configuration reset to defaults.")
