"""Cache commands -- tier statistics, clearing, and maintenance."""

from __future__ import annotations

from typing import Optional

import typer

from fieldsync.models import Tier, WorkerConfig
from fieldsync.output import info, print_tier_stats, success

cache_app = typer.Typer(no_args_is_help=True)


def _config(ctx: typer.Context) -> WorkerConfig:
    from fieldsync.config import resolve_config

    return resolve_config(ctx.obj.get("backend_host") if ctx.obj else None)


@cache_app.command("stats")
def cache_stats(ctx: typer.Context) -> None:
    """Show entry count, size, and budget for each tier."""
    from fieldsync.runtime import run_with_worker

    stats = run_with_worker(_config(ctx), lambda worker: worker.cache.stats())
    print_tier_stats(stats)


@cache_app.command("clear")
def cache_clear(
    ctx: typer.Context,
    tier: Optional[Tier] = typer.Option(None, "--tier", "-t", help="Clear only this tier."),
) -> None:
    """Delete cached responses (all tiers of every version by default)."""
    from fieldsync.runtime import run_with_worker

    force = ctx.obj.get("force", False) if ctx.obj else False
    if tier is None and not force and not typer.confirm("Clear every cache tier?"):
        info("Cancelled.")
        raise typer.Exit()

    dropped = run_with_worker(_config(ctx), lambda worker: worker.cache.clear(tier))
    success(f"Cleared {len(dropped)} partition(s).")
    for name in dropped:
        info(f"  {name}")


@cache_app.command("maintain")
def cache_maintain(ctx: typer.Context) -> None:
    """Evict every tier down to its budget and show the resulting stats."""
    from fieldsync.runtime import run_with_worker

    stats = run_with_worker(_config(ctx), lambda worker: worker.maintenance())
    print_tier_stats(stats)
