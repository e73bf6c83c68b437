"""Queue commands -- inspect, cancel, reset, and replay queued mutations.

``fieldsync queue sync`` plays the part of a connectivity-restored signal:
it drains one tag (``--tag``) or every tag with queued work and prints the
status messages a foreground client would receive.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import typer

from fieldsync.exceptions import FieldsyncError
from fieldsync.exit_codes import EXIT_INVALID_USAGE, EXIT_SYNC_FAILURE
from fieldsync.models import QueuedMutation, SyncTag, WorkerConfig
from fieldsync.output import (
    OutputFormat,
    client_message,
    error,
    format_response,
    get_output,
    info,
    print_records,
    success,
    warning,
)

queue_app = typer.Typer(no_args_is_help=True)


def _config(ctx: typer.Context) -> WorkerConfig:
    from fieldsync.config import resolve_config

    return resolve_config(ctx.obj.get("backend_host") if ctx.obj else None)


def _timestamp(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


_LIST_COLUMNS = ["id", "tag", "method", "url", "enqueued", "retries", "last_error"]


def _summary(mutation: QueuedMutation) -> dict[str, Any]:
    return mutation.model_dump(mode="json", exclude={"body", "headers"})


def _row(mutation: QueuedMutation) -> dict[str, Any]:
    return {
        "id": mutation.id,
        "tag": mutation.tag.value,
        "method": mutation.method,
        "url": mutation.url,
        "enqueued": _timestamp(mutation.enqueued_at),
        "retries": f"{mutation.retry_count}/{mutation.max_retries}",
        "last_error": mutation.last_error,
    }


@queue_app.command("list")
def queue_list(
    ctx: typer.Context,
    tag: Optional[SyncTag] = typer.Option(None, "--tag", "-t", help="Only this sync tag."),
) -> None:
    """List queued mutations in replay order."""
    from fieldsync.runtime import run_with_worker

    pending = run_with_worker(_config(ctx), lambda worker: worker.mutations.pending(tag))
    if get_output().format == OutputFormat.JSON:
        format_response([_summary(m) for m in pending])
        return
    if not pending:
        info("Queue is empty.")
        return
    print_records([_row(m) for m in pending], _LIST_COLUMNS, title="Queued mutations")


@queue_app.command("depth")
def queue_depth(
    ctx: typer.Context,
    tag: Optional[SyncTag] = typer.Option(None, "--tag", "-t", help="Only this sync tag."),
) -> None:
    """Print the number of queued mutations."""
    from fieldsync.runtime import run_with_worker

    depth = run_with_worker(_config(ctx), lambda worker: worker.mutations.depth(tag))
    format_response({"depth": depth, "tag": tag.value if tag else None})


@queue_app.command("cancel")
def queue_cancel(
    ctx: typer.Context,
    mutation_id: int = typer.Argument(help="Id of the queued mutation to discard."),
) -> None:
    """Discard one queued mutation without replaying it."""
    from fieldsync.runtime import run_with_worker

    removed = run_with_worker(_config(ctx), lambda worker: worker.mutations.remove(mutation_id))
    if not removed:
        error(f"No queued mutation with id {mutation_id}")
        raise typer.Exit(code=EXIT_INVALID_USAGE)
    success(f"Cancelled mutation {mutation_id}.")


@queue_app.command("reset")
def queue_reset(
    ctx: typer.Context,
    mutation_id: Optional[int] = typer.Argument(None, help="Reset only this mutation."),
) -> None:
    """Zero the retry count of one mutation or of the whole queue."""
    from fieldsync.runtime import run_with_worker

    try:
        count = run_with_worker(
            _config(ctx), lambda worker: worker.mutations.reset_retries(mutation_id)
        )
    except FieldsyncError as exc:
        error(str(exc))
        raise typer.Exit(code=EXIT_INVALID_USAGE) from None
    success(f"Reset retries for {count} mutation(s).")


@queue_app.command("sync")
def queue_sync(
    ctx: typer.Context,
    tag: Optional[SyncTag] = typer.Option(
        None, "--tag", "-t", help="Drain only this sync tag (default: every tag with work)."
    ),
) -> None:
    """Replay queued mutations now."""
    from fieldsync.runtime import run_with_worker
    from fieldsync.sync.broadcast import CallbackBroadcaster
    from fieldsync.worker import OfflineWorker, SyncEvent

    async def _drain(worker: OfflineWorker) -> list[Any]:
        if tag is not None:
            result = await worker.handle_sync(SyncEvent(tag.value))
            return [result] if result is not None else []
        return await worker.connectivity_restored()

    results = run_with_worker(_config(ctx), _drain, broadcaster=CallbackBroadcaster(client_message))

    summary = {
        "succeeded": sum(len(r.succeeded) for r in results),
        "retried": sum(len(r.retried) for r in results),
        "dropped": sum(len(r.dropped) for r in results),
    }
    format_response(summary)
    if summary["dropped"]:
        warning(f"{summary['dropped']} mutation(s) exceeded their retry budget and were dropped.")
        raise typer.Exit(code=EXIT_SYNC_FAILURE)
