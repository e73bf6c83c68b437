"""``fieldsync fetch`` -- send one request through the offline worker.

The request is routed exactly as an intercepted client request would be,
so repeated runs show cache hits, stale copies, offline fallbacks, and
queued mutations.
"""

from __future__ import annotations

from typing import Optional

import httpx
import typer

from fieldsync.cache.entry import HEADER_CACHE_STALE, HEADER_CACHED
from fieldsync.exit_codes import EXIT_INVALID_USAGE
from fieldsync.output import debug, error, format_response, info


def _parse_headers(raw: list[str]) -> list[tuple[str, str]]:
    headers = []
    for item in raw:
        name, sep, value = item.partition(":")
        if not sep or not name.strip():
            raise ValueError(f"Header must look like 'Name: value', got: {item}")
        headers.append((name.strip(), value.strip()))
    return headers


def fetch_command(
    ctx: typer.Context,
    url: str = typer.Argument(help="Absolute http(s) URL, or a path resolved against the origin."),
    method: str = typer.Option("GET", "--method", "-X", help="HTTP method."),
    data: Optional[str] = typer.Option(None, "--data", "-d", help="Request body."),
    header: list[str] = typer.Option([], "--header", "-H", help="Extra header 'Name: value'."),
    navigate: bool = typer.Option(
        False, "--navigate", help="Mark the request as a top-level page navigation."
    ),
) -> None:
    """Route one request through the worker and print the response body."""
    from fieldsync.config import resolve_config
    from fieldsync.runtime import run_with_worker
    from fieldsync.worker import OfflineWorker

    config = resolve_config(ctx.obj.get("backend_host") if ctx.obj else None)
    try:
        headers = _parse_headers(header)
    except ValueError as exc:
        error(str(exc))
        raise typer.Exit(code=EXIT_INVALID_USAGE) from None
    if navigate:
        headers.append(("sec-fetch-mode", "navigate"))
        headers.append(("accept", "text/html"))

    target = httpx.URL(config.origin).join(url)
    request = httpx.Request(
        method.upper(),
        target,
        headers=headers,
        content=data.encode() if data is not None else None,
    )

    async def _fetch(worker: OfflineWorker) -> httpx.Response:
        return await worker.fetch(request)

    response = run_with_worker(config, _fetch)

    source = "network"
    if response.headers.get(HEADER_CACHE_STALE) == "true":
        source = "stale cache"
    elif HEADER_CACHED in response.headers:
        source = "cache"
    info(f"HTTP {response.status_code} ({source})")
    for name, value in response.headers.multi_items():
        debug(f"{name}: {value}")

    if "json" in response.headers.get("content-type", ""):
        try:
            format_response(response.json())
            return
        except ValueError:
            pass
    format_response(response.text)
