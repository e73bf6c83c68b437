"""Assembly of a disk-backed :class:`~fieldsync.worker.OfflineWorker`.

Used by the CLI.  Cache tiers live under the cache directory and the
mutation queue under the data directory (see :mod:`fieldsync.config`).
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

import httpx

from fieldsync.client.fetcher import HttpFetcher
from fieldsync.config import get_cache_dir, get_data_dir
from fieldsync.models import WorkerConfig
from fieldsync.storage.disk import DiskBlobStore, DiskQueue
from fieldsync.sync.broadcast import ClientBroadcaster, InMemoryBroadcaster
from fieldsync.worker import OfflineWorker

T = TypeVar("T")


def make_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Transport for the worker's HTTP client. ``None`` selects httpx's default."""
    return None


@asynccontextmanager
async def disk_worker(
    config: WorkerConfig,
    broadcaster: Optional[ClientBroadcaster] = None,
) -> AsyncIterator[OfflineWorker]:
    """Open the disk stores and a fetcher, yield a worker, and close everything on exit."""
    blob_store = DiskBlobStore(get_cache_dir() / "blobs")
    queue = DiskQueue(get_data_dir() / "queue")
    try:
        async with HttpFetcher(config.network, transport=make_transport()) as fetcher:
            worker = OfflineWorker(
                config,
                blob_store,
                queue,
                broadcaster or InMemoryBroadcaster(),
                fetcher,
            )
            try:
                yield worker
            finally:
                await worker.wait_background()
    finally:
        blob_store.close()
        queue.close()


def run_with_worker(
    config: WorkerConfig,
    operation: Callable[[OfflineWorker], Awaitable[T]],
    broadcaster: Optional[ClientBroadcaster] = None,
) -> T:
    """Run *operation* against a disk-backed worker on a fresh event loop."""

    async def _run() -> T:
        async with disk_worker(config, broadcaster) as worker:
            return await operation(worker)

    return asyncio.run(_run())
