"""Disk-backed storage built on :mod:`diskcache`.

:class:`DiskBlobStore` keeps one :class:`diskcache.Cache` directory per
cache partition.  A cache entry (body and metadata) is stored as a single
value, so a write is one SQLite transaction and is never visible half
done.  diskcache's own culling is disabled (``eviction_policy="none"``);
tier budgets are enforced by :class:`~fieldsync.cache.EvictionManager`.

:class:`DiskQueue` keeps queued mutations in a :class:`diskcache.Index`,
which preserves insertion order across process restarts, and allocates
ids from a persisted counter.

diskcache is synchronous, so every call runs in a worker thread via
:func:`asyncio.to_thread` to keep store access a real suspension point.
"""

from __future__ import annotations

import asyncio
import shutil
import sqlite3
from pathlib import Path
from typing import Optional

import diskcache

from fieldsync.exceptions import QueueError, QuotaExceeded
from fieldsync.storage.base import BlobStore, PersistentQueue, Record


class DiskBlobStore(BlobStore):
    """Filesystem :class:`BlobStore` with one diskcache directory per partition.

    Args:
        root: Directory under which partition directories are created.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)
        self._caches: dict[str, diskcache.Cache] = {}

    def _open(self, partition: str) -> diskcache.Cache:
        cache = self._caches.get(partition)
        if cache is None:
            cache = diskcache.Cache(str(self._root / partition), eviction_policy="none")
            self._caches[partition] = cache
        return cache

    async def get(self, partition: str, key: str) -> Optional[Record]:
        if not (self._root / partition).is_dir():
            return None
        cache = self._open(partition)
        return await asyncio.to_thread(cache.get, key)

    async def put(self, partition: str, key: str, record: Record) -> None:
        cache = self._open(partition)
        try:
            await asyncio.to_thread(cache.set, key, record)
        except (OSError, sqlite3.Error) as exc:
            raise QuotaExceeded(f"Cannot store {key} in {partition}: {exc}") from exc

    async def delete(self, partition: str, key: str) -> bool:
        if not (self._root / partition).is_dir():
            return False
        cache = self._open(partition)
        return await asyncio.to_thread(cache.delete, key)

    async def keys(self, partition: str) -> list[str]:
        if not (self._root / partition).is_dir():
            return []
        cache = self._open(partition)
        return await asyncio.to_thread(lambda: list(cache.iterkeys()))

    async def partitions(self) -> list[str]:
        return sorted(p.name for p in self._root.iterdir() if p.is_dir())

    async def drop_partition(self, partition: str) -> bool:
        cache = self._caches.pop(partition, None)
        if cache is not None:
            cache.close()
        path = self._root / partition
        if not path.is_dir():
            return False
        await asyncio.to_thread(shutil.rmtree, path)
        return True

    def close(self) -> None:
        for cache in self._caches.values():
            cache.close()
        self._caches.clear()


class DiskQueue(PersistentQueue):
    """Durable :class:`PersistentQueue` backed by a :class:`diskcache.Index`.

    Args:
        directory: Directory holding the index and its id counter.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)
        self._index = diskcache.Index(str(self._directory / "items"))
        self._meta = diskcache.Cache(str(self._directory / "meta"))

    async def next_id(self) -> int:
        try:
            return await asyncio.to_thread(self._meta.incr, "next_id", 1, 0)
        except (OSError, sqlite3.Error) as exc:
            raise QueueError(f"Cannot allocate queue id: {exc}") from exc

    async def append(self, record: Record) -> None:
        try:
            await asyncio.to_thread(self._index.__setitem__, record["id"], record)
        except (OSError, sqlite3.Error) as exc:
            raise QueueError(f"Cannot persist mutation {record['id']}: {exc}") from exc

    async def get(self, item_id: int) -> Optional[Record]:
        return await asyncio.to_thread(self._index.get, item_id)

    async def update(self, record: Record) -> bool:
        def _update() -> bool:
            with self._index.transact():
                if record["id"] not in self._index:
                    return False
                self._index[record["id"]] = record
                return True

        try:
            return await asyncio.to_thread(_update)
        except (OSError, sqlite3.Error) as exc:
            raise QueueError(f"Cannot update mutation {record['id']}: {exc}") from exc

    async def remove(self, item_id: int) -> bool:
        removed = await asyncio.to_thread(self._index.pop, item_id, None)
        return removed is not None

    async def items(self) -> list[Record]:
        return await asyncio.to_thread(lambda: list(self._index.values()))

    async def clear(self) -> int:
        def _clear() -> int:
            with self._index.transact():
                count = len(self._index)
                self._index.clear()
                return count

        return await asyncio.to_thread(_clear)

    def close(self) -> None:
        self._index.cache.close()
        self._meta.close()
