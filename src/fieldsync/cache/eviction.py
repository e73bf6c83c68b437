"""Size-budget enforcement for cache tiers.

The tier size is recomputed from the stored records on every pass; no
running counter is kept.  Passes may run concurrently from several
in-flight writes.  Two passes can pick the same oldest key, in which case
the second delete is a no-op and the tier ends up slightly further under
budget.
"""

from __future__ import annotations

import logging

from fieldsync.storage.base import BlobStore

logger = logging.getLogger(__name__)


class EvictionManager:
    """Removes the oldest entries of a partition until it fits its budget.

    Args:
        store: The blob store holding the tier partitions.
    """

    def __init__(self, store: BlobStore) -> None:
        self._store = store

    async def measure(self, partition: str) -> tuple[int, list[tuple[int, str, int]]]:
        """Rescan *partition*.

        Returns:
            ``(total_bytes, entries)`` where ``entries`` holds
            ``(cached_at, key, size_bytes)`` sorted oldest first.
        """
        entries: list[tuple[int, str, int]] = []
        for key in await self._store.keys(partition):
            record = await self._store.get(partition, key)
            if record is None:
                # Removed by a concurrent writer since keys() returned.
                continue
            entries.append((record["cached_at"], key, record["size_bytes"]))
        entries.sort()
        return sum(size for _, _, size in entries), entries

    async def enforce(self, partition: str, max_size_bytes: int) -> list[str]:
        """Evict oldest-first until the partition total is within *max_size_bytes*.

        A call on a partition already within budget does nothing.

        Returns:
            The keys removed by this pass.
        """
        total, entries = await self.measure(partition)
        if total <= max_size_bytes:
            return []

        evicted: list[str] = []
        for cached_at, key, size in entries:
            if total <= max_size_bytes:
                break
            if await self._store.delete(partition, key):
                evicted.append(key)
            total -= size

        logger.debug(
            "Evicted %d entries from %s (now %d/%d bytes)",
            len(evicted), partition, total, max_size_bytes,
        )
        return evicted
