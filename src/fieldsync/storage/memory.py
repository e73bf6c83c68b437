"""In-process implementations of the storage interfaces.

Used by the test suite and by embedders that do not need durability.
:class:`MemoryBlobStore` can enforce a byte quota so that storage-full
behaviour can be exercised without filling a disk.
"""

from __future__ import annotations

import copy
from typing import Optional

from fieldsync.exceptions import QuotaExceeded
from fieldsync.storage.base import BlobStore, PersistentQueue, Record


class MemoryBlobStore(BlobStore):
    """Dictionary-backed :class:`BlobStore`.

    Args:
        quota_bytes: When set, a :meth:`put` that would push the total of
            all stored ``size_bytes`` above this value raises
            :class:`~fieldsync.exceptions.QuotaExceeded`.
    """

    def __init__(self, quota_bytes: Optional[int] = None) -> None:
        self._partitions: dict[str, dict[str, Record]] = {}
        self._quota_bytes = quota_bytes

    async def get(self, partition: str, key: str) -> Optional[Record]:
        record = self._partitions.get(partition, {}).get(key)
        return copy.deepcopy(record) if record is not None else None

    async def put(self, partition: str, key: str, record: Record) -> None:
        if self._quota_bytes is not None:
            existing = self._partitions.get(partition, {}).get(key)
            used = self.used_bytes() - (existing or {}).get("size_bytes", 0)
            if used + record.get("size_bytes", 0) > self._quota_bytes:
                raise QuotaExceeded(
                    f"Storage quota of {self._quota_bytes} bytes exceeded writing {key}"
                )
        self._partitions.setdefault(partition, {})[key] = copy.deepcopy(record)

    async def delete(self, partition: str, key: str) -> bool:
        return self._partitions.get(partition, {}).pop(key, None) is not None

    async def keys(self, partition: str) -> list[str]:
        return list(self._partitions.get(partition, {}))

    async def partitions(self) -> list[str]:
        return sorted(self._partitions)

    async def drop_partition(self, partition: str) -> bool:
        return self._partitions.pop(partition, None) is not None

    def used_bytes(self) -> int:
        """Total ``size_bytes`` across all partitions."""
        return sum(
            record.get("size_bytes", 0)
            for records in self._partitions.values()
            for record in records.values()
        )


class MemoryQueue(PersistentQueue):
    """Dictionary-backed :class:`PersistentQueue` (insertion ordered)."""

    def __init__(self) -> None:
        self._records: dict[int, Record] = {}
        self._last_id = 0

    async def next_id(self) -> int:
        self._last_id += 1
        return self._last_id

    async def append(self, record: Record) -> None:
        self._records[record["id"]] = copy.deepcopy(record)

    async def get(self, item_id: int) -> Optional[Record]:
        record = self._records.get(item_id)
        return copy.deepcopy(record) if record is not None else None

    async def update(self, record: Record) -> bool:
        if record["id"] not in self._records:
            return False
        self._records[record["id"]] = copy.deepcopy(record)
        return True

    async def remove(self, item_id: int) -> bool:
        return self._records.pop(item_id, None) is not None

    async def items(self) -> list[Record]:
        return [copy.deepcopy(record) for record in self._records.values()]

    async def clear(self) -> int:
        count = len(self._records)
        self._records.clear()
        return count
