"""Abstract persistence interfaces.

Every method is a coroutine: each store access is a suspension point of
the worker's event loop, so concurrent request handlers may interleave
between any two calls.  Implementations must make a single
:meth:`BlobStore.put` atomic (body and metadata land together or not at
all); no other cross-call atomicity is promised.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

Record = dict[str, Any]


class BlobStore(ABC):
    """Keyed record storage split into named partitions (one per cache tier)."""

    @abstractmethod
    async def get(self, partition: str, key: str) -> Optional[Record]:
        """Return the record stored under *key*, or ``None``."""

    @abstractmethod
    async def put(self, partition: str, key: str, record: Record) -> None:
        """Store *record* under *key*, replacing any previous record.

        Raises:
            QuotaExceeded: If the underlying storage refuses the write.
        """

    @abstractmethod
    async def delete(self, partition: str, key: str) -> bool:
        """Remove *key*. Returns ``True`` if a record was removed."""

    @abstractmethod
    async def keys(self, partition: str) -> list[str]:
        """Return every key currently stored in *partition*."""

    @abstractmethod
    async def partitions(self) -> list[str]:
        """Return the names of all non-dropped partitions."""

    @abstractmethod
    async def drop_partition(self, partition: str) -> bool:
        """Delete *partition* and everything in it."""

    def close(self) -> None:
        """Release any underlying resources."""


class PersistentQueue(ABC):
    """Durable record storage keyed by monotonically increasing integer ids.

    :meth:`items` returns records in the order they were appended.
    """

    @abstractmethod
    async def next_id(self) -> int:
        """Allocate a new id, unique for the lifetime of the store."""

    @abstractmethod
    async def append(self, record: Record) -> None:
        """Persist *record* under ``record["id"]``."""

    @abstractmethod
    async def get(self, item_id: int) -> Optional[Record]:
        """Return the record for *item_id*, or ``None``."""

    @abstractmethod
    async def update(self, record: Record) -> bool:
        """Replace an existing record in place. Returns ``False`` if it was removed meanwhile."""

    @abstractmethod
    async def remove(self, item_id: int) -> bool:
        """Delete the record for *item_id*."""

    @abstractmethod
    async def items(self) -> list[Record]:
        """Return all records in append order."""

    @abstractmethod
    async def clear(self) -> int:
        """Remove every record and return how many were removed."""

    def close(self) -> None:
        """Release any underlying resources."""
