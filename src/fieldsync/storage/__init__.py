"""Persistence interfaces and their implementations.

:class:`BlobStore` holds cache-tier records and :class:`PersistentQueue`
holds queued mutation records.  Both are injected into the worker so the
disk-backed implementations (:mod:`diskcache`) can be swapped for the
in-memory fakes in tests.
"""

from fieldsync.storage.base import BlobStore, PersistentQueue
from fieldsync.storage.disk import DiskBlobStore, DiskQueue
from fieldsync.storage.memory import MemoryBlobStore, MemoryQueue

__all__ = [
    "BlobStore",
    "DiskBlobStore",
    "DiskQueue",
    "MemoryBlobStore",
    "MemoryQueue",
    "PersistentQueue",
]
