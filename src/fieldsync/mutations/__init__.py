"""Offline mutation queue."""

from fieldsync.mutations.queue import EnqueueListener, OfflineMutationQueue

__all__ = ["EnqueueListener", "OfflineMutationQueue"]
