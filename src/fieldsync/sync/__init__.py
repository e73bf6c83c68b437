"""Sync coordination and client broadcasting."""

from fieldsync.sync.broadcast import CallbackBroadcaster, ClientBroadcaster, InMemoryBroadcaster
from fieldsync.sync.coordinator import DrainResult, SyncCoordinator

__all__ = [
    "CallbackBroadcaster",
    "ClientBroadcaster",
    "DrainResult",
    "InMemoryBroadcaster",
    "SyncCoordinator",
]
