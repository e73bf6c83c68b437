"""Replay of queued mutations when connectivity returns.

:class:`SyncCoordinator` drains the offline queue for one
:class:`~fieldsync.models.SyncTag` (or for every tag when the tag is
``None``).  Items are replayed one at a time in ``(enqueued_at, id)``
order:

* 2xx: the item is removed and ``SYNC_ITEM_SUCCEEDED`` is broadcast.
* Failure with attempts left: ``retry_count`` is incremented, the item is
  kept and ``SYNC_ITEM_RETRY`` is broadcast.
* Failure on the last attempt: the item is removed, the
  :class:`~fieldsync.exceptions.MaxRetriesExceeded` is logged and
  ``SYNC_ITEM_FAILED`` is broadcast.

Non-2xx statuses count as failures.  Each item is attempted at most once
per drain; an item that is retried waits for the next trigger.

Only one drain per tag runs at a time.  A trigger that arrives while that
tag is draining is coalesced: it returns immediately and starts nothing.
Items enqueued during a drain are picked up before the drain reports
``SYNC_COMPLETE``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from fieldsync.client.fetcher import HttpFetcher
from fieldsync.exceptions import MaxRetriesExceeded, NetworkError
from fieldsync.models import MessageType, QueuedMutation, SyncTag
from fieldsync.mutations.queue import OfflineMutationQueue
from fieldsync.sync.broadcast import ClientBroadcaster

logger = logging.getLogger(__name__)


@dataclass
class DrainResult:
    """Outcome of one :meth:`SyncCoordinator.drain` call, as lists of mutation ids."""

    tag: Optional[SyncTag]
    coalesced: bool = False
    succeeded: list[int] = field(default_factory=list)
    retried: list[int] = field(default_factory=list)
    dropped: list[int] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.succeeded) + len(self.retried) + len(self.dropped)


class SyncCoordinator:
    """Drains the offline mutation queue per sync tag.

    Args:
        mutations: The queue to drain.
        fetcher: Used for the replays, one attempt per item.
        broadcaster: Receives drain and per-item status messages.
        timeout: Seconds allowed for each replay.
    """

    def __init__(
        self,
        mutations: OfflineMutationQueue,
        fetcher: HttpFetcher,
        broadcaster: ClientBroadcaster,
        timeout: Optional[float] = None,
    ) -> None:
        self._mutations = mutations
        self._fetcher = fetcher
        self._broadcaster = broadcaster
        self._timeout = timeout
        self._draining: set[Optional[SyncTag]] = set()
        self._in_flight: set[int] = set()

    def is_draining(self, tag: Optional[SyncTag] = None) -> bool:
        return tag in self._draining

    async def drain(self, tag: Optional[SyncTag] = None) -> DrainResult:
        """Replay every queued mutation for *tag* (all tags when ``None``)."""
        if tag in self._draining:
            logger.debug("Sync for %s already running, coalescing trigger", _tag_name(tag))
            return DrainResult(tag=tag, coalesced=True)

        self._draining.add(tag)
        result = DrainResult(tag=tag)
        try:
            depth = await self._mutations.depth(tag)
            logger.info("Starting sync for %s (%d queued)", _tag_name(tag), depth)
            await self._publish(MessageType.SYNC_REQUEST, tag, {"depth": depth})

            attempted: set[int] = set()
            while True:
                batch = [
                    m for m in await self._mutations.pending(tag)
                    if m.id not in attempted and m.id not in self._in_flight
                ]
                if not batch:
                    break
                for mutation in batch:
                    attempted.add(mutation.id)
                    await self._replay(mutation, result)

            remaining = await self._mutations.depth(tag)
            await self._publish(
                MessageType.SYNC_COMPLETE,
                tag,
                {
                    "succeeded": len(result.succeeded),
                    "retried": len(result.retried),
                    "dropped": len(result.dropped),
                    "remaining": remaining,
                },
            )
            logger.info(
                "Sync for %s complete: %d succeeded, %d retried, %d dropped",
                _tag_name(tag), len(result.succeeded), len(result.retried), len(result.dropped),
            )
        finally:
            self._draining.discard(tag)
        return result

    async def notify_depth(self, tag: Optional[SyncTag] = None) -> None:
        """Broadcast the current queue depth."""
        payload: dict[str, Any] = {"depth": await self._mutations.depth()}
        if tag is not None:
            payload["tagDepth"] = await self._mutations.depth(tag)
        await self._publish(MessageType.QUEUE_DEPTH_CHANGED, tag, payload)

    # --- Internals ---

    async def _replay(self, mutation: QueuedMutation, result: DrainResult) -> None:
        if mutation.id in self._in_flight:
            return
        self._in_flight.add(mutation.id)
        try:
            # Cancelled, or settled by another drain, since the batch was listed.
            current = await self._mutations.get(mutation.id)
            if current is None:
                return

            request = OfflineMutationQueue.to_request(current)
            try:
                response = await self._fetcher.fetch(request, timeout=self._timeout)
            except NetworkError as exc:
                error = str(exc)
            else:
                if response.is_success:
                    await self._succeeded(current, response.status_code, result)
                    return
                error = f"HTTP {response.status_code}"

            await self._failed(current, error, result)
        finally:
            self._in_flight.discard(mutation.id)

    async def _succeeded(self, mutation: QueuedMutation, status: int, result: DrainResult) -> None:
        await self._mutations.remove(mutation.id)
        result.succeeded.append(mutation.id)
        logger.info("Replayed %s %s (#%d)", mutation.method, mutation.url, mutation.id)
        await self._publish(
            MessageType.SYNC_ITEM_SUCCEEDED,
            mutation.tag,
            {"id": mutation.id, "url": mutation.url, "status": status},
        )
        await self.notify_depth(mutation.tag)

    async def _failed(self, mutation: QueuedMutation, error: str, result: DrainResult) -> None:
        attempts = mutation.retry_count + 1
        if attempts < mutation.max_retries:
            updated = await self._mutations.record_failure(mutation, error)
            if updated is None:
                return
            result.retried.append(mutation.id)
            logger.warning(
                "Replay of #%d failed (%d/%d): %s",
                mutation.id, updated.retry_count, updated.max_retries, error,
            )
            await self._publish(
                MessageType.SYNC_ITEM_RETRY,
                mutation.tag,
                {
                    "id": mutation.id,
                    "url": mutation.url,
                    "retryCount": updated.retry_count,
                    "maxRetries": updated.max_retries,
                    "error": error,
                },
            )
            return

        await self._mutations.remove(mutation.id)
        result.dropped.append(mutation.id)
        failure = MaxRetriesExceeded(mutation.id, attempts, error)
        logger.error("%s %s: %s", mutation.method, mutation.url, failure)
        await self._publish(
            MessageType.SYNC_ITEM_FAILED,
            mutation.tag,
            {
                "id": mutation.id,
                "url": mutation.url,
                "attempts": attempts,
                "error": str(failure),
            },
        )
        await self.notify_depth(mutation.tag)

    async def _publish(
        self,
        message_type: MessageType,
        tag: Optional[SyncTag],
        payload: dict[str, Any],
    ) -> None:
        await self._broadcaster.publish(
            message_type, tag.value if tag is not None else None, payload
        )


def _tag_name(tag: Optional[SyncTag]) -> str:
    return tag.value if tag is not None else "all tags"
