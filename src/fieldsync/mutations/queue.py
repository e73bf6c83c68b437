"""Durable queue of mutating requests that failed while offline.

Each :class:`~fieldsync.models.QueuedMutation` is stored in an injected
:class:`~fieldsync.storage.PersistentQueue` and survives process restarts.
The queue is ordered by ``(enqueued_at, id)``; ids are issued by that
queue's :meth:`~fieldsync.storage.PersistentQueue.next_id` and are
never reused.

A mutation is classified once, at enqueue time, into a
:class:`~fieldsync.models.SyncTag` using the first matching
:class:`~fieldsync.models.TagRule`.  Its replay budget is fixed at the
same moment from :class:`~fieldsync.models.SyncConfig`.
"""

from __future__ import annotations

import logging
import re
from typing import Awaitable, Callable, Optional

import httpx

from fieldsync.clock import Clock, now_ms
from fieldsync.exceptions import QueueError
from fieldsync.models import QueueConfig, QueuedMutation, SyncConfig, SyncTag
from fieldsync.storage.base import PersistentQueue

logger = logging.getLogger(__name__)

EnqueueListener = Callable[[QueuedMutation], Awaitable[None]]

# Recomputed when the mutation is replayed.
_UNSTORED_HEADERS = frozenset({"host", "content-length", "connection", "transfer-encoding"})


class OfflineMutationQueue:
    """Enqueue, inspect, and settle offline mutations.

    Args:
        backend: Durable record storage.
        queue_config: Exclusions and URL-to-tag rules.
        sync_config: Replay budget per tag.
        clock: Source of epoch-millisecond timestamps.
        listener: Awaited after every successful enqueue.
    """

    def __init__(
        self,
        backend: PersistentQueue,
        queue_config: QueueConfig,
        sync_config: SyncConfig,
        clock: Optional[Clock] = None,
        listener: Optional[EnqueueListener] = None,
    ) -> None:
        self._backend = backend
        self._queue_config = queue_config
        self._sync_config = sync_config
        self._clock = clock or now_ms
        self._listener = listener
        self._excluded = [re.compile(p) for p in queue_config.excluded_patterns]
        self._rules = [(re.compile(rule.pattern), rule.tag) for rule in queue_config.tag_rules]

    def is_excluded(self, url: str) -> bool:
        return any(pattern.search(url) for pattern in self._excluded)

    def tag_for(self, url: str) -> SyncTag:
        """Return the sync tag of the first rule matching *url*."""
        for pattern, tag in self._rules:
            if pattern.search(url):
                return tag
        return self._queue_config.default_tag

    # --- Writes ---

    async def enqueue(self, request: httpx.Request) -> Optional[QueuedMutation]:
        """Persist *request* for later replay.

        Returns:
            The stored mutation, or ``None`` if the URL is excluded from
            queueing.

        Raises:
            QueueError: If the backend cannot persist the mutation.
        """
        url = str(request.url)
        if self.is_excluded(url):
            logger.debug("Not queueing excluded mutation %s %s", request.method, url)
            return None

        tag = self.tag_for(url)
        mutation = QueuedMutation(
            id=await self._backend.next_id(),
            url=url,
            method=request.method.upper(),
            headers={
                name: value
                for name, value in request.headers.items()
                if name.lower() not in _UNSTORED_HEADERS
            },
            body=request.content or None,
            tag=tag,
            enqueued_at=self._clock(),
            max_retries=self._sync_config.max_retries_for(tag),
        )
        await self._backend.append(mutation.model_dump())
        logger.info("Queued %s %s as #%d (%s)", mutation.method, url, mutation.id, tag.value)

        if self._listener is not None:
            await self._listener(mutation)
        return mutation

    async def record_failure(self, mutation: QueuedMutation, error: str) -> Optional[QueuedMutation]:
        """Count one failed replay attempt of *mutation*.

        Returns:
            The updated mutation, or ``None`` if it was removed meanwhile.
        """
        updated = mutation.model_copy(
            update={"retry_count": mutation.retry_count + 1, "last_error": error}
        )
        if not await self._backend.update(updated.model_dump()):
            return None
        return updated

    async def remove(self, mutation_id: int) -> bool:
        return await self._backend.remove(mutation_id)

    async def reset_retries(self, mutation_id: Optional[int] = None) -> int:
        """Zero the retry count of one mutation, or of every queued mutation.

        Returns:
            How many mutations were reset.

        Raises:
            QueueError: If *mutation_id* is not queued.
        """
        if mutation_id is not None:
            mutation = await self.get(mutation_id)
            if mutation is None:
                raise QueueError(f"No queued mutation with id {mutation_id}")
            targets = [mutation]
        else:
            targets = await self.pending()

        count = 0
        for mutation in targets:
            reset = mutation.model_copy(update={"retry_count": 0, "last_error": None})
            if await self._backend.update(reset.model_dump()):
                count += 1
        return count

    async def clear(self) -> int:
        return await self._backend.clear()

    # --- Reads ---

    async def get(self, mutation_id: int) -> Optional[QueuedMutation]:
        record = await self._backend.get(mutation_id)
        return QueuedMutation.model_validate(record) if record is not None else None

    async def pending(self, tag: Optional[SyncTag] = None) -> list[QueuedMutation]:
        """Return queued mutations ordered by ``(enqueued_at, id)``, optionally for one tag."""
        mutations = [QueuedMutation.model_validate(r) for r in await self._backend.items()]
        if tag is not None:
            mutations = [m for m in mutations if m.tag == tag]
        mutations.sort(key=lambda m: (m.enqueued_at, m.id))
        return mutations

    async def depth(self, tag: Optional[SyncTag] = None) -> int:
        return len(await self.pending(tag))

    @staticmethod
    def to_request(mutation: QueuedMutation) -> httpx.Request:
        """Rebuild the original request for replay."""
        return httpx.Request(
            mutation.method,
            mutation.url,
            headers=mutation.headers,
            content=mutation.body,
        )
