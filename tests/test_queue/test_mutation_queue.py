"""Tests for OfflineMutationQueue: classification, ordering, durability."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from fieldsync.exceptions import QueueError
from fieldsync.models import QueueConfig, SyncConfig, SyncTag
from fieldsync.mutations import OfflineMutationQueue
from fieldsync.storage import DiskQueue, MemoryQueue

BASE = "http://app.test"


def _queue(clock, backend=None, listener=None) -> OfflineMutationQueue:
    return OfflineMutationQueue(
        backend if backend is not None else MemoryQueue(),
        QueueConfig(),
        SyncConfig(),
        clock=clock,
        listener=listener,
    )


def _post(path: str, body: bytes = b'{"ok": true}', **headers: str) -> httpx.Request:
    return httpx.Request("POST", f"{BASE}{path}", content=body, headers=headers)


# ------------------------------------------------------------------ #
# Classification
# ------------------------------------------------------------------ #


class TestClassification:
    @pytest.mark.parametrize(
        ("path", "tag"),
        [
            ("/api/inspections", SyncTag.INSPECTION_DATA),
            ("/api/inspections/12/items", SyncTag.INSPECTION_DATA),
            ("/api/photos/upload", SyncTag.MEDIA_UPLOAD),
            ("/api/checklists/3", SyncTag.CHECKLIST_UPDATE),
            ("/api/analytics", SyncTag.ANALYTICS),
            ("/api/batch", SyncTag.BATCH_OPERATION),
            ("/api/profile", SyncTag.USER_ACTION),
        ],
    )
    def test_tag_for_url(self, clock, path: str, tag: SyncTag) -> None:
        assert _queue(clock).tag_for(f"{BASE}{path}") == tag

    def test_auth_urls_are_excluded(self, clock) -> None:
        queue = _queue(clock)
        assert queue.is_excluded(f"{BASE}/auth/login")
        assert not queue.is_excluded(f"{BASE}/api/inspections")


# ------------------------------------------------------------------ #
# Enqueue
# ------------------------------------------------------------------ #


class TestEnqueue:
    def test_snapshot_of_request(self, clock) -> None:
        async def scenario() -> None:
            queue = _queue(clock)
            mutation = await queue.enqueue(
                _post("/api/inspections", b'{"score": 4}', authorization="Bearer t")
            )

            assert mutation.id == 1
            assert mutation.method == "POST"
            assert mutation.url == f"{BASE}/api/inspections"
            assert mutation.body == b'{"score": 4}'
            assert mutation.headers["authorization"] == "Bearer t"
            assert "content-length" not in mutation.headers
            assert "host" not in mutation.headers
            assert mutation.enqueued_at == clock.now
            assert mutation.retry_count == 0
            assert mutation.max_retries == 5
            assert mutation.tag == SyncTag.INSPECTION_DATA

        asyncio.run(scenario())

    def test_excluded_mutation_is_not_queued(self, clock) -> None:
        async def scenario() -> None:
            queue = _queue(clock)
            assert await queue.enqueue(_post("/auth/login")) is None
            assert await queue.depth() == 0

        asyncio.run(scenario())

    def test_listener_sees_every_enqueue(self, clock) -> None:
        seen = []

        async def listener(mutation) -> None:
            seen.append(mutation.id)

        async def scenario() -> None:
            queue = _queue(clock, listener=listener)
            await queue.enqueue(_post("/api/inspections"))
            await queue.enqueue(_post("/auth/logout"))
            await queue.enqueue(_post("/api/checklists"))

        asyncio.run(scenario())
        assert seen == [1, 2]

    def test_replay_request_matches_original(self, clock) -> None:
        async def scenario() -> None:
            queue = _queue(clock)
            original = httpx.Request(
                "PATCH", f"{BASE}/api/checklists/9", content=b"done", headers={"x-a": "1"}
            )
            mutation = await queue.enqueue(original)
            replay = OfflineMutationQueue.to_request(mutation)

            assert replay.method == "PATCH"
            assert replay.url == original.url
            assert replay.content == b"done"
            assert replay.headers["x-a"] == "1"

        asyncio.run(scenario())

    def test_backend_failure_propagates(self, clock) -> None:
        class BrokenQueue(MemoryQueue):
            async def append(self, record) -> None:
                raise QueueError("disk full")

        async def scenario() -> None:
            await _queue(clock, backend=BrokenQueue()).enqueue(_post("/api/inspections"))

        with pytest.raises(QueueError, match="disk full"):
            asyncio.run(scenario())


# ------------------------------------------------------------------ #
# Ordering and reads
# ------------------------------------------------------------------ #


class TestPending:
    def test_ordered_by_enqueue_time_then_id(self, clock) -> None:
        async def scenario() -> None:
            backend = MemoryQueue()
            queue = _queue(clock, backend=backend)
            await queue.enqueue(_post("/api/inspections/a"))
            clock.advance(5)
            await queue.enqueue(_post("/api/inspections/b"))
            await queue.enqueue(_post("/api/inspections/c"))

            # An item appended out of time order still sorts by enqueued_at.
            late = (await queue.get(1)).model_copy(update={"id": 99, "enqueued_at": clock.now - 1})
            await backend.append(late.model_dump())

            pending = await queue.pending()
            assert [m.id for m in pending] == [1, 99, 2, 3]

        asyncio.run(scenario())

    def test_filter_by_tag(self, clock) -> None:
        async def scenario() -> None:
            queue = _queue(clock)
            await queue.enqueue(_post("/api/inspections"))
            await queue.enqueue(_post("/api/photos"))
            await queue.enqueue(_post("/api/inspections/2"))

            assert [m.id for m in await queue.pending(SyncTag.INSPECTION_DATA)] == [1, 3]
            assert await queue.depth(SyncTag.MEDIA_UPLOAD) == 1
            assert await queue.depth() == 3

        asyncio.run(scenario())


# ------------------------------------------------------------------ #
# Settling
# ------------------------------------------------------------------ #


class TestSettling:
    def test_record_failure_increments(self, clock) -> None:
        async def scenario() -> None:
            queue = _queue(clock)
            mutation = await queue.enqueue(_post("/api/inspections"))
            updated = await queue.record_failure(mutation, "HTTP 500")

            assert updated.retry_count == 1
            stored = await queue.get(mutation.id)
            assert stored.retry_count == 1
            assert stored.last_error == "HTTP 500"

        asyncio.run(scenario())

    def test_record_failure_on_removed_item(self, clock) -> None:
        async def scenario() -> None:
            queue = _queue(clock)
            mutation = await queue.enqueue(_post("/api/inspections"))
            await queue.remove(mutation.id)
            assert await queue.record_failure(mutation, "gone") is None

        asyncio.run(scenario())

    def test_reset_retries(self, clock) -> None:
        async def scenario() -> None:
            queue = _queue(clock)
            first = await queue.enqueue(_post("/api/inspections"))
            second = await queue.enqueue(_post("/api/inspections/2"))
            await queue.record_failure(first, "x")
            await queue.record_failure(second, "y")

            assert await queue.reset_retries(first.id) == 1
            assert (await queue.get(first.id)).retry_count == 0
            assert (await queue.get(second.id)).retry_count == 1

            assert await queue.reset_retries() == 2
            assert (await queue.get(second.id)).last_error is None

        asyncio.run(scenario())

    def test_reset_unknown_id(self, clock) -> None:
        async def scenario() -> None:
            await _queue(clock).reset_retries(404)

        with pytest.raises(QueueError):
            asyncio.run(scenario())


# ------------------------------------------------------------------ #
# Durability
# ------------------------------------------------------------------ #


class TestDurability:
    def test_queue_survives_worker_restart(self, clock, tmp_path: Path) -> None:
        async def before_restart() -> None:
            backend = DiskQueue(tmp_path / "queue")
            queue = _queue(clock, backend=backend)
            await queue.enqueue(_post("/api/inspections", b"one"))
            clock.advance(1)
            await queue.enqueue(_post("/api/photos", b"two"))
            backend.close()

        async def after_restart() -> list:
            backend = DiskQueue(tmp_path / "queue")
            try:
                return await _queue(clock, backend=backend).pending()
            finally:
                backend.close()

        asyncio.run(before_restart())
        pending = asyncio.run(after_restart())

        assert [(m.id, m.body, m.tag) for m in pending] == [
            (1, b"one", SyncTag.INSPECTION_DATA),
            (2, b"two", SyncTag.MEDIA_UPLOAD),
        ]
