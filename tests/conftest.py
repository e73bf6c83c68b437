"""Shared test fixtures for fieldsync.

Provides an isolated config environment, a manually driven clock, a fake
network behind :class:`httpx.MockTransport`, stores that interleave or hold
their writes, and a factory for fully wired in-memory workers.  Async code
is driven with :func:`asyncio.run` inside ordinary test functions.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional

import httpx
import pytest

from fieldsync.client.fetcher import HttpFetcher
from fieldsync.models import WorkerConfig
from fieldsync.output import OutputFormat, OutputManager, reset_output, set_output
from fieldsync.storage import BlobStore, MemoryBlobStore, MemoryQueue, PersistentQueue
from fieldsync.sync import ClientBroadcaster, InMemoryBroadcaster
from fieldsync.worker import OfflineWorker

ORIGIN = "http://app.test"


# ---------------------------------------------------------------------------
# Global state resets
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Drop the global OutputManager, which holds references to the streams
    CliRunner swapped in for the previous test."""
    yield
    reset_output()


@pytest.fixture(autouse=True)
def _reset_logging_between_tests() -> None:
    """Undo the Rich handler the CLI callback installs on the package logger."""
    yield
    logger = logging.getLogger("fieldsync")
    logger.handlers = []
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# Config isolation
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point every XDG directory at *tmp_path* and clear FIELDSYNC_* variables.

    Returns:
        The tmp_path root, which is also the working directory.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in ["FIELDSYNC_BACKEND_HOST", "FIELDSYNC_DATA_DIR"]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr("fieldsync.config._is_xdg_platform", lambda: True)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def quiet_output() -> OutputManager:
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def cli_runner():
    from typer.testing import CliRunner

    return CliRunner()


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class ManualClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


# ---------------------------------------------------------------------------
# Fake network
# ---------------------------------------------------------------------------


class FakeNetwork:
    """Route table behind an :class:`httpx.MockTransport` that records every call
    together with the timeouts it was sent with.

    Routes are keyed by ``(method, path)``.  Unknown routes answer 404.
    Setting :attr:`offline` makes every call fail with a connection error;
    setting :attr:`gate` to an :class:`asyncio.Event` holds every call
    until the event is set.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.calls: list[httpx.Request] = []
        self.timeouts: list[dict[str, Optional[float]]] = []
        self.offline = False
        self.gate: Optional[asyncio.Event] = None

    def respond(
        self,
        method: str,
        path: str,
        status: int = 200,
        *,
        text: Optional[str] = None,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        def _build(request: httpx.Request) -> httpx.Response:
            if json is not None:
                return httpx.Response(status, json=json, headers=headers)
            if text is not None:
                return httpx.Response(status, text=text, headers=headers)
            return httpx.Response(status, content=content or b"", headers=headers)

        self.routes[(method, path)] = _build

    def fail(self, method: str, path: str) -> None:
        def _raise(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        self.routes[(method, path)] = _raise

    def time_out(self, method: str, path: str) -> None:
        def _raise(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        self.routes[(method, path)] = _raise

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        self.timeouts.append(request.extensions.get("timeout", {}))
        if self.gate is not None:
            await self.gate.wait()
        if self.offline:
            raise httpx.ConnectError("offline", request=request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, text="not found")
        return route(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, method: Optional[str] = None, path: Optional[str] = None) -> int:
        return sum(
            1
            for call in self.calls
            if (method is None or call.method == method)
            and (path is None or call.url.path == path)
        )

    def read_timeout(self, method: str, path: str) -> Optional[float]:
        """Read timeout the most recent ``method path`` call was sent with."""
        for call, timeout in zip(reversed(self.calls), reversed(self.timeouts)):
            if call.method == method and call.url.path == path:
                return timeout.get("read")
        raise AssertionError(f"no {method} {path} call was made")


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


# ---------------------------------------------------------------------------
# Test stores
# ---------------------------------------------------------------------------


class YieldingBlobStore(MemoryBlobStore):
    """:class:`MemoryBlobStore` that gives up the event loop inside every read and write.

    :attr:`max_active` records the highest number of writes in flight at once.
    """

    def __init__(self, quota_bytes: Optional[int] = None) -> None:
        super().__init__(quota_bytes)
        self.active = 0
        self.max_active = 0

    async def get(self, partition: str, key: str):
        await asyncio.sleep(0)
        return await super().get(partition, key)

    async def put(self, partition: str, key: str, record: dict[str, Any]) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0)
            await super().put(partition, key, record)
        finally:
            self.active -= 1

    async def delete(self, partition: str, key: str) -> bool:
        await asyncio.sleep(0)
        return await super().delete(partition, key)

    async def keys(self, partition: str) -> list[str]:
        await asyncio.sleep(0)
        return await super().keys(partition)


class YieldingQueue(MemoryQueue):
    """:class:`MemoryQueue` that gives up the event loop inside every operation."""

    async def next_id(self) -> int:
        await asyncio.sleep(0)
        return await super().next_id()

    async def append(self, record: dict[str, Any]) -> None:
        await asyncio.sleep(0)
        await super().append(record)

    async def get(self, item_id: int):
        await asyncio.sleep(0)
        return await super().get(item_id)

    async def update(self, record: dict[str, Any]) -> bool:
        await asyncio.sleep(0)
        return await super().update(record)

    async def remove(self, item_id: int) -> bool:
        await asyncio.sleep(0)
        return await super().remove(item_id)

    async def items(self) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        return await super().items()


class HeldBlobStore(MemoryBlobStore):
    """:class:`MemoryBlobStore` whose writes can be held open.

    After :meth:`hold`, every :meth:`put` sets :attr:`started` and then
    waits for :attr:`release` before writing.
    """

    def __init__(self) -> None:
        super().__init__()
        self.started: Optional[asyncio.Event] = None
        self.release: Optional[asyncio.Event] = None

    def hold(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def put(self, partition: str, key: str, record: dict[str, Any]) -> None:
        if self.release is not None:
            self.started.set()
            await self.release.wait()
        await super().put(partition, key, record)


@pytest.fixture
def yielding_store() -> YieldingBlobStore:
    return YieldingBlobStore()


@pytest.fixture
def yielding_queue() -> YieldingQueue:
    return YieldingQueue()


@pytest.fixture
def held_store() -> HeldBlobStore:
    return HeldBlobStore()


# ---------------------------------------------------------------------------
# Worker factory
# ---------------------------------------------------------------------------


@pytest.fixture
def make_worker(network: FakeNetwork, clock: ManualClock):
    """Factory returning an async context manager that yields a wired worker.

    Example::

        async with make_worker() as worker:
            response = await worker.fetch(httpx.Request("GET", f"{ORIGIN}/"))
    """

    @asynccontextmanager
    async def _make(
        config: Optional[WorkerConfig] = None,
        blob_store: Optional[BlobStore] = None,
        queue: Optional[PersistentQueue] = None,
        broadcaster: Optional[ClientBroadcaster] = None,
    ) -> AsyncIterator[OfflineWorker]:
        config = config or WorkerConfig(origin=ORIGIN)
        async with HttpFetcher(config.network, transport=network.transport) as fetcher:
            yield OfflineWorker(
                config,
                blob_store if blob_store is not None else MemoryBlobStore(),
                queue if queue is not None else MemoryQueue(),
                broadcaster if broadcaster is not None else InMemoryBroadcaster(clock),
                fetcher,
                clock=clock,
            )

    return _make


def drain_inbox(inbox: asyncio.Queue) -> list[dict[str, Any]]:
    """Return every message currently waiting in a client inbox."""
    messages = []
    while not inbox.empty():
        messages.append(inbox.get_nowait())
    return messages


@pytest.fixture
def inbox_reader() -> Callable[[asyncio.Queue], list[dict[str, Any]]]:
    return drain_inbox
