"""Shared pytest fixtures and test doubles."""

import asyncio
import uuid

import httpx
import pytest

from streamrelay.relay.subscribers import CLOSE_NORMAL, SinkBase


class FakeSink(SinkBase):
    """In-memory sink that records what it receives."""

    def __init__(self, name: str = "sink", fail: bool = False, delay: float = 0.0):
        super().__init__(sink_id=name)
        self.received: list[bytes] = []
        self.closed_with = None
        self.fail = fail
        self.delay = delay
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def disconnect(self):
        self._open = False

    async def send(self, chunk: bytes) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("socket closed")
        self.received.append(chunk)

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        self._open = False
        self.closed_with = (code, reason)


class FakeUpstream:
    """
    Upstream source driven by the test.

    ``push`` queues a chunk, ``end`` finishes the body and ``fail`` makes the
    next read raise. Every GET gets its own body fed from the same queue.
    """

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.queue: asyncio.Queue = asyncio.Queue()
        self.requests: list[httpx.Request] = []
        self.reads = 0

    async def _body(self):
        while True:
            item = await self.queue.get()
            self.reads += 1
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code)
        return httpx.Response(
            200, headers={"content-type": "video/mp2t"}, content=self._body()
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def push(self, *chunks: bytes) -> None:
        for chunk in chunks:
            self.queue.put_nowait(chunk)

    def end(self) -> None:
        self.queue.put_nowait(None)

    def fail(self, exc: Exception = None) -> None:
        self.queue.put_nowait(exc or httpx.ReadError("connection reset"))


async def _wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` on the event loop until it is true or time runs out."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.fixture
def make_sink():
    """Factory for FakeSink instances."""
    return FakeSink


@pytest.fixture
def upstream():
    """A test-driven upstream source (create inside an async test)."""
    return FakeUpstream()


@pytest.fixture
def unique_id():
    """Generate a unique test ID."""
    return f"test-{uuid.uuid4().hex[:12]}"


@pytest.fixture
def wait_until():
    """Async polling helper: ``await wait_until(lambda: cond)``."""
    return _wait_until
