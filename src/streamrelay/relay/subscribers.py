"""
Subscriber sinks and the per-session subscriber set.

A sink is one client's output channel. The SubscriberSet fans a chunk out
to every sink it holds and drops sinks whose send fails.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Optional

from streamrelay.logger import get_logger

logger = get_logger(__name__)

CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001

DROPPED_REASON = "Subscriber dropped"


class SinkBase(ABC):
    """
    Abstract output channel for one subscriber.

    Implementations deliver opaque binary chunks and can be told to close.
    """

    def __init__(self, sink_id: Optional[str] = None):
        self.sink_id = sink_id or uuid.uuid4().hex

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while the sink can still receive chunks."""

    @abstractmethod
    async def send(self, chunk: bytes) -> None:
        """Deliver one chunk. Raises if the sink can no longer receive."""

    @abstractmethod
    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        """Close the sink. Must not raise."""


class SubscriberSet:
    """
    Set of live sinks attached to one session.

    Membership changes are plain synchronous set operations, so they cannot
    interleave with each other on the event loop. ``broadcast`` and
    ``close_all`` work on a snapshot taken before their first await, so
    concurrent add/remove never changes the collection being iterated.
    """

    def __init__(self, session_id: str = "", send_timeout: Optional[float] = None):
        self.session_id = session_id
        self.send_timeout = send_timeout
        self._sinks: set[SinkBase] = set()

    def __len__(self) -> int:
        return len(self._sinks)

    def __contains__(self, sink: object) -> bool:
        return sink in self._sinks

    def __bool__(self) -> bool:
        return bool(self._sinks)

    def snapshot(self) -> list[SinkBase]:
        return list(self._sinks)

    def add(self, sink: SinkBase) -> int:
        """Add a sink and return the new count."""
        self._sinks.add(sink)
        return len(self._sinks)

    def remove(self, sink: SinkBase) -> int:
        """Remove a sink if present and return the new count."""
        self._sinks.discard(sink)
        return len(self._sinks)

    async def _send(self, sink: SinkBase, chunk: bytes) -> None:
        if self.send_timeout:
            await asyncio.wait_for(sink.send(chunk), timeout=self.send_timeout)
        else:
            await sink.send(chunk)

    async def _close(self, sink: SinkBase, code: int, reason: str) -> None:
        if self.send_timeout:
            await asyncio.wait_for(sink.close(code, reason), timeout=self.send_timeout)
        else:
            await sink.close(code, reason)

    async def broadcast(self, chunk: bytes) -> int:
        """
        Send a chunk to every current sink.

        Sinks that are closed or whose send fails (or times out) are removed
        and closed.
        A failure never stops delivery to the remaining sinks.

        Returns:
            Number of sinks the chunk was delivered to.
        """
        failed: list[SinkBase] = []
        delivered = 0

        for sink in self.snapshot():
            if sink not in self._sinks:
                # Removed while an earlier send was in flight
                continue
            if not sink.is_open:
                failed.append(sink)
                continue
            try:
                await self._send(sink, chunk)
                delivered += 1
            except asyncio.TimeoutError:
                logger.warning(
                    f"Session {self.session_id}: sink {sink.sink_id} send timed out, dropping"
                )
                failed.append(sink)
            except Exception as e:
                logger.debug(
                    f"Session {self.session_id}: sink {sink.sink_id} send failed: {e}"
                )
                failed.append(sink)

        for sink in failed:
            self._sinks.discard(sink)

        if failed:
            await asyncio.gather(
                *(self._close(sink, CLOSE_NORMAL, DROPPED_REASON) for sink in failed),
                return_exceptions=True,
            )
            logger.info(
                f"Session {self.session_id}: dropped {len(failed)} dead sink(s), "
                f"{len(self._sinks)} remaining"
            )
        return delivered

    async def close_all(self, code: int = CLOSE_NORMAL, reason: str = "") -> int:
        """
        Clear the set and close every sink that was in it.

        Returns:
            Number of sinks closed.
        """
        sinks = self.snapshot()
        self._sinks.clear()
        if sinks:
            await asyncio.gather(
                *(sink.close(code, reason) for sink in sinks), return_exceptions=True
            )
        return len(sinks)
