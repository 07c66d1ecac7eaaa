"""
Relay engine: the single upstream read loop of a session.

One engine owns one streaming GET to the session's source URL. Every chunk
it reads is broadcast to the session's subscribers before the next read is
issued, so a slow subscriber slows the whole session down. There is no
chunk queue and no replay for late joiners.
"""

import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable, Optional

import httpx

from streamrelay.logger import get_logger
from streamrelay.relay.errors import UpstreamError
from streamrelay.relay.session import Session

logger = get_logger(__name__)


class ExitReason(str, Enum):
    END_OF_STREAM = "end_of_stream"
    STOP_REQUESTED = "stop_requested"
    NO_SUBSCRIBERS = "no_subscribers"
    UPSTREAM_ERROR = "upstream_error"
    CANCELLED = "cancelled"


ExitCallback = Callable[["RelayEngine", ExitReason], Awaitable[None]]


class RelayEngine:
    """
    Pulls chunks from the upstream source and fans them out.

    ``start`` is single-flight: calling it again while the loop is running
    returns the running task. ``request_stop`` is cooperative; the loop
    notices it as soon as the current read returns and never issues another
    read afterwards. Whatever ends the loop, ``on_exit`` is awaited exactly
    once.
    """

    def __init__(
        self,
        session: Session,
        client: httpx.AsyncClient,
        on_exit: Optional[ExitCallback] = None,
        chunk_size: Optional[int] = None,
    ):
        self.session = session
        self._client = client
        self._on_exit = on_exit
        self._chunk_size = chunk_size or None
        self._task: Optional[asyncio.Task] = None
        self._stop_requested = False
        self._exit_reported = False
        self.exit_reason: Optional[ExitReason] = None
        self.chunks_relayed = 0
        self.bytes_relayed = 0
        self.started_at: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def start(self) -> asyncio.Task:
        """Start the read loop, or return the task that is already running."""
        if self._task is not None:
            return self._task
        self.started_at = time.monotonic()
        self._task = asyncio.create_task(
            self._run(), name=f"relay-{self.session.id}"
        )
        return self._task

    def request_stop(self) -> None:
        if not self._stop_requested:
            logger.debug(f"Stop requested for relay of session {self.session.id}")
        self._stop_requested = True

    def cancel(self) -> None:
        """Interrupt the loop even if it is parked in a read."""
        self._stop_requested = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> Optional[ExitReason]:
        """Wait for the loop (and its exit callback) to finish."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        return self.exit_reason

    def _should_exit(self) -> Optional[ExitReason]:
        if self._stop_requested:
            return ExitReason.STOP_REQUESTED
        if not self.session.subscribers:
            return ExitReason.NO_SUBSCRIBERS
        return None

    async def _run(self) -> None:
        session = self.session
        reason = ExitReason.END_OF_STREAM
        logger.info(f"Starting relay for session {session.id} from {session.source_url}")

        try:
            async with self._client.stream("GET", session.source_url) as response:
                if not response.is_success:
                    raise UpstreamError(session.source_url, response.status_code)

                logger.info(
                    f"Upstream connected for session {session.id}: "
                    f"HTTP {response.status_code}, "
                    f"content-type={response.headers.get('content-type')}"
                )

                async for chunk in response.aiter_bytes(self._chunk_size):
                    if (exit_reason := self._should_exit()) is not None:
                        reason = exit_reason
                        break
                    if not chunk:
                        continue

                    await session.subscribers.broadcast(chunk)
                    self.chunks_relayed += 1
                    self.bytes_relayed += len(chunk)

                    if (exit_reason := self._should_exit()) is not None:
                        reason = exit_reason
                        break
                else:
                    logger.info(f"Upstream for session {session.id} ended")

        except UpstreamError as e:
            reason = ExitReason.UPSTREAM_ERROR
            logger.error(f"Relay for session {session.id} could not start: {e}")
        except httpx.HTTPError as e:
            reason = ExitReason.UPSTREAM_ERROR
            logger.warning(
                f"Upstream error for session {session.id}: {type(e).__name__}: {e}"
            )
        except asyncio.CancelledError:
            reason = ExitReason.CANCELLED
            raise
        except Exception as e:
            reason = ExitReason.UPSTREAM_ERROR
            logger.exception(f"Unexpected relay failure for session {session.id}: {e}")
        finally:
            await self._report_exit(reason)

    async def _report_exit(self, reason: ExitReason) -> None:
        if self._exit_reported:
            return
        self._exit_reported = True
        self.exit_reason = reason

        elapsed = time.monotonic() - self.started_at if self.started_at else 0.0
        logger.info(
            f"Relay for session {self.session.id} stopped ({reason.value}) after "
            f"{elapsed:.1f}s, {self.chunks_relayed} chunks / {self.bytes_relayed} bytes"
        )

        if self._on_exit is not None:
            try:
                await self._on_exit(self, reason)
            except Exception as e:
                logger.error(f"Relay exit handler failed for session {self.session.id}: {e}")
