"""
Session lifecycle: joins, leaves, relay start/stop and delayed eviction.

State machine::

    IDLE --first join--> ACTIVE --last leave / upstream end--> DRAINING
    DRAINING --join before timer--> IDLE --> ACTIVE
    DRAINING --eviction timer--> EVICTED (removed from the registry)

All transitions for a session happen while holding ``session.lock``.
"""

import asyncio
from typing import Optional

import httpx

from streamrelay.logger import get_logger
from streamrelay.relay.engine import ExitReason, RelayEngine
from streamrelay.relay.errors import SessionClosedError, SessionNotFoundError
from streamrelay.relay.registry import SessionRegistry
from streamrelay.relay.session import Session, SessionState
from streamrelay.relay.subscribers import CLOSE_GOING_AWAY, CLOSE_NORMAL, SinkBase

logger = get_logger(__name__)

DEFAULT_EVICTION_DELAY = 30.0

STREAM_ENDED_REASON = "Stream ended"
SHUTDOWN_REASON = "Server shutting down"


class LifecycleController:
    """Drives sessions through their states and owns their relay engines."""

    def __init__(
        self,
        registry: SessionRegistry,
        client: httpx.AsyncClient,
        eviction_delay: float = DEFAULT_EVICTION_DELAY,
        chunk_size: Optional[int] = None,
    ):
        self.registry = registry
        self.client = client
        self.eviction_delay = eviction_delay
        self.chunk_size = chunk_size
        # Engines that were asked to stop but may still be parked in a read
        self._stopping: dict[str, RelayEngine] = {}
        self.relay_starts = 0

    # -- Subscriber events ---------------------------------------------------

    async def join(self, session_id: str, sink: SinkBase) -> Session:
        """
        Attach a sink to a session, starting the relay if it is the first.

        A DRAINING session is resurrected: its eviction is cancelled and the
        relay restarts with the same id and source URL.

        Raises:
            SessionNotFoundError: No session is registered under the id.
            SessionClosedError: The session was evicted while we waited.
        """
        session = self.registry.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        async with session.lock:
            if session.resurrect():
                logger.info(f"Session {session_id} resurrected before eviction")
            if not session.accepts_subscribers:
                raise SessionClosedError(session_id)

            count = session.subscribers.add(sink)
            logger.info(f"Client connected to session {session_id}. Total: {count}")

            if session.state is SessionState.IDLE:
                self._start_relay(session)

        return session

    async def leave(self, session: Session, sink: SinkBase) -> int:
        """
        Detach a sink. If it was the last one on an ACTIVE session, stop the
        relay and arm eviction.

        Returns:
            Number of sinks still attached.
        """
        async with session.lock:
            was_member = sink in session.subscribers
            count = session.subscribers.remove(sink)
            if was_member:
                logger.info(
                    f"Client disconnected from session {session.id}. Remaining: {count}"
                )

            if count == 0 and session.state is SessionState.ACTIVE:
                self._stop_relay(session)
                self._arm_eviction(session)

        return count

    # -- Relay management ------------------------------------------------------

    def _start_relay(self, session: Session) -> None:
        if session.relay is not None and session.relay.running:
            return

        previous = self._stopping.pop(session.id, None)
        if previous is not None and previous.running:
            # Only one engine may read upstream for a session
            logger.debug(f"Cancelling lingering relay for session {session.id}")
            previous.cancel()

        engine = RelayEngine(
            session,
            self.client,
            on_exit=self._on_relay_exit,
            chunk_size=self.chunk_size,
        )
        session.relay = engine
        session.state = SessionState.ACTIVE
        self.relay_starts += 1
        engine.start()

    def _stop_relay(self, session: Session) -> None:
        engine = session.relay
        session.relay = None
        if engine is not None:
            engine.request_stop()
            if engine.running:
                self._stopping[session.id] = engine

    async def _on_relay_exit(self, engine: RelayEngine, reason: ExitReason) -> None:
        session = engine.session
        async with session.lock:
            if self._stopping.get(session.id) is engine:
                del self._stopping[session.id]

            if session.relay is not engine:
                # Already stopped by the last leave, or superseded
                return

            session.relay = None
            if reason is ExitReason.CANCELLED:
                code, message = CLOSE_GOING_AWAY, SHUTDOWN_REASON
            else:
                code, message = CLOSE_NORMAL, STREAM_ENDED_REASON

            self._arm_eviction(session)
            closed = await session.subscribers.close_all(code, message)
            if closed:
                logger.info(f"Closed {closed} client(s) of session {session.id}")

    # -- Eviction ----------------------------------------------------------------

    def _arm_eviction(self, session: Session) -> None:
        session.cancel_eviction()
        session.state = SessionState.DRAINING
        loop = asyncio.get_running_loop()
        session.eviction_timer = loop.call_later(
            self.eviction_delay, self._on_eviction_timer, session
        )
        logger.info(
            f"Session {session.id} draining, eviction in {self.eviction_delay:g}s"
        )

    def _on_eviction_timer(self, session: Session) -> None:
        if session.state is not SessionState.DRAINING or session.subscribers:
            return
        session.eviction_timer = None
        session.state = SessionState.EVICTED
        if self.registry.remove(session.id, expected=session):
            logger.info(f"Session {session.id} removed")

    # -- Shutdown ----------------------------------------------------------------

    async def shutdown(self) -> None:
        """Stop every relay, cancel pending evictions and close all clients."""
        engines: list[RelayEngine] = list(self._stopping.values())
        self._stopping.clear()

        for session in self.registry.sessions():
            session.cancel_eviction()
            if session.relay is not None:
                engines.append(session.relay)

        for engine in engines:
            engine.cancel()
        if engines:
            await asyncio.gather(*(engine.wait() for engine in engines))

        for session in self.registry.sessions():
            async with session.lock:
                session.cancel_eviction()
                await session.subscribers.close_all(CLOSE_GOING_AWAY, SHUTDOWN_REASON)
        self.registry.clear()
        logger.info(f"Lifecycle shut down ({len(engines)} relay(s) stopped)")
