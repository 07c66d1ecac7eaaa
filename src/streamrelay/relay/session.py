"""
Session data model.

A session is the unit of sharing: one upstream source URL, identified by an
opaque id, with the set of subscribers currently attached to it.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

from streamrelay.relay.subscribers import SubscriberSet

if TYPE_CHECKING:
    from streamrelay.relay.engine import RelayEngine


class SessionState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    DRAINING = "draining"
    EVICTED = "evicted"


@dataclass
class SessionSummary:
    """Read-only snapshot of a session for status listings."""

    id: str
    source_url: str
    client_count: int
    state: SessionState

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE


class Session:
    """
    One shared upstream source and its subscribers.

    ``relay`` is set only while the session is ACTIVE and ``eviction_timer``
    only while it is DRAINING. State, relay and timer are mutated by the
    LifecycleController while holding ``lock``.
    """

    def __init__(
        self, session_id: str, source_url: str, send_timeout: Optional[float] = None
    ):
        self._id = session_id
        self._source_url = source_url
        self.state: SessionState = SessionState.IDLE
        self.subscribers = SubscriberSet(session_id, send_timeout=send_timeout)
        self.relay: Optional["RelayEngine"] = None
        self.eviction_timer: Optional[asyncio.TimerHandle] = None
        self.lock = asyncio.Lock()

    @property
    def id(self) -> str:
        return self._id

    @property
    def source_url(self) -> str:
        return self._source_url

    @property
    def client_count(self) -> int:
        return len(self.subscribers)

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    @property
    def accepts_subscribers(self) -> bool:
        return self.state in (SessionState.IDLE, SessionState.ACTIVE)

    def cancel_eviction(self) -> bool:
        """Cancel a pending eviction timer. Returns True if one was pending."""
        timer = self.eviction_timer
        self.eviction_timer = None
        if timer is None:
            return False
        timer.cancel()
        return True

    def replace_source(self, source_url: str) -> None:
        self._source_url = source_url

    def resurrect(self, source_url: Optional[str] = None) -> bool:
        """
        Bring a DRAINING session back to IDLE.

        The pending eviction is cancelled in the same step, so a timer that
        already fired sees a session that is no longer draining and does
        nothing. A new source URL, if given, replaces the old one.

        Returns:
            True if the session was draining and is now idle.
        """
        if self.state is not SessionState.DRAINING:
            return False
        self.cancel_eviction()
        if source_url:
            self._source_url = source_url
        self.state = SessionState.IDLE
        return True

    def summary(self) -> SessionSummary:
        return SessionSummary(
            id=self._id,
            source_url=self._source_url,
            client_count=self.client_count,
            state=self.state,
        )

    def __repr__(self) -> str:
        return (
            f"Session(id={self._id!r}, state={self.state.value}, "
            f"clients={self.client_count})"
        )
