"""
Relay core for streamrelay.

One upstream fetch per session is shared by every WebSocket subscriber of
that session. The registry maps ids to sessions, the lifecycle controller
starts and stops relay engines as subscribers come and go, and drained
sessions are evicted after a grace delay.
"""

from streamrelay.relay.engine import ExitReason, RelayEngine
from streamrelay.relay.errors import (
    RelayError,
    SessionClosedError,
    SessionNotFoundError,
    UpstreamError,
)
from streamrelay.relay.lifecycle import LifecycleController
from streamrelay.relay.registry import SessionRegistry
from streamrelay.relay.session import Session, SessionState, SessionSummary
from streamrelay.relay.subscribers import SinkBase, SubscriberSet

__all__ = [
    "ExitReason",
    "LifecycleController",
    "RelayEngine",
    "RelayError",
    "Session",
    "SessionClosedError",
    "SessionNotFoundError",
    "SessionRegistry",
    "SessionState",
    "SessionSummary",
    "SinkBase",
    "SubscriberSet",
    "UpstreamError",
]
