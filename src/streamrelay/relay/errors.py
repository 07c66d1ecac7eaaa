"""Exceptions raised by the relay core."""

from typing import Optional


class RelayError(Exception):
    """Base class for relay errors."""


class SessionNotFoundError(RelayError):
    """No session is registered under the requested id."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionClosedError(RelayError):
    """The session was evicted and can no longer accept subscribers."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} has been evicted")
        self.session_id = session_id


class UpstreamError(RelayError):
    """The upstream source refused the connection."""

    def __init__(self, url: str, status_code: Optional[int] = None):
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"Failed to connect to source {url}{detail}")
        self.url = url
        self.status_code = status_code
