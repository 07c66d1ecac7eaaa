"""
Registry of relay sessions.
Single authority for the mapping from session id to Session.
"""

import threading
from typing import Optional

from streamrelay.logger import get_logger
from streamrelay.relay.session import Session, SessionState, SessionSummary

logger = get_logger(__name__)


class SessionRegistry:
    """
    Holds every live session, keyed by id.

    Lookup-then-insert in ``get_or_create`` happens under one lock, so two
    concurrent callers can never create two sessions for the same id.
    """

    def __init__(self, send_timeout: Optional[float] = None):
        self.send_timeout = send_timeout
        self._sessions: dict[str, Session] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get_or_create(self, session_id: str, source_url: Optional[str] = None) -> Session:
        """
        Return the session for ``session_id``, creating it if unknown.

        - Unknown id: a new IDLE session with ``source_url`` is registered.
        - DRAINING session: stays DRAINING with its eviction still pending;
          a given ``source_url`` replaces the old one. Only a subscriber
          joining brings it back.
        - IDLE or ACTIVE session: returned unchanged. A different
          ``source_url`` is ignored, the original source is kept.

        Raises:
            ValueError: The id is unknown and no source URL was given.
        """
        with self._lock:
            session = self._sessions.get(session_id)

            if session is None:
                if not source_url:
                    raise ValueError("A source URL is required to create a session")
                session = Session(session_id, source_url, send_timeout=self.send_timeout)
                self._sessions[session_id] = session
                logger.info(f"Created session {session_id} for {source_url}")
                return session

            if session.state is SessionState.DRAINING:
                if source_url and source_url != session.source_url:
                    session.replace_source(source_url)
                    logger.info(
                        f"Draining session {session_id} now points at {source_url}"
                    )
            elif source_url and source_url != session.source_url:
                logger.warning(
                    f"Session {session_id} already relays {session.source_url}; "
                    f"ignoring new source {source_url}"
                )
            return session

    def get(self, session_id: str) -> Optional[Session]:
        """Lookup a session by id."""
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str, expected: Optional[Session] = None) -> bool:
        """
        Drop a session. Idempotent.

        Args:
            session_id: The id to remove.
            expected: If given, remove only when the registered session is
                this exact object.

        Returns:
            True if an entry was removed.
        """
        with self._lock:
            current = self._sessions.get(session_id)
            if current is None:
                return False
            if expected is not None and current is not expected:
                return False
            del self._sessions[session_id]
            return True

    def sessions(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    def list_all(self) -> list[SessionSummary]:
        """Summaries of every registered session."""
        return [session.summary() for session in self.sessions()]

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
