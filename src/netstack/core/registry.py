"""
=============================================================================
SESSION TABLE
=============================================================================

The process-wide map from integer handle to Session. It is the ONLY state
shared between sessions, so every access goes through one lock.

    allocate(session) ──► 1      handles only ever go up;
    allocate(session) ──► 2      a closed handle is never handed out again
    remove(1)
    allocate(session) ──► 3

    lookup(1) ──► SessionClosedError   (stale handle: a normal outcome)

Callers hold handles, never Session objects, beyond the span of a single
operation.
=============================================================================
"""

import logging
import threading
from typing import Dict, List, Optional

from ..errors import SessionClosedError
from .session import Session


logger = logging.getLogger(__name__)


class SessionTable:
    """Thread-safe handle → Session registry."""

    def __init__(self, first_handle: int = 1):
        self._lock = threading.Lock()
        self._sessions: Dict[int, Session] = {}
        self._next_handle = first_handle

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, handle: int) -> bool:
        with self._lock:
            return handle in self._sessions

    def allocate(self, session: Session) -> int:
        """Reserve the next handle, store the session under it and return it."""
        with self._lock:
            handle = self._next_handle
            self._next_handle += 1
            session.handle = handle
            self._sessions[handle] = session
        logger.debug(f"Registered session {handle} ({session.role.value})")
        return handle

    def get(self, handle: int) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(handle)

    def lookup(self, handle: int) -> Session:
        """
        Find a live session.

        Raises:
            SessionClosedError: The handle is unknown or already closed.
        """
        session = self.get(handle)
        if session is None:
            raise SessionClosedError(handle)
        return session

    def remove(self, handle: int) -> Optional[Session]:
        """Drop a handle. Removing an absent handle is a no-op."""
        with self._lock:
            session = self._sessions.pop(handle, None)
        if session is not None:
            logger.debug(f"Removed session {handle}")
        return session

    def handles(self) -> List[int]:
        """Snapshot of the live handles, lowest first."""
        with self._lock:
            return sorted(self._sessions)

    def close_all(self) -> int:
        """
        Close every live session. Used at teardown.

        Works from a snapshot so sessions opened or closed concurrently do
        not disturb the sweep. A failing close is logged and the sweep goes
        on; the handle is removed either way.

        Returns:
            Number of sessions whose transport this call closed.
        """
        closed = 0
        for handle in self.handles():
            session = self.get(handle)
            if session is None:
                continue  # closed concurrently
            try:
                if session.close_transport():
                    closed += 1
            except Exception as e:
                logger.warning(f"Failed to close session {handle}: {e}")
            finally:
                self.remove(handle)
                session.stop()

        if closed:
            logger.info(f"Closed {closed} open session(s)")
        return closed
