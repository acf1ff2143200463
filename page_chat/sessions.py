"""In-memory session store with per-session locking."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from .errors import ChatCancelled
from .models import ChatSession

logger = logging.getLogger(__name__)


class SessionStore:
    """Thread-safe mapping of session id to :class:`ChatSession`.

    Individual ``get``/``upsert`` calls are atomic. Callers that mutate a
    session across several steps hold :meth:`locked` for that id so turns of
    the same conversation never interleave. Sessions live for the lifetime of
    the process; nothing is evicted.
    """

    def __init__(self, *, poll_interval: float = 0.1) -> None:
        self._sessions: Dict[str, ChatSession] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()
        self._poll_interval = poll_interval

    def get(self, session_id: Optional[str]) -> Optional[ChatSession]:
        if not session_id:
            return None
        with self._guard:
            return self._sessions.get(session_id)

    def get_or_create(self, session_id: Optional[str]) -> ChatSession:
        """Return the stored session, or a new unsaved one with a fresh id."""
        session = self.get(session_id)
        if session is not None:
            return session
        session = ChatSession()
        if session_id:
            logger.info("Unknown session %s, starting new session %s", session_id, session.session_id)
        else:
            logger.info("Starting new session %s", session.session_id)
        return session

    def upsert(self, session: ChatSession) -> None:
        with self._guard:
            self._sessions[session.session_id] = session

    def list(self) -> List[ChatSession]:
        with self._guard:
            return list(self._sessions.values())

    def __len__(self) -> int:
        with self._guard:
            return len(self._sessions)

    @contextmanager
    def locked(self, session_id: str, cancel_event: Optional[threading.Event] = None) -> Iterator[None]:
        """Hold the mutex for ``session_id`` until the block exits.

        The lock entry of a session that was never stored is dropped on exit;
        its fresh id is known only to the turn that created it.
        """
        if cancel_event is not None and cancel_event.is_set():
            raise ChatCancelled(f"Cancelled before locking session {session_id}")
        lock = self._lock_for(session_id)
        while not lock.acquire(timeout=self._poll_interval):
            if cancel_event is not None and cancel_event.is_set():
                self._discard_unsaved_lock(session_id)
                raise ChatCancelled(f"Cancelled while waiting for session {session_id}")
        try:
            yield
        finally:
            lock.release()
            self._discard_unsaved_lock(session_id)

    def lock_count(self) -> int:
        with self._guard:
            return len(self._locks)

    def _discard_unsaved_lock(self, session_id: str) -> None:
        with self._guard:
            lock = self._locks.get(session_id)
            if session_id not in self._sessions and lock is not None and not lock.locked():
                del self._locks[session_id]

    def _lock_for(self, session_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
            return lock
