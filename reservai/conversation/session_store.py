"""
Session State Store with per-conversation locking and idle eviction.

All read-modify-write sequences on one conversation's session must run
under ``store.lock(conversation_id)``. Different conversations never
contend with each other; two messages for the same conversation are
handled one after the other.

Sessions idle for longer than the configured timeout are treated as
absent on read and dropped by ``evict_idle``.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Iterator, Optional

from reservai.config import settings
from reservai.schemas.session_schema import ConversationSession
from reservai.utils import local_now

logger = logging.getLogger(__name__)


class _KeyLock:
    """Per-conversation lock plus the number of turns holding or waiting on it."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class InMemorySessionStore:
    """Process-local session store keyed by conversation id."""

    def __init__(
        self,
        idle_timeout: Optional[timedelta] = None,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        if idle_timeout is None:
            idle_timeout = timedelta(minutes=settings.scheduling.session_idle_timeout_minutes)
        self._idle_timeout = idle_timeout
        self._clock = clock
        self._sessions: dict[str, ConversationSession] = {}
        self._locks: dict[str, _KeyLock] = {}
        self._guard = threading.Lock()

    @contextmanager
    def lock(self, conversation_id: str) -> Iterator[None]:
        """Serialize turns for a single conversation.

        A key lock lives only while some turn holds or waits for it.
        """
        with self._guard:
            key_lock = self._locks.get(conversation_id)
            if key_lock is None:
                key_lock = self._locks[conversation_id] = _KeyLock()
            key_lock.users += 1
        try:
            with key_lock.lock:
                yield
        finally:
            with self._guard:
                key_lock.users -= 1
                if key_lock.users == 0:
                    del self._locks[conversation_id]

    def get(self, conversation_id: str) -> Optional[ConversationSession]:
        """Return a private copy of the session, or None if absent or expired.

        Callers mutate the copy and persist it with ``set``, so a turn that
        fails half-way leaves the stored session untouched.
        """
        with self._guard:
            session = self._sessions.get(conversation_id)
            if session is None:
                return None
            if self._is_expired(session, self._clock()):
                logger.info("Session expired after inactivity: %s", conversation_id)
                del self._sessions[conversation_id]
                return None
            return copy.deepcopy(session)

    def set(self, session: ConversationSession) -> None:
        session.updated_at = self._clock()
        with self._guard:
            self._sessions[session.conversation_id] = copy.deepcopy(session)

    def delete(self, conversation_id: str) -> None:
        with self._guard:
            self._sessions.pop(conversation_id, None)

    def evict_idle(self) -> int:
        """Drop every expired session. Returns the number removed."""
        now = self._clock()
        with self._guard:
            expired = [
                key for key, session in self._sessions.items()
                if self._is_expired(session, now)
            ]
            for key in expired:
                del self._sessions[key]
        if expired:
            logger.info("Evicted %d idle session(s)", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._guard:
            return len(self._sessions)

    def _is_expired(self, session: ConversationSession, now: datetime) -> bool:
        if session.updated_at is None:
            return False
        return now - session.updated_at > self._idle_timeout
