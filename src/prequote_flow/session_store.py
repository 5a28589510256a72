"""Session-scoped key/value storage for lead identity."""

import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Callable, Optional


logger = logging.getLogger(__name__)

LEAD_ID_KEY = "wm_prequote_v2_lead_id"
COMPLETED_KEY = "wm_prequote_v2_completed"


class LeadSessionStore(ABC):
    """Abstract interface for per-session storage (browser session storage or similar)."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Get a stored value, or None."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value."""
        pass


class InMemorySessionStore(LeadSessionStore):
    """Dict-backed session store, one per visitor session."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class SessionRegistry:
    """Per-visitor session stores, bounded by count and idle time.

    Least recently used sessions are evicted first once ``max_sessions`` is
    reached; sessions idle longer than ``idle_ttl_seconds`` are dropped on
    the next access.
    """

    def __init__(
        self,
        max_sessions: int,
        idle_ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_sessions = max_sessions
        self.idle_ttl_seconds = idle_ttl_seconds
        self._clock = clock
        self._sessions: OrderedDict[str, tuple[float, InMemorySessionStore]] = OrderedDict()

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def get_or_create(self, session_id: str) -> InMemorySessionStore:
        """Return the session's store, creating it if needed, and mark it used."""
        now = self._clock()
        self._expire(now)

        entry = self._sessions.pop(session_id, None)
        store = entry[1] if entry else InMemorySessionStore()
        self._sessions[session_id] = (now, store)

        while len(self._sessions) > self.max_sessions:
            evicted, _ = self._sessions.popitem(last=False)
            logger.debug("[SESSIONS] Evicted %s (capacity)", evicted[:8])
        return store

    def _expire(self, now: float) -> None:
        cutoff = now - self.idle_ttl_seconds
        while self._sessions:
            session_id, (last_seen, _) = next(iter(self._sessions.items()))
            if last_seen > cutoff:
                break
            del self._sessions[session_id]
            logger.debug("[SESSIONS] Expired %s", session_id[:8])
