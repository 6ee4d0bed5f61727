"""Server-side key/value sessions used for the environment fallback signal."""
from __future__ import annotations

import threading
import time
import uuid
from collections import OrderedDict
from typing import Dict, MutableMapping, Optional, Protocol, Tuple

SESSION_COOKIE_NAME = "envpersist_session"

DEFAULT_MAX_SESSIONS = 10_000
DEFAULT_SESSION_TTL_SECONDS = 24 * 60 * 60


class SessionStore(Protocol):
    def get(self, session_id: str) -> Optional[MutableMapping[str, str]]:
        ...

    def save(self, session_id: str, data: MutableMapping[str, str]) -> None:
        ...

    def new_session_id(self) -> str:
        ...


class InMemorySessionStore:
    """Process-local session storage keyed by an opaque cookie value.

    Holds at most ``max_sessions`` entries, evicting the least recently used
    one first. Entries idle for longer than ``ttl_seconds`` are dropped.
    """

    def __init__(
        self,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        ttl_seconds: Optional[float] = DEFAULT_SESSION_TTL_SECONDS,
        clock=time.monotonic,
    ):
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.max_sessions = max_sessions
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        # session id -> (last access, data), oldest first
        self._sessions: "OrderedDict[str, Tuple[float, Dict[str, str]]]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._expire(self._clock())
            return len(self._sessions)

    def new_session_id(self) -> str:
        return uuid.uuid4().hex

    def _expire(self, now: float) -> None:
        if self.ttl_seconds is None:
            return
        while self._sessions:
            session_id, (touched, _) = next(iter(self._sessions.items()))
            if now - touched <= self.ttl_seconds:
                break
            del self._sessions[session_id]

    def get(self, session_id: str) -> Optional[MutableMapping[str, str]]:
        with self._lock:
            now = self._clock()
            self._expire(now)
            entry = self._sessions.get(session_id)
            if entry is None:
                return None
            self._sessions[session_id] = (now, entry[1])
            self._sessions.move_to_end(session_id)
            return entry[1]

    def save(self, session_id: str, data: MutableMapping[str, str]) -> None:
        with self._lock:
            now = self._clock()
            self._expire(now)
            self._sessions[session_id] = (now, dict(data))
            self._sessions.move_to_end(session_id)
            while len(self._sessions) > self.max_sessions:
                self._sessions.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
