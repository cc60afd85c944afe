"""
Per-connection authorization state.

Each dashboard connection has a record with two flags. Elevation never
exists without base authentication, so only three states are reachable:
locked, unlocked and elevated. All access happens on the event loop, so the
table needs no locking.
"""

import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

Clock = Callable[[], float]


@dataclass
class Session:
    """Authorization state of a single connection."""

    connection_id: str
    authenticated: bool = False
    elevated: bool = False
    expires_at: Optional[float] = None

    @property
    def state(self) -> str:
        if self.elevated:
            return "elevated"
        if self.authenticated:
            return "unlocked"
        return "locked"

    def is_expired(self, now: float) -> bool:
        """Only an authenticated session can expire."""
        return self.authenticated and self.expires_at is not None and now > self.expires_at

    def unlock(self, expires_at: float) -> None:
        self.authenticated = True
        self.expires_at = expires_at

    def elevate(self, expires_at: float) -> None:
        self.authenticated = True
        self.elevated = True
        self.expires_at = expires_at

    def drop_elevation(self) -> None:
        self.elevated = False

    def lock(self) -> None:
        """Back to the initial state. Elevation always goes with base auth."""
        self.authenticated = False
        self.elevated = False
        self.expires_at = None

    def touch(self, expires_at: float) -> None:
        """Slide the expiry window forward."""
        if self.authenticated:
            self.expires_at = expires_at


class SessionStore:
    """In-memory table of sessions keyed by connection id."""

    def __init__(self, clock: Clock = time.monotonic):
        self._sessions: dict[str, Session] = {}
        self.clock = clock

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def get(self, connection_id: str) -> Session:
        """Return the session, creating a locked one for unknown connections."""
        session = self._sessions.get(connection_id)
        if session is None:
            session = Session(connection_id)
            self._sessions[connection_id] = session
        return session

    def peek(self, connection_id: str) -> Optional[Session]:
        return self._sessions.get(connection_id)

    def remove(self, connection_id: str) -> bool:
        return self._sessions.pop(connection_id, None) is not None

    def clear(self) -> None:
        self._sessions.clear()
