"""Server-side admin sessions.

The browser only ever holds a signed token wrapping a random session id.
The signature stops forged ids; the server-side registry is what makes
logout and expiry effective.
"""

from __future__ import annotations

import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable

import structlog
from itsdangerous import BadData, URLSafeTimedSerializer

log = structlog.get_logger()

DEFAULT_MAX_AGE_SECONDS = 7 * 24 * 60 * 60


@dataclass(frozen=True)
class AdminSession:
    session_id: str
    created_at: float
    expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class SessionRegistry:
    """Creates, validates and destroys admin sessions."""

    def __init__(
        self,
        secret: str,
        max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._lock = threading.Lock()
        self._serializer = URLSafeTimedSerializer(secret, salt="admin-session")
        self._max_age = max_age_seconds
        self._clock = clock
        self._sessions: dict[str, AdminSession] = {}

    @property
    def max_age_seconds(self) -> int:
        return self._max_age

    def create(self) -> tuple[AdminSession, str]:
        """Start a new session. Returns the session and its signed token."""
        now = self._clock()
        session = AdminSession(
            session_id=secrets.token_urlsafe(24),
            created_at=now,
            expires_at=now + self._max_age,
        )
        with self._lock:
            self._sessions[session.session_id] = session
        log.info("admin_session_created", session=session.session_id[:8])
        return session, self._serializer.dumps(session.session_id)

    def _unsign(self, token: str | None) -> str | None:
        if not token:
            return None
        try:
            session_id = self._serializer.loads(token, max_age=self._max_age)
        except BadData:
            return None
        return session_id if isinstance(session_id, str) else None

    def resolve(self, token: str | None) -> AdminSession | None:
        """Return the live session behind ``token``, or None."""
        session_id = self._unsign(token)
        if session_id is None:
            return None
        now = self._clock()
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if session.expired(now):
                del self._sessions[session_id]
                log.info("admin_session_expired", session=session_id[:8])
                return None
            return session

    def is_valid(self, token: str | None) -> bool:
        return self.resolve(token) is not None

    def is_live(self, session_id: str) -> bool:
        """True while the session with this id exists and has not expired."""
        now = self._clock()
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            if session.expired(now):
                del self._sessions[session_id]
                log.info("admin_session_expired", session=session_id[:8])
                return False
            return True

    def destroy(self, token: str | None) -> AdminSession | None:
        """End the session behind ``token``. Returns it if it existed."""
        session_id = self._unsign(token)
        if session_id is None:
            return None
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            log.info("admin_session_destroyed", session=session_id[:8])
        return session

    def active_count(self) -> int:
        now = self._clock()
        with self._lock:
            return sum(1 for s in self._sessions.values() if not s.expired(now))
