"""Server statistics and active-visitor tracking.

Tracks in-memory counters and a sliding window of recently seen visitors.
No framework dependencies.
"""

from __future__ import annotations

import threading
import time
from typing import Callable


class ServerStats:
    """Thread-safe server statistics.

    A visitor is "active" if a beacon keyed to it arrived within the last
    ``active_window_seconds`` (default 300s). The key is whatever the
    ingestor rate-limits on, so with anonymization on it never sees a raw IP
    outside this process.
    """

    def __init__(
        self,
        active_window_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()
        self._active_window = active_window_seconds
        self._clock = clock
        self._last_prune = clock()

        # Counters
        self.visits_received: int = 0
        self.visits_stored: int = 0
        self.visits_rate_limited: int = 0
        self.storage_errors: int = 0
        self.publish_errors: int = 0
        self.events_published: int = 0
        self.geo_lookups: int = 0
        self.geo_failures: int = 0

        # Visitor tracking: client key → last seen (clock time)
        self._visitors: dict[str, float] = {}

    @property
    def started_at(self) -> float:
        return self._started_at

    def record_visit(self, client_key: str) -> None:
        """Record that a beacon was received from a client."""
        now = self._clock()
        with self._lock:
            self.visits_received += 1
            self._visitors[client_key] = now
            if now - self._last_prune >= self._active_window:
                self._prune_stale_visitors(now)

    def record_stored(self) -> None:
        with self._lock:
            self.visits_stored += 1

    def record_rate_limited(self) -> None:
        with self._lock:
            self.visits_rate_limited += 1

    def record_storage_error(self) -> None:
        with self._lock:
            self.storage_errors += 1

    def record_published(self, recipients: int) -> None:
        with self._lock:
            self.events_published += recipients

    def record_publish_error(self) -> None:
        with self._lock:
            self.publish_errors += 1

    def record_geo_lookup(self, resolved: bool) -> None:
        with self._lock:
            self.geo_lookups += 1
            if not resolved:
                self.geo_failures += 1

    def _prune_stale_visitors(self, now: float) -> None:
        """Remove visitors not seen within the active window. Caller holds lock."""
        self._last_prune = now
        cutoff = now - self._active_window
        stale = [key for key, seen in self._visitors.items() if seen < cutoff]
        for key in stale:
            del self._visitors[key]

    def snapshot(self, admins_connected: int = 0) -> dict:
        """Return a JSON-serializable snapshot of all stats."""
        now = self._clock()
        with self._lock:
            self._prune_stale_visitors(now)

            return {
                "uptime_seconds": round(time.time() - self._started_at, 1),
                "visits_received": self.visits_received,
                "visits_stored": self.visits_stored,
                "visits_rate_limited": self.visits_rate_limited,
                "storage_errors": self.storage_errors,
                "publish_errors": self.publish_errors,
                "events_published": self.events_published,
                "geo_lookups": self.geo_lookups,
                "geo_failures": self.geo_failures,
                "admins_connected": admins_connected,
                "active_visitors": {
                    "total": len(self._visitors),
                    "window_seconds": self._active_window,
                },
            }
