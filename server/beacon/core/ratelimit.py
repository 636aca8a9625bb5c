"""Fixed-window rate limiter keyed by client.

No framework dependencies.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from beacon.core.errors import RateLimitError


@dataclass
class _Window:
    started_at: float
    count: int = 0


class RateLimiter:
    """Allows at most ``max_requests`` per key in each ``window_seconds`` window.

    Windows are fixed, not sliding: a key's counter resets the first time it
    is seen after its window has elapsed.
    """

    def __init__(
        self,
        max_requests: int = 120,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.Lock()
        self._max = max_requests
        self._window = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._last_prune = clock()

    def _prune(self, now: float) -> None:
        """Drop expired windows. Caller holds lock."""
        if now - self._last_prune < self._window:
            return
        self._last_prune = now
        stale = [k for k, w in self._windows.items() if now - w.started_at >= self._window]
        for k in stale:
            del self._windows[k]

    def hit(self, key: str) -> None:
        """Count one request for ``key``. Raises RateLimitError when over quota."""
        now = self._clock()
        with self._lock:
            self._prune(now)
            window = self._windows.get(key)
            if window is None or now - window.started_at >= self._window:
                window = _Window(started_at=now)
                self._windows[key] = window
            if window.count >= self._max:
                raise RateLimitError(key, retry_after=self._window - (now - window.started_at))
            window.count += 1

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._windows)
