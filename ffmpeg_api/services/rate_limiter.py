"""In-memory sliding-window rate limiter.

Per-instance only. Several instances behind a load balancer each enforce
their own window.
"""

import threading
import time
from collections import deque


class SlidingWindowRateLimiter:
    """Thread-safe limiter allowing ``limit`` hits per ``window_s`` per key."""

    def __init__(self, limit: int, window_s: float, clock=time.monotonic) -> None:
        self.limit = limit
        self.window_s = window_s
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()
        self._calls = 0

    @property
    def enabled(self) -> bool:
        return self.limit > 0 and self.window_s > 0

    def hit(self, key: str) -> tuple[bool, float]:
        """Record a hit for ``key``.

        Returns (allowed, retry_after_seconds). Rejected hits are not recorded.
        """
        if not self.enabled:
            return True, 0.0

        now = self._clock()
        with self._lock:
            self._calls += 1
            if self._calls % 1000 == 0:
                self._cleanup_expired(now)

            hits = self._hits.setdefault(key, deque())
            cutoff = now - self.window_s
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= self.limit:
                retry_after = hits[0] + self.window_s - now
                return False, max(retry_after, 0.0)

            hits.append(now)
            return True, 0.0

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()

    def _cleanup_expired(self, now: float) -> None:
        """Drop keys with no hits inside the window (called under lock)."""
        cutoff = now - self.window_s
        stale = [k for k, v in self._hits.items() if not v or v[-1] <= cutoff]
        for k in stale:
            del self._hits[k]
