"""
Rate limiting for the QRSeal HTTP surface.

Sliding window rate limiting keyed per client and endpoint.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: Optional[float] = None

    def headers(self) -> Dict[str, str]:
        """Standard X-RateLimit-* response headers."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(max(1, int(self.retry_after + 0.999)))
        return headers


class RateLimiter:
    """
    Sliding window rate limiter.

    Thread-safe; each key keeps a deque of hit timestamps inside the
    current window. Keys with no hits left in the window are swept at most
    once per window, so the table only holds recently active clients.
    """

    def __init__(self, rpm: int, window_seconds: int = 60,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            rpm: Maximum requests per window
            window_seconds: Window size in seconds (default 60)
            clock: Time source, replaceable in tests
        """
        self._limit = max(1, rpm)
        self._window = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.RLock()
        self._last_sweep = clock()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def key_count(self) -> int:
        """Number of clients currently tracked."""
        with self._lock:
            return len(self._hits)

    def allow(self, key: str) -> bool:
        return self.check(key).allowed

    def check(self, key: str) -> RateLimitResult:
        """
        Check the limit for ``key`` and record the hit if allowed.

        Args:
            key: Identifier for rate limiting (e.g. client IP)

        Returns:
            RateLimitResult with allowed status and metadata
        """
        now = self._clock()
        window_start = now - self._window

        with self._lock:
            if now - self._last_sweep >= self._window:
                self._sweep(window_start)
                self._last_sweep = now

            q = self._hits.setdefault(key, deque())
            while q and q[0] <= window_start:
                q.popleft()

            reset_at = (q[0] + self._window) if q else (now + self._window)

            if len(q) >= self._limit:
                return RateLimitResult(
                    allowed=False,
                    limit=self._limit,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after=max(0.0, q[0] + self._window - now)
                )

            q.append(now)
            return RateLimitResult(
                allowed=True,
                limit=self._limit,
                remaining=self._limit - len(q),
                reset_at=reset_at
            )

    def reset(self, key: Optional[str] = None) -> None:
        """Reset counters for one key, or all keys."""
        with self._lock:
            if key:
                self._hits.pop(key, None)
            else:
                self._hits.clear()

    def _sweep(self, window_start: float) -> int:
        removed = 0
        empty_keys = []
        for key, q in self._hits.items():
            while q and q[0] <= window_start:
                q.popleft()
                removed += 1
            if not q:
                empty_keys.append(key)
        for key in empty_keys:
            del self._hits[key]
        return removed

    def cleanup_expired(self) -> int:
        """
        Remove expired entries from all keys.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        with self._lock:
            self._last_sweep = now
            return self._sweep(now - self._window)
