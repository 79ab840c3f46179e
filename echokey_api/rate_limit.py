"""
Rate limiting for validation attempts.

Sliding window per key. Validation is keyed by transaction id, so keys are
caller supplied: keys whose window has fully passed are pruned at most once
per window, which bounds the table by the keys active in the last window.
"""

import time
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    remaining: int
    reset_at: float
    retry_after: Optional[float] = None


class RateLimiter:
    """
    Thread-safe sliding window limiter.

    Args:
        rpm: Maximum requests per key per window
        window_seconds: Window size in seconds (default 60)
        time_func: Source of the current time, in seconds
    """

    def __init__(self, rpm: int, window_seconds: int = 60, time_func: Callable[[], float] = time.time):
        self._limit = max(1, rpm)
        self._window = window_seconds
        self._time = time_func
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.RLock()
        self._last_prune = time_func()

    @property
    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)

    def allow(self, key: str) -> bool:
        return self.check(key).allowed

    def check(self, key: str) -> RateLimitResult:
        """Check the limit for `key`, recording the request when allowed."""
        now = self._time()
        cutoff = now - self._window

        with self._lock:
            if now - self._last_prune >= self._window:
                self.cleanup_expired(now)

            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= self._limit:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=hits[0] + self._window,
                    retry_after=max(0.0, hits[0] + self._window - now)
                )

            hits.append(now)
            return RateLimitResult(
                allowed=True,
                remaining=self._limit - len(hits),
                reset_at=hits[0] + self._window
            )

    def reset(self, key: Optional[str] = None) -> None:
        """Forget one key, or every key when key is None."""
        with self._lock:
            if key:
                self._hits.pop(key, None)
            else:
                self._hits.clear()

    def cleanup_expired(self, now: Optional[float] = None) -> int:
        """Drop keys with no hits inside the window. Returns how many were dropped."""
        if now is None:
            now = self._time()
        with self._lock:
            self._last_prune = now
            return self._prune(now - self._window)

    def _prune(self, cutoff: float) -> int:
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]
        return len(stale)
