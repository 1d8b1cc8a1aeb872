"""Fixed-window attempt limiter for broker connection attempts.

The first attempt for a key opens a window of ``window_seconds``; further
attempts inside the window are counted until ``max_attempts`` is reached.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable

from journal_sync.config import settings


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    def __init__(
        self,
        max_attempts: int | None = None,
        window_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_attempts = max_attempts or settings.sync_rate_limit_attempts
        self.window_seconds = window_seconds or settings.sync_rate_limit_window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def check_rate_limit(
        self,
        key: str,
        max_attempts: int | None = None,
        window_seconds: float | None = None,
    ) -> bool:
        """Record an attempt; False when the key has used up its window."""
        max_attempts = max_attempts or self.max_attempts
        window_seconds = window_seconds or self.window_seconds
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now > window.reset_at:
                self._windows[key] = _Window(count=1, reset_at=now + window_seconds)
                return True
            if window.count >= max_attempts:
                return False
            window.count += 1
            return True

    def get_remaining_attempts(self, key: str, max_attempts: int | None = None) -> int:
        max_attempts = max_attempts or self.max_attempts
        with self._lock:
            window = self._windows.get(key)
            if window is None or self._clock() > window.reset_at:
                return max_attempts
            return max(0, max_attempts - window.count)

    def get_time_until_reset(self, key: str) -> float:
        """Seconds until the key's window closes (0 when no window is open)."""
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                return 0.0
            return max(0.0, window.reset_at - self._clock())

    def prune(self):
        """Drop windows that have already closed."""
        now = self._clock()
        with self._lock:
            for key in [k for k, w in self._windows.items() if now > w.reset_at]:
                del self._windows[key]
