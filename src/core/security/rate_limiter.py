"""
Sliding window rate limiter.

One instance per limiting scope (bot events keyed by user id, HTTP API
keyed by client ip). Each key owns a deque of monotonic timestamps of
its admitted requests inside the trailing window.

Pruning happens lazily on access. Keys whose window has fully expired
are swept at most once per sweep interval so abandoned callers do not
keep an entry forever.
"""

import threading
import time
import logging
from collections import deque
from typing import Callable, Deque, Dict, Hashable, Iterable, Optional, Any

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Admit at most ``max_requests`` per key in any trailing ``window_ms``.

    Args:
        window_ms: Length of the trailing window in milliseconds
        max_requests: Admissions allowed inside one window
        exempt: Keys that always pass and are never recorded
        sweep_interval_ms: Minimum time between automatic sweeps
            (defaults to the window length)
        clock: Monotonic clock in seconds
        name: Scope name used in logs and metrics
    """

    def __init__(
        self,
        window_ms: int = 60_000,
        max_requests: int = 30,
        exempt: Iterable[Hashable] = (),
        sweep_interval_ms: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "bot"
    ):
        if window_ms <= 0 or max_requests <= 0:
            raise ValueError("window_ms and max_requests must be positive")

        self.window = window_ms / 1000.0
        self.max_requests = max_requests
        self.exempt = frozenset(exempt)
        self.sweep_interval = (sweep_interval_ms or window_ms) / 1000.0
        self.name = name

        self._clock = clock
        self._windows: Dict[Hashable, Deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

        self._allowed = 0
        self._denied = 0

    def check(self, key: Hashable) -> bool:
        """Return True to admit the request, False to reject it"""
        if key in self.exempt:
            return True

        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.sweep_interval:
                self._sweep_locked(now)

            timestamps = self._windows.get(key)
            if timestamps is None:
                timestamps = self._windows[key] = deque()
            self._prune(timestamps, now)

            if len(timestamps) >= self.max_requests:
                self._denied += 1
                allowed = False
            else:
                timestamps.append(now)
                self._allowed += 1
                allowed = True

        if not allowed:
            logger.info(f"Rate limit hit [{self.name}] for {key}: "
                        f"{self.max_requests} requests per {self.window:g}s")
        return allowed

    def retry_after(self, key: Hashable) -> float:
        """Seconds until ``key`` gets a free slot (0 if it has one now)"""
        now = self._clock()
        with self._lock:
            timestamps = self._windows.get(key)
            if not timestamps:
                return 0.0
            self._prune(timestamps, now)
            if len(timestamps) < self.max_requests:
                return 0.0
            return max(0.0, timestamps[0] + self.window - now)

    def reset(self, key: Hashable) -> None:
        with self._lock:
            self._windows.pop(key, None)

    def sweep(self) -> int:
        """Drop every key whose window is fully expired. Returns the count."""
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> int:
        cutoff = now - self.window
        stale = [
            key for key, timestamps in self._windows.items()
            if not timestamps or timestamps[-1] <= cutoff
        ]
        for key in stale:
            del self._windows[key]
        self._last_sweep = now
        if stale:
            logger.debug(f"Swept {len(stale)} idle rate windows [{self.name}]")
        return len(stale)

    def _prune(self, timestamps: Deque[float], now: float) -> None:
        cutoff = now - self.window
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()

    def __len__(self) -> int:
        return len(self._windows)

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "window_seconds": self.window,
            "max_requests": self.max_requests,
            "tracked_keys": len(self._windows),
            "allowed": self._allowed,
            "denied": self._denied,
        }
