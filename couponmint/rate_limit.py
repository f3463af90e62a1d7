"""
Per-caller throttling for the issuance endpoints.

Sliding window over the last `window_seconds`; each caller identity gets its
own window.
"""

import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional


@dataclass
class ThrottleResult:
    allowed: bool
    remaining: int
    retry_after: Optional[float] = None


class IssuanceThrottle:
    """Thread-safe sliding-window limiter keyed by caller identity."""

    def __init__(self, per_window: int, window_seconds: int = 60, clock=time.monotonic):
        self._limit = max(1, per_window)
        self._window = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def check(self, caller: str) -> ThrottleResult:
        """Record an attempt by caller and report whether it may proceed."""
        now = self._clock()
        with self._lock:
            hits = self._hits[caller]
            while hits and hits[0] <= now - self._window:
                hits.popleft()

            if len(hits) >= self._limit:
                return ThrottleResult(
                    allowed=False,
                    remaining=0,
                    retry_after=max(0.0, hits[0] + self._window - now),
                )

            hits.append(now)
            return ThrottleResult(allowed=True, remaining=self._limit - len(hits))

    def reset(self, caller: Optional[str] = None) -> None:
        with self._lock:
            if caller:
                self._hits.pop(caller, None)
            else:
                self._hits.clear()
