"""Per-owner call budget for the generator-backed endpoints.

Every owner may make `max_requests` generator calls inside any trailing
`window_seconds` span. The limiter keeps a sliding log of call times per
owner; owners idle for a whole window are forgotten so the log does not
grow with the number of users ever seen.
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict


class InMemoryRateLimiter:
    """Sliding-log limiter keyed by owner."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._calls: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def allow(self, key: str, max_requests: int, window_seconds: int) -> tuple[bool, int]:
        """Record a call for `key` if it fits the budget.

        Returns `(allowed, retry_after_seconds)`; a refused call is not
        recorded and `retry_after` is when the oldest logged call expires.
        """
        now = self._clock()
        with self._lock:
            calls = self._calls.setdefault(key, deque())
            while calls and now - calls[0] >= window_seconds:
                calls.popleft()
            if len(calls) >= max_requests:
                return False, max(1, math.ceil(window_seconds - (now - calls[0])))
            calls.append(now)
            self._forget_idle(now, window_seconds)
        return True, 0

    def _forget_idle(self, now: float, window_seconds: int) -> None:
        idle = [k for k, calls in self._calls.items() if not calls or now - calls[-1] >= window_seconds]
        for k in idle:
            del self._calls[k]

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._calls)

    def reset(self) -> None:
        with self._lock:
            self._calls.clear()
