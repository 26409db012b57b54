"""In-memory sliding window rate limiter implementation."""

from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Deque, DefaultDict


@dataclass(frozen=True, slots=True)
class RateDecision:
    """Outcome of one admission attempt."""

    allowed: bool
    retry_after: int = 0


class SlidingWindowRateLimiter:
    """Thread-safe sliding window rate limiter."""

    def __init__(self, max_requests: int, window_seconds: int) -> None:
        """Initialise limiter parameters and per-key storage."""
        self._max_requests = max_requests
        self._window = window_seconds
        self._events: DefaultDict[str, Deque[float]] = DefaultDict(deque)
        self._lock = Lock()

    @property
    def max_requests(self) -> int:
        return self._max_requests

    def acquire(self, key: str) -> RateDecision:
        """Record a hit for ``key`` unless the window is already full."""
        now = time.time()
        with self._lock:
            queue = self._events[key]
            while queue and now - queue[0] >= self._window:
                queue.popleft()
            if len(queue) >= self._max_requests:
                retry_after = math.ceil(queue[0] + self._window - now)
                return RateDecision(False, max(1, retry_after))
            queue.append(now)
            return RateDecision(True)

    def reset(self, key: str) -> None:
        with self._lock:
            self._events.pop(key, None)
