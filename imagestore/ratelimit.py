"""Shared token bucket used by the API rate limiting middleware.

One bucket is shared by every request the process serves. Tokens are
refilled lazily from the elapsed monotonic time on each call; a
``threading.Lock`` guards the state because handlers run on worker
threads as well as on the event loop.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional, Tuple


class TokenBucket:
    """
    Token bucket rate limiter.

    - Bucket starts full with ``capacity`` tokens
    - Tokens are added at ``refill_rate`` per second, up to ``capacity``
    - Each request consumes one token
    """

    def __init__(
        self,
        capacity: int,
        refill_rate: float,
        clock: Optional[Callable[[], float]] = None,
    ):
        if capacity <= 0 or refill_rate <= 0:
            raise ValueError("capacity and refill_rate must be positive")
        self.capacity = capacity
        self.refill_rate = refill_rate
        self._clock = clock or time.monotonic
        self._tokens = float(capacity)
        self._last_refill = self._clock()
        self._lock = threading.Lock()

    def consume(self, tokens: int = 1) -> Tuple[bool, float]:
        """
        Try to take ``tokens`` from the bucket.

        Returns:
            Tuple of (allowed, retry_after_seconds)
        """
        with self._lock:
            now = self._clock()
            elapsed = max(0.0, now - self._last_refill)
            self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
            self._last_refill = now

            if self._tokens >= tokens:
                self._tokens -= tokens
                return True, 0.0
            return False, (tokens - self._tokens) / self.refill_rate

    @property
    def remaining(self) -> int:
        with self._lock:
            return int(self._tokens)
