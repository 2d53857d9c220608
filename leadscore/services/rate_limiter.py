"""
Per-client sliding-window rate limiter.

Each client keeps a deque of the timestamps of its accepted requests inside
the current window. A request is accepted iff fewer than ``max_requests``
timestamps remain after discarding those older than ``window_seconds``; so
exactly ``max_requests`` calls succeed in any rolling window and the next
one raises RateLimitExceeded with the time until the oldest slot frees up.

Rejected requests are not recorded, so a client hammering the API while
throttled does not extend its own lockout.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from leadscore.core.errors import RateLimitExceeded, ValidationError


logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """
    Args:
        max_requests: Requests allowed per client per window.
        window_seconds: Length of the rolling window.
        clock: Monotonic time source in seconds. Injected by tests.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        if max_requests < 1:
            raise ValidationError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValidationError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock or time.monotonic
        self._windows: Dict[str, Deque[float]] = {}
        self._lock = asyncio.Lock()
        self.rejected = 0

    def _trim(self, window: Deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()

    async def acquire(self, client_id: str, cost: int = 1) -> None:
        """
        Record ``cost`` requests for ``client_id``.

        Raises:
            RateLimitExceeded: If the window cannot absorb ``cost`` more requests.
        """
        async with self._lock:
            now = self._clock()
            window = self._windows.setdefault(client_id, deque())
            self._trim(window, now)

            if len(window) + cost > self.max_requests:
                self.rejected += 1
                if window:
                    retry_after = max(window[0] + self.window_seconds - now, 0.0)
                else:
                    retry_after = self.window_seconds
                logger.warning(f"Rate limit exceeded for client {client_id}")
                raise RateLimitExceeded(client_id, retry_after)

            window.extend([now] * cost)

    async def remaining(self, client_id: str) -> int:
        async with self._lock:
            window = self._windows.get(client_id)
            if not window:
                return self.max_requests
            self._trim(window, self._clock())
            return self.max_requests - len(window)

    async def sweep(self) -> int:
        """Drop clients whose windows have fully expired. Returns clients removed."""
        async with self._lock:
            now = self._clock()
            idle = []
            for client_id, window in self._windows.items():
                self._trim(window, now)
                if not window:
                    idle.append(client_id)
            for client_id in idle:
                del self._windows[client_id]
        return len(idle)

    def stats(self) -> Dict[str, int]:
        return {
            "trackedClients": len(self._windows),
            "maxRequests": self.max_requests,
            "windowSeconds": self.window_seconds,
            "rejected": self.rejected,
        }
