"""
Rate limiting capability injected into the orchestrator.

Counters live in the limiter instance the caller constructs (or in an
external store behind the same interface), never in module state.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable

from ordersaga.core.config import OrderSagaConfig


class RateLimiter(ABC):
    @abstractmethod
    async def hit(self, key: str) -> bool:
        """Record one request for ``key``. Returns False if it exceeds the limit."""
        ...


class SlidingWindowRateLimiter(RateLimiter):
    """
    Allows ``max_requests`` per ``window_seconds`` for each key.

    Example:
        >>> limiter = SlidingWindowRateLimiter(max_requests=100, window_seconds=60)
        >>> await limiter.hit("user-1")
        True
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: dict[str, deque[float]] = {}
        self._last_sweep = clock()
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: OrderSagaConfig) -> "SlidingWindowRateLimiter":
        return cls(max_requests=config.rate_limit_requests, window_seconds=config.rate_limit_window)

    async def hit(self, key: str) -> bool:
        now = self._clock()
        async with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)

            requests = self._requests.setdefault(key, deque())
            while requests and now - requests[0] >= self.window_seconds:
                requests.popleft()

            if len(requests) >= self.max_requests:
                return False

            requests.append(now)
            return True

    def _sweep(self, now: float) -> None:
        """Drop keys with no request inside the window."""
        stale = [
            key
            for key, requests in self._requests.items()
            if not requests or now - requests[-1] >= self.window_seconds
        ]
        for key in stale:
            del self._requests[key]
        self._last_sweep = now

    @property
    def tracked_keys(self) -> int:
        return len(self._requests)

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._requests.clear()
        else:
            self._requests.pop(key, None)


class UnlimitedRateLimiter(RateLimiter):
    """Never limits. Default when no limiter is injected."""

    async def hit(self, key: str) -> bool:
        return True
