"""Token bucket shared by every detail-API call.

`acquire()` waits until a token is available. Refill is continuous at
`rate` tokens per second up to `capacity`. The clock and sleep functions are
injectable so the policy can be tested without real time passing.
"""
from __future__ import annotations

import asyncio
import time
from typing import Callable

from .retry import Sleep


class TokenBucket:
    def __init__(
        self,
        rate: float,
        capacity: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if rate <= 0 or capacity <= 0:
            raise ValueError("rate and capacity must be positive")
        self.rate = rate
        self.capacity = capacity
        self._tokens = capacity
        self._clock = clock
        self._sleep = sleep
        self._updated = clock()
        self._lock = asyncio.Lock()

    @classmethod
    def per_minute(cls, requests: int, burst: int | None = None, **kw) -> "TokenBucket":
        return cls(rate=requests / 60.0, capacity=float(burst or max(1, requests // 4)), **kw)

    def _refill(self) -> None:
        now = self._clock()
        self._tokens = min(self.capacity, self._tokens + (now - self._updated) * self.rate)
        self._updated = now

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    async def acquire(self, tokens: float = 1.0) -> None:
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= tokens:
                    self._tokens -= tokens
                    return
                await self._sleep((tokens - self._tokens) / self.rate)
