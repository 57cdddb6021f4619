from __future__ import annotations
from dataclasses import dataclass
from typing import Awaitable, Callable

Sleep = Callable[[float], Awaitable[None]]

def linear_backoff(base_delay: float) -> Callable[[int], float]:
    """delay = base * attempt (attempt is 1-based)."""
    return lambda attempt: base_delay * attempt

@dataclass(slots=True, frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.8
    timeout_s: float | None = None
    backoff: Callable[[int], float] | None = None

    def delay(self, attempt: int) -> float:
        """Wait before retrying after failed attempt number `attempt`."""
        fn = self.backoff or linear_backoff(self.base_delay)
        return max(0.0, fn(attempt))

# Defaults taken from the production indexer
CHUNK_RETRY     = RetryPolicy(max_attempts=3, base_delay=0.8, timeout_s=30.0)
DETAIL_RETRY    = RetryPolicy(max_attempts=3, base_delay=1.0, timeout_s=15.0)
RATE_LIMIT_RETRY = RetryPolicy(max_attempts=5, base_delay=3.0)
