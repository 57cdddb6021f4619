from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Iterable, Mapping

from ..ports.rpc import RPCClient
from .planning import waves

logger = logging.getLogger(__name__)

TIMESTAMP_BATCH     = 20
PER_BLOCK_TIMEOUT_S = 10.0


class TimestampResolver:
    """block -> unix timestamp, cached for the life of the process.

    One instance is shared by every key, so a block resolved for one key's
    history is never fetched again for another. Failed lookups fall back to
    "now" and are not cached, so a later request can still get the real value.
    """

    def __init__(
        self,
        rpc: RPCClient,
        *,
        batch_size: int = TIMESTAMP_BATCH,
        per_block_timeout_s: float = PER_BLOCK_TIMEOUT_S,
        seed: Mapping[int, int] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.rpc = rpc
        self.batch_size = batch_size
        self.per_block_timeout_s = per_block_timeout_s
        self._cache: dict[int, int] = dict(seed or {})
        self._clock = clock

    def seed(self, timestamps: Mapping[int, int]) -> None:
        for b, t in timestamps.items():
            self._cache.setdefault(int(b), int(t))

    def cached(self, block_numbers: Iterable[int]) -> dict[int, int]:
        """Best-effort view without any network: cached values, else now."""
        now = int(self._clock())
        return {b: self._cache.get(b, now) for b in set(block_numbers)}

    def snapshot_timestamps(self) -> dict[int, int]:
        return dict(self._cache)

    async def _one(self, block: int) -> tuple[int, int | None]:
        try:
            ts = await asyncio.wait_for(self.rpc.block_timestamp(block), self.per_block_timeout_s)
        except Exception as e:
            logger.debug("timestamp for block %d unavailable: %s", block, e)
            return block, None
        return block, ts

    async def resolve(self, block_numbers: Iterable[int]) -> dict[int, int]:
        wanted = set(block_numbers)
        missing = sorted(b for b in wanted if b not in self._cache)
        if missing:
            logger.debug("resolving %d block timestamp(s)", len(missing))
        failed = 0
        for batch in waves(missing, self.batch_size):
            for block, ts in await asyncio.gather(*(self._one(b) for b in batch)):
                if ts is None:
                    failed += 1
                else:
                    self._cache[block] = ts
        if failed:
            logger.warning("%d block timestamp(s) fell back to now", failed)
        return self.cached(wanted)
