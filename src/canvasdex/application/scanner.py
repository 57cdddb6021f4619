from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from ..domain.models import BlockRange, Failure, PartialFailure, RawEvent, ScanOutcome, Success
from ..domain.value_types import EventKind
from .fetcher import ChunkFetcher
from .planning import merge_intervals, plan_chunks, waves

logger = logging.getLogger(__name__)

CHUNK_SIZE      = 50_000
PARALLEL_CHUNKS = 12


class RangeScanner:
    """Split a block range into chunks and fetch them in bounded-concurrency waves.

    Waves run one after another; chunks inside a wave run concurrently.
    Results are concatenated in wave order but are NOT sorted.
    """

    def __init__(
        self,
        fetcher: ChunkFetcher,
        *,
        chunk_size: int = CHUNK_SIZE,
        parallel_chunks: int = PARALLEL_CHUNKS,
    ) -> None:
        self.fetcher = fetcher
        self.chunk_size = chunk_size
        self.parallel_chunks = parallel_chunks

    async def scan(self, kind: EventKind, from_block: int, to_block: int) -> ScanOutcome:
        if from_block > to_block:
            return Success([])
        return await self._scan_chunks(kind, plan_chunks(from_block, to_block, self.chunk_size))

    async def scan_ranges(self, kind: EventKind, ranges: Iterable[tuple[int, int]]) -> ScanOutcome:
        chunks: list[BlockRange] = []
        for s, e in merge_intervals(list(ranges)):
            chunks.extend(plan_chunks(s, e, self.chunk_size))
        if not chunks:
            return Success([])
        return await self._scan_chunks(kind, chunks)

    async def _scan_chunks(self, kind: EventKind, chunks: list[BlockRange]) -> ScanOutcome:
        logger.info("scanning %s: %d chunks (%d-%d)", kind, len(chunks), chunks[0].start, chunks[-1].end)
        events: list[RawEvent] = []
        skipped: list[tuple[int, int]] = []
        last_error: str | None = None
        n_failed = 0
        for wave in waves(chunks, self.parallel_chunks):
            results = await asyncio.gather(*(self.fetcher.fetch(kind, c.start, c.end) for c in wave))
            for r in results:
                if r.ok:
                    events.extend(r.events)
                else:
                    skipped.append((r.from_block, r.to_block))
                    n_failed += 1
                    last_error = r.error

        if not skipped:
            return Success(events)
        skipped = merge_intervals(skipped)
        logger.warning("%s scan skipped %d range(s): %s", kind, len(skipped), skipped)
        if n_failed == len(chunks):
            return Failure(last_error or "all chunks failed", skipped)
        return PartialFailure(events, skipped)
