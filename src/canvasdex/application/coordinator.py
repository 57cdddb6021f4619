"""Cache coordinator: single-flight scans with stale-while-revalidate reads.

State machine
-------------
- EMPTY: nothing in memory. The first read loads the durable snapshot; if
  there is none it starts a full scan and waits for it.
- FRESH: snapshot younger than the TTL, served as is.
- STALE: snapshot older than the TTL, served as is while one background
  incremental scan runs.
- SCANNING: a scan task exists; every caller attaches to that same task.

The in-memory state is an immutable `CacheState` replaced in one assignment,
so readers see either the previous snapshot or the new one, never a merge in
progress. A failed refresh keeps the previous snapshot and restarts its TTL
clock, so retries happen at TTL pace; a failed first scan raises
`NotIndexedError`.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from ..domain.models import Aggregate, Snapshot
from ..domain.value_types import KEY_SPACE
from ..errors import InvalidKeyError, NotIndexedError
from .snapshot_store import SnapshotStore
from .timestamps import TimestampResolver
from .use_cases import CycleResult, ScanDeps, run_scan_cycle
from .views import key_history

logger = logging.getLogger(__name__)

CACHE_TTL_S       = 5 * 60
HISTORY_TIMEOUT_S = 25.0


class CacheStatus(str, Enum):
    EMPTY = "empty"
    FRESH = "fresh"
    STALE = "stale"
    SCANNING = "scanning"


@dataclass(slots=True, frozen=True)
class CacheState:
    snapshot: Snapshot | None
    loaded_at: float


@dataclass(slots=True, frozen=True)
class RefreshOutcome:
    state: CacheState
    result: CycleResult | None = None
    error: BaseException | None = None


class CacheCoordinator:
    def __init__(
        self,
        deps: ScanDeps,
        store: SnapshotStore,
        timestamps: TimestampResolver,
        *,
        ttl_s: float = CACHE_TTL_S,
        history_timeout_s: float = HISTORY_TIMEOUT_S,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.deps = deps
        self.store = store
        self.timestamps = timestamps
        self.ttl_s = ttl_s
        self.history_timeout_s = history_timeout_s
        self._clock = clock
        self._state = CacheState(None, 0.0)
        self._inflight: asyncio.Task[RefreshOutcome] | None = None
        self._durable_checked = False
        self._load_lock = asyncio.Lock()
        self.scans_started = 0

    # ---------------------------------------------------------------- state

    @property
    def state(self) -> CacheState:
        return self._state

    def status(self) -> CacheStatus:
        if self._inflight is not None and not self._inflight.done():
            return CacheStatus.SCANNING
        if self._state.snapshot is None:
            return CacheStatus.EMPTY
        if self._clock() - self._state.loaded_at < self.ttl_s:
            return CacheStatus.FRESH
        return CacheStatus.STALE

    async def _ensure_loaded(self) -> None:
        if self._durable_checked:
            return
        async with self._load_lock:
            if self._durable_checked:
                return
            snapshot = await self.store.load()
            if snapshot is not None and self._state.snapshot is None:
                logger.info("loaded snapshot at block %d", snapshot.latest_scanned_block)
                self.timestamps.seed(snapshot.timestamps)
                # age counts from when the snapshot was written, not from now
                self._state = CacheState(snapshot, snapshot.saved_at)
            self._durable_checked = True

    # ---------------------------------------------------------------- scans

    def _start_refresh(self, force_full: bool = False) -> asyncio.Task[RefreshOutcome]:
        if self._inflight is None or self._inflight.done():
            self.scans_started += 1
            self._inflight = asyncio.create_task(self._refresh(force_full))
        return self._inflight

    async def _refresh(self, force_full: bool) -> RefreshOutcome:
        prior = self._state.snapshot
        try:
            result = await run_scan_cycle(self.deps, prior, force_full=force_full)
        except Exception as e:
            if prior is None:
                logger.error("first scan failed: %s", e)
            else:
                logger.warning("refresh failed, serving snapshot at block %d: %s", prior.latest_scanned_block, e)
            if prior is not None:
                self._state = CacheState(prior, self._clock())
            return RefreshOutcome(self._state, None, e)

        try:
            await self.store.save(result.snapshot)
        except Exception as e:
            logger.error("failed to persist snapshot at block %d: %s", result.snapshot.latest_scanned_block, e)
        self._state = CacheState(result.snapshot, self._clock())
        return RefreshOutcome(self._state, result)

    async def _await(self, task: asyncio.Task[RefreshOutcome]) -> RefreshOutcome:
        # shield: a reader that gives up must not cancel the shared scan
        return await asyncio.shield(task)

    async def get_snapshot(self) -> Snapshot:
        await self._ensure_loaded()
        state = self._state
        if state.snapshot is not None:
            if self._clock() - state.loaded_at >= self.ttl_s:
                self._start_refresh()
            return state.snapshot

        outcome = await self._await(self._start_refresh())
        if outcome.state.snapshot is None:
            raise NotIndexedError("index not built yet, retry later") from outcome.error
        return outcome.state.snapshot

    async def run_cycle(self, force_full: bool = False) -> CycleResult:
        """One scan cycle for the scheduler. Joins a scan already in flight."""
        await self._ensure_loaded()
        outcome = await self._await(self._start_refresh(force_full))
        if outcome.error is not None:
            raise outcome.error
        assert outcome.result is not None
        return outcome.result

    async def wait_idle(self) -> None:
        """Wait for the in-flight scan, if any, to finish."""
        task = self._inflight
        if task is not None:
            await asyncio.shield(task)

    # ---------------------------------------------------------------- reads

    async def get_aggregates(self) -> list[Aggregate]:
        return (await self.get_snapshot()).aggregates

    @staticmethod
    def _check_key(key_id: int) -> None:
        if not isinstance(key_id, int) or not 0 <= key_id < KEY_SPACE:
            raise InvalidKeyError(key_id)

    async def _history(self, snapshot: Snapshot, key_id: int) -> dict[str, Any]:
        blocks = [e.block_number for e in snapshot.edits_by_key.get(key_id, [])]
        blocks += [e.block_number for e in snapshot.burns_by_key.get(key_id, [])]
        try:
            ts = await asyncio.wait_for(self.timestamps.resolve(blocks), self.history_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("timestamp resolution for key %d timed out, using cached values", key_id)
            ts = self.timestamps.cached(blocks)
        return key_history(snapshot, key_id, ts)

    async def get_key_history(self, key_id: int) -> dict[str, Any]:
        self._check_key(key_id)
        return await self._history(await self.get_snapshot(), key_id)

    async def stored_key_history(self, key_id: int) -> dict[str, Any]:
        """Key history from the durable snapshot as is; never starts a scan."""
        self._check_key(key_id)
        await self._ensure_loaded()
        snapshot = self._state.snapshot
        if snapshot is None:
            raise NotIndexedError("no snapshot stored yet; run `canvasdex scan` first")
        return await self._history(snapshot, key_id)
