from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Literal

from ..domain.merge import copy_event_map, merge_burns, merge_edits
from ..domain.models import Aggregate, Failure, RawBurnEvent, RawEditEvent, ScanOutcome, Snapshot
from ..errors import ScanError
from ..ports.rpc import RPCClient
from .enrichment import EnrichmentBatcher
from .planning import merge_intervals
from .scanner import RangeScanner
from .timestamps import TimestampResolver

logger = logging.getLogger(__name__)

CycleMode = Literal["full_scan", "updated", "no_change"]


@dataclass(slots=True)
class ScanDeps:
    rpc: RPCClient
    scanner: RangeScanner
    enricher: EnrichmentBatcher
    deploy_block: int
    timestamps: TimestampResolver | None = None
    clock: Callable[[], float] = time.time


@dataclass(slots=True, frozen=True)
class CycleResult:
    snapshot: Snapshot
    mode: CycleMode
    changed: bool
    touched: frozenset[int] = frozenset()
    duration_s: float = 0.0


def sort_aggregates(aggs: list[Aggregate]) -> list[Aggregate]:
    return sorted(aggs, key=lambda a: (-a.level, -a.action_points, a.key_id))


def _require(outcome: ScanOutcome, kind: str, fb: int, tb: int) -> None:
    if isinstance(outcome, Failure):
        raise ScanError(f"{kind} scan {fb}-{tb} failed entirely: {outcome.reason}")


def _timestamps(deps: ScanDeps, fallback: dict[int, int]) -> dict[int, int]:
    return deps.timestamps.snapshot_timestamps() if deps.timestamps is not None else dict(fallback)


async def run_full_scan(deps: ScanDeps) -> CycleResult:
    t0 = time.monotonic()
    head = await deps.rpc.latest_block()
    logger.info("full scan %d-%d", deps.deploy_block, head)

    edits_o, burns_o = await asyncio.gather(
        deps.scanner.scan("edit", deps.deploy_block, head),
        deps.scanner.scan("burn", deps.deploy_block, head),
    )
    _require(edits_o, "edit", deps.deploy_block, head)
    _require(burns_o, "burn", deps.deploy_block, head)

    edits: dict[int, list[RawEditEvent]] = {}
    burns: dict[int, list[RawBurnEvent]] = {}
    merge_edits(edits, edits_o.events)  # type: ignore[arg-type]
    merge_burns(burns, burns_o.events)  # type: ignore[arg-type]
    logger.info("found %d edited keys, %d burn receivers", len(edits), len(burns))

    aggregates = await deps.enricher.enrich(edits.keys(), {k: len(v) for k, v in edits.items()})
    snapshot = Snapshot(
        latest_scanned_block=head,
        saved_at=deps.clock(),
        deploy_block=deps.deploy_block,
        edits_by_key=edits,
        burns_by_key=burns,
        aggregates=sort_aggregates(aggregates),
        skipped_ranges=merge_intervals(edits_o.skipped_ranges + burns_o.skipped_ranges),
        timestamps=_timestamps(deps, {}),
    )
    dt = time.monotonic() - t0
    logger.info("full scan done: %d aggregates at block %d in %.1fs", len(snapshot.aggregates), head, dt)
    return CycleResult(snapshot, "full_scan", True, frozenset(edits), dt)


async def run_incremental_scan(deps: ScanDeps, existing: Snapshot) -> CycleResult:
    t0 = time.monotonic()
    head = await deps.rpc.latest_block()
    from_block = existing.latest_scanned_block + 1
    retry_ranges = list(existing.skipped_ranges)

    if from_block > head and not retry_ranges:
        logger.info("index up to date at block %d", existing.latest_scanned_block)
        snapshot = replace(existing, saved_at=deps.clock())
        return CycleResult(snapshot, "no_change", False, frozenset(), time.monotonic() - t0)

    to_block = max(head, existing.latest_scanned_block)
    logger.info("incremental scan %d-%d (+%d skipped range(s) to retry)", from_block, to_block, len(retry_ranges))
    edits_o, burns_o, edits_r, burns_r = await asyncio.gather(
        deps.scanner.scan("edit", from_block, to_block),
        deps.scanner.scan("burn", from_block, to_block),
        deps.scanner.scan_ranges("edit", retry_ranges),
        deps.scanner.scan_ranges("burn", retry_ranges),
    )
    if from_block <= to_block:
        _require(edits_o, "edit", from_block, to_block)
        _require(burns_o, "burn", from_block, to_block)

    edits = copy_event_map(existing.edits_by_key)
    burns = copy_event_map(existing.burns_by_key)
    touched_edits = merge_edits(edits, [*edits_o.events, *edits_r.events])  # type: ignore[list-item]
    touched_burns = merge_burns(burns, [*burns_o.events, *burns_r.events])  # type: ignore[list-item]
    # burns change level / action points, so burn receivers are refreshed too
    to_refresh = {k for k in touched_edits | touched_burns if k in edits}

    aggregates = existing.aggregates
    if to_refresh:
        logger.info("refreshing details for %d key(s)", len(to_refresh))
        refreshed = await deps.enricher.enrich(to_refresh, {k: len(edits[k]) for k in to_refresh})
        aggregates = sort_aggregates([a for a in existing.aggregates if a.key_id not in to_refresh] + refreshed)

    skipped = merge_intervals(
        edits_o.skipped_ranges + burns_o.skipped_ranges + edits_r.skipped_ranges + burns_r.skipped_ranges
    )
    changed = bool(touched_edits or touched_burns) or skipped != existing.skipped_ranges or to_block != existing.latest_scanned_block
    snapshot = Snapshot(
        latest_scanned_block=to_block,
        saved_at=deps.clock(),
        deploy_block=existing.deploy_block,
        edits_by_key=edits,
        burns_by_key=burns,
        aggregates=aggregates,
        skipped_ranges=skipped,
        timestamps=_timestamps(deps, existing.timestamps),
    )
    dt = time.monotonic() - t0
    logger.info(
        "incremental scan done: %d new edit(s) on %d key(s), %d burn receiver(s), block %d in %.1fs",
        len(edits_o.events) + len(edits_r.events), len(touched_edits), len(touched_burns), to_block, dt,
    )
    return CycleResult(snapshot, "updated" if changed else "no_change", changed,
                       frozenset(touched_edits | touched_burns), dt)


async def run_scan_cycle(deps: ScanDeps, existing: Snapshot | None, *, force_full: bool = False) -> CycleResult:
    """Full scan when nothing is indexed yet (or when forced), otherwise incremental."""
    if existing is None or force_full:
        return await run_full_scan(deps)
    return await run_incremental_scan(deps, existing)
