import asyncio
from dataclasses import replace

import pytest

from canvasdex.application.enrichment import EnrichmentBatcher
from canvasdex.application.fetcher import ChunkFetcher
from canvasdex.application.scanner import RangeScanner
from canvasdex.application.use_cases import ScanDeps, run_full_scan, run_incremental_scan, run_scan_cycle
from canvasdex.errors import ScanError

from conftest import CANVAS, FakeRPC, burn_log, edit_log


def _content(snap):
    return (snap.latest_scanned_block, snap.edits_by_key, snap.burns_by_key, snap.aggregates, snap.skipped_ranges)


def test_full_scan_indexes_edits_across_chunks(rpc, deps):
    rpc.head = 101_000
    rpc.logs = [edit_log(42, 2_000), edit_log(42, 60_000), edit_log(42, 60_000, log_index=2), burn_log(42, 70_000)]
    result = asyncio.run(run_full_scan(deps))
    snap = result.snapshot
    assert result.mode == "full_scan"
    assert snap.latest_scanned_block == 101_000
    assert [e.block_number for e in snap.edits_by_key[42]] == [2_000, 60_000, 60_000]
    assert [a.key_id for a in snap.aggregates] == [42]
    assert snap.aggregates[0].edit_count == 3
    assert len(snap.burns_by_key[42]) == 1
    assert snap.skipped_ranges == []


def test_incremental_noop_makes_no_log_queries(rpc, deps, clock):
    rpc.head = 60_000
    rpc.logs = [edit_log(1, 5_000)]
    first = asyncio.run(run_full_scan(deps)).snapshot
    rpc.log_calls.clear()
    clock.advance(120)
    result = asyncio.run(run_incremental_scan(deps, first))
    assert rpc.log_calls == []
    assert result.mode == "no_change" and not result.changed
    assert result.snapshot == replace(first, saved_at=clock.now)


def test_incremental_reaches_same_state_as_full(rpc, deps, detail, sleeps):
    rpc.logs = [edit_log(1, 5_000), edit_log(2, 40_000), burn_log(2, 45_000),
                edit_log(2, 130_000), edit_log(3, 160_000), burn_log(1, 170_000)]
    rpc.head = 100_000
    first = asyncio.run(run_full_scan(deps)).snapshot
    rpc.head = 200_000
    inc = asyncio.run(run_incremental_scan(deps, first))
    assert inc.mode == "updated"
    assert inc.touched == {1, 2, 3}

    fresh_rpc = FakeRPC(rpc.logs, head=200_000)
    fresh = ScanDeps(
        rpc=fresh_rpc,
        scanner=RangeScanner(ChunkFetcher(fresh_rpc, CANVAS, sleep=sleeps), chunk_size=50_000),
        enricher=EnrichmentBatcher(detail, sleep=sleeps),
        deploy_block=1000,
    )
    full = asyncio.run(run_full_scan(fresh)).snapshot
    assert _content(inc.snapshot) == _content(full)


def test_incremental_refreshes_only_touched_keys(rpc, deps, detail):
    rpc.logs = [edit_log(1, 5_000), edit_log(2, 6_000)]
    rpc.head = 50_000
    first = asyncio.run(run_full_scan(deps)).snapshot
    detail.calls.clear()
    rpc.logs.append(edit_log(2, 55_000))
    rpc.head = 60_000
    inc = asyncio.run(run_incremental_scan(deps, first))
    assert {k for _, k in detail.calls} == {2}
    before = {a.key_id: a for a in first.aggregates}
    after = {a.key_id: a for a in inc.snapshot.aggregates}
    assert after[1] is before[1]
    assert after[2].edit_count == 2
    assert first.edits_by_key[2] != inc.snapshot.edits_by_key[2]


def test_skipped_range_is_recorded_and_retried(rpc, deps):
    rpc.head = 150_999
    rpc.logs = [edit_log(5, 2_000), edit_log(5, 60_000)]
    rpc.fail_ranges.add((51_000, 100_999))
    first = asyncio.run(run_full_scan(deps)).snapshot
    assert first.skipped_ranges == [(51_000, 100_999)]
    assert len(first.edits_by_key[5]) == 1

    rpc.fail_ranges.clear()
    rpc.log_calls.clear()
    again = asyncio.run(run_incremental_scan(deps, first))
    assert again.mode == "updated"
    assert again.snapshot.skipped_ranges == []
    assert again.snapshot.latest_scanned_block == 150_999
    assert [e.block_number for e in again.snapshot.edits_by_key[5]] == [2_000, 60_000]
    assert {(fb, tb) for _, fb, tb in rpc.log_calls} == {(51_000, 100_999)}


def test_full_scan_fails_when_every_chunk_fails(rpc, deps):
    rpc.head = 40_000
    rpc.fail_ranges.add((1000, 40_000))
    with pytest.raises(ScanError):
        asyncio.run(run_full_scan(deps))


def test_scan_cycle_picks_mode(rpc, deps):
    rpc.head = 10_000
    first = asyncio.run(run_scan_cycle(deps, None))
    assert first.mode == "full_scan"
    again = asyncio.run(run_scan_cycle(deps, first.snapshot))
    assert again.mode == "no_change"
    forced = asyncio.run(run_scan_cycle(deps, first.snapshot, force_full=True))
    assert forced.mode == "full_scan"
