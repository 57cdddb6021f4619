import asyncio
import json

import pytest

from canvasdex.adapters.blob_local import LocalBlobStore
from canvasdex.application.snapshot_store import EVENTS_KEY, SnapshotStore, events_document
from canvasdex.domain.decoding import decode_burn, decode_edit
from canvasdex.domain.models import Aggregate, Snapshot
from canvasdex.errors import SnapshotError

from conftest import burn_log, edit_log


def _snapshot(block=120_000, saved_at=1_712_345_678.5):
    return Snapshot(
        latest_scanned_block=block,
        saved_at=saved_at,
        deploy_block=1000,
        edits_by_key={42: [decode_edit(edit_log(42, 2_000)), decode_edit(edit_log(42, 9_000, log_index=4))]},
        burns_by_key={42: [decode_burn(burn_log(42, 9_500))]},
        aggregates=[Aggregate(42, 3, 15, 120, 4, "Cat", 2)],
        skipped_ranges=[(51_000, 100_999)],
        timestamps={2_000: 1_712_000_000},
    )


def test_roundtrip_through_local_store(tmp_path):
    store = SnapshotStore(LocalBlobStore(tmp_path))
    snap = _snapshot()

    async def run():
        await store.save(snap)
        return await store.load()

    assert asyncio.run(run()) == snap
    doc = json.loads((tmp_path / EVENTS_KEY).read_text())
    assert doc["latestBlock"] == 120_000
    assert doc["editsByToken"][0][0] == 42
    assert doc["skippedRanges"] == [[51_000, 100_999]]


def test_load_absent_is_none(blobs):
    assert asyncio.run(SnapshotStore(blobs).load()) is None


def test_load_malformed_is_none(blobs):
    blobs.blobs[EVENTS_KEY] = b"{not json"
    assert asyncio.run(SnapshotStore(blobs).load()) is None
    blobs.blobs[EVENTS_KEY] = json.dumps({"savedAt": 1}).encode()
    assert asyncio.run(SnapshotStore(blobs).load()) is None


def test_load_without_aggregates_document(blobs):
    blobs.blobs[EVENTS_KEY] = json.dumps(events_document(_snapshot())).encode()
    snap = asyncio.run(SnapshotStore(blobs).load())
    assert snap.aggregates == []
    assert len(snap.edits_by_key[42]) == 2


def test_save_refuses_to_move_backwards(blobs):
    store = SnapshotStore(blobs)
    asyncio.run(store.save(_snapshot(block=200_000)))
    with pytest.raises(SnapshotError):
        asyncio.run(store.save(_snapshot(block=150_000)))
    asyncio.run(store.save(_snapshot(block=200_000, saved_at=1_712_999_999.0)))
    assert len(blobs.puts) == 4
