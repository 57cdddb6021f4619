from canvasdex.application.views import key_history, latest_edits, leaderboards, the_100
from canvasdex.domain.decoding import decode_burn, decode_edit
from canvasdex.domain.models import Aggregate, Snapshot

from conftest import burn_log, edit_log


def _snapshot():
    edits = {
        1: [decode_edit(edit_log(1, 500)), decode_edit(edit_log(1, 900))],
        2: [decode_edit(edit_log(2, 300, change=40))],
        3: [decode_edit(edit_log(3, 500, log_index=7)), decode_edit(edit_log(3, 950))],
    }
    return Snapshot(
        latest_scanned_block=1_000,
        saved_at=1_712_000_000.0,
        deploy_block=100,
        edits_by_key=edits,
        burns_by_key={3: [decode_burn(burn_log(3, 960, actions=12))]},
        aggregates=[
            Aggregate(3, 5, 20, 10, 2, "Cat", 2),
            Aggregate(1, 2, 50, 70, 40, "Alien", 2),
            Aggregate(2, 2, 10, 5, 1, "Human", 1),
        ],
    )


def test_leaderboards_rank_by_each_measure():
    boards = leaderboards(_snapshot())
    assert boards["totalCustomized"] == 3
    assert [e["tokenId"] for e in boards["highestLevel"]] == [3, 1, 2]
    assert [e["tokenId"] for e in boards["mostAP"]] == [1, 3, 2]
    assert [e["tokenId"] for e in boards["mostChanged"]] == [1, 3, 2]
    assert boards["mostEdited"][0] == {"tokenId": 3, "value": 2, "label": "edits", "type": "Cat"}
    assert boards["latestBlock"] == 1_000


def test_leaderboards_limit():
    assert len(leaderboards(_snapshot(), limit=1)["mostAP"]) == 1


def test_the_100_orders_by_first_edit():
    entries = the_100(_snapshot())["entries"]
    assert [(e["rank"], e["tokenId"]) for e in entries] == [(1, 2), (2, 1), (3, 3)]
    assert entries[0]["changeCount"] == 40
    assert entries[0]["type"] == "Human"


def test_latest_edits_newest_first_and_clamped():
    out = latest_edits(_snapshot(), count=2)
    assert [e["tokenId"] for e in out["entries"]] == [3, 1]
    assert len(latest_edits(_snapshot(), count=0)["entries"]) == 1
    assert len(latest_edits(_snapshot(), count=500)["entries"]) == 3


def test_key_history_attaches_timestamps():
    hist = key_history(_snapshot(), 3, {500: 11, 950: 22, 960: 33})
    assert [(e["blockNumber"], e["timestamp"]) for e in hist["edits"]] == [(500, 11), (950, 22)]
    assert hist["burns"][0]["totalActions"] == 12
    assert hist["burns"][0]["timestamp"] == 33
