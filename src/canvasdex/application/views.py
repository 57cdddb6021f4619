"""Read models served to the presentation layer. All pure functions of a snapshot."""
from __future__ import annotations

from typing import Any, Callable, Mapping

from ..domain.models import Aggregate, Snapshot

BOARD_LIMIT  = 50
THE_100      = 100
LATEST_MAX   = 20


def _board(aggs: list[Aggregate], value: Callable[[Aggregate], int], label: str, limit: int) -> list[dict[str, Any]]:
    ranked = sorted(aggs, key=lambda a: (-value(a), -a.level, a.key_id))
    return [{"tokenId": a.key_id, "value": value(a), "label": label, "type": a.category} for a in ranked[:limit]]


def leaderboards(snapshot: Snapshot, limit: int = BOARD_LIMIT) -> dict[str, Any]:
    aggs = snapshot.aggregates
    return {
        "all": [
            {"tokenId": a.key_id, "level": a.level, "ap": a.action_points, "added": a.added_count,
             "removed": a.removed_count, "type": a.category, "editCount": a.edit_count}
            for a in aggs
        ],
        "highestLevel":  _board(aggs, lambda a: a.level, "level", limit),
        "mostAP":        _board(aggs, lambda a: a.action_points, "ap", limit),
        "mostEdited":    _board(aggs, lambda a: a.edit_count, "edits", limit),
        "biggestGlowup": _board(aggs, lambda a: a.added_count, "added", limit),
        "mostChanged":   _board(aggs, lambda a: a.added_count + a.removed_count, "changed", limit),
        "totalCustomized": len(aggs),
        "scannedAt":   snapshot.saved_at,
        "latestBlock": snapshot.latest_scanned_block,
    }


def the_100(snapshot: Snapshot, limit: int = THE_100) -> dict[str, Any]:
    """The earliest-edited keys, ranked by the block of their first edit."""
    categories = {a.key_id: a.category for a in snapshot.aggregates}
    firsts = [(events[0], key) for key, events in snapshot.edits_by_key.items() if events]
    firsts.sort(key=lambda p: (p[0].block_number, p[0].log_index, p[1]))
    entries = [
        {
            "rank": i + 1,
            "tokenId": key,
            "blockNumber": ev.block_number,
            "txHash": ev.tx_hash,
            "changeCount": ev.change_count,
            "type": categories.get(key, "Human"),
        }
        for i, (ev, key) in enumerate(firsts[:limit])
    ]
    return {"entries": entries, "scannedAt": snapshot.saved_at, "latestBlock": snapshot.latest_scanned_block}


def latest_edits(snapshot: Snapshot, count: int = 10) -> dict[str, Any]:
    count = max(1, min(LATEST_MAX, count))
    aggs = {a.key_id: a for a in snapshot.aggregates}
    lasts = [(events[-1], key) for key, events in snapshot.edits_by_key.items() if events]
    lasts.sort(key=lambda p: (p[0].block_number, p[0].log_index), reverse=True)
    entries = []
    for ev, key in lasts[:count]:
        a = aggs.get(key)
        entries.append({
            "tokenId": key,
            "blockNumber": ev.block_number,
            "txHash": ev.tx_hash,
            "level": a.level if a else 1,
            "ap": a.action_points if a else 0,
            "type": a.category if a else "Human",
            "editCount": a.edit_count if a else len(snapshot.edits_by_key[key]),
        })
    return {"entries": entries, "latestBlock": snapshot.latest_scanned_block, "savedAt": snapshot.saved_at}


def key_history(snapshot: Snapshot, key_id: int, timestamps: Mapping[int, int]) -> dict[str, Any]:
    edits = [
        {"blockNumber": e.block_number, "timestamp": timestamps.get(e.block_number), "txHash": e.tx_hash,
         "changeCount": e.change_count, "newPixelCount": e.new_pixel_count, "transformer": e.transformer}
        for e in snapshot.edits_by_key.get(key_id, [])
    ]
    burns = [
        {"blockNumber": e.block_number, "timestamp": timestamps.get(e.block_number), "txHash": e.tx_hash,
         "tokenId": e.token_id, "totalActions": e.total_actions, "owner": e.owner}
        for e in snapshot.burns_by_key.get(key_id, [])
    ]
    return {"tokenId": key_id, "edits": edits, "burns": burns}
