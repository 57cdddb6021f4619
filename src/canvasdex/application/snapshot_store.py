"""Durable snapshot persistence over a `BlobStore`.

Two JSON documents:

- ``canvas-index/events.json``: raw per-key event maps, scan high-water mark,
  ranges that still need a rescan, and resolved block timestamps (~1MB).
- ``canvas-index/aggregates.json``: derived per-key aggregates (~50KB).

Maps are serialised as ``[[key, [event, ...]], ...]`` entry lists.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from ..domain.models import Aggregate, RawBurnEvent, RawEditEvent, Snapshot
from ..errors import SnapshotError
from ..ports.storage import BlobStore

logger = logging.getLogger(__name__)

EVENTS_KEY     = "canvas-index/events.json"
AGGREGATES_KEY = "canvas-index/aggregates.json"


# --------------------------- (de)serialisation --------------------------------

def edit_to_json(e: RawEditEvent) -> dict[str, Any]:
    return {"blockNumber": e.block_number, "txHash": e.tx_hash, "logIndex": e.log_index,
            "changeCount": e.change_count, "newPixelCount": e.new_pixel_count,
            "transformer": e.transformer, "tokenId": e.token_id}

def burn_to_json(e: RawBurnEvent) -> dict[str, Any]:
    return {"blockNumber": e.block_number, "txHash": e.tx_hash, "logIndex": e.log_index,
            "tokenId": e.token_id, "totalActions": e.total_actions, "owner": e.owner}

def aggregate_to_json(a: Aggregate) -> dict[str, Any]:
    return {"id": a.key_id, "level": a.level, "ap": a.action_points, "added": a.added_count,
            "removed": a.removed_count, "type": a.category, "editCount": a.edit_count}

def _edit_from_json(d: dict[str, Any], key: int) -> RawEditEvent:
    return RawEditEvent(
        block_number=int(d["blockNumber"]), tx_hash=str(d["txHash"]),
        change_count=int(d["changeCount"]), new_pixel_count=int(d["newPixelCount"]),
        transformer=str(d["transformer"]), token_id=int(d.get("tokenId", key)),
        log_index=int(d.get("logIndex", 0)),
    )

def _burn_from_json(d: dict[str, Any], key: int) -> RawBurnEvent:
    return RawBurnEvent(
        block_number=int(d["blockNumber"]), tx_hash=str(d["txHash"]),
        token_id=int(d.get("tokenId", key)), total_actions=int(d["totalActions"]),
        owner=str(d["owner"]), log_index=int(d.get("logIndex", 0)),
    )

def _aggregate_from_json(d: dict[str, Any]) -> Aggregate:
    return Aggregate(
        key_id=int(d["id"]), level=int(d["level"]), action_points=int(d["ap"]),
        added_count=int(d["added"]), removed_count=int(d["removed"]),
        category=str(d["type"]), edit_count=int(d["editCount"]),
    )

def events_document(s: Snapshot) -> dict[str, Any]:
    return {
        "latestBlock":   s.latest_scanned_block,
        "savedAt":       s.saved_at,
        "deployBlock":   s.deploy_block,
        "editsByToken":  [[k, [edit_to_json(e) for e in v]] for k, v in sorted(s.edits_by_key.items())],
        "burnsByToken":  [[k, [burn_to_json(e) for e in v]] for k, v in sorted(s.burns_by_key.items())],
        "skippedRanges": [[a, b] for a, b in s.skipped_ranges],
        "timestamps":    [[b, t] for b, t in sorted(s.timestamps.items())],
    }

def aggregates_document(s: Snapshot) -> dict[str, Any]:
    return {
        "aggregates":  [aggregate_to_json(a) for a in s.aggregates],
        "savedAt":     s.saved_at,
        "latestBlock": s.latest_scanned_block,
    }

def snapshot_from_documents(events: dict[str, Any], aggregates: dict[str, Any] | None) -> Snapshot:
    return Snapshot(
        latest_scanned_block=int(events["latestBlock"]),
        saved_at=float(events["savedAt"]),
        deploy_block=int(events.get("deployBlock", 0)),
        edits_by_key={int(k): [_edit_from_json(d, int(k)) for d in v] for k, v in events.get("editsByToken", [])},
        burns_by_key={int(k): [_burn_from_json(d, int(k)) for d in v] for k, v in events.get("burnsByToken", [])},
        aggregates=[_aggregate_from_json(d) for d in (aggregates or {}).get("aggregates", [])],
        skipped_ranges=[(int(a), int(b)) for a, b in events.get("skippedRanges", [])],
        timestamps={int(b): int(t) for b, t in events.get("timestamps", [])},
    )


# ------------------------------- store ----------------------------------------

class SnapshotStore:
    def __init__(self, blobs: BlobStore) -> None:
        self.blobs = blobs

    async def _get_json(self, key: str) -> dict[str, Any] | None:
        raw = await self.blobs.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("blob %s is not valid JSON: %s", key, e)
            return None

    async def _put_json(self, key: str, data: dict[str, Any]) -> str:
        body = json.dumps(data, separators=(",", ":")).encode()
        return await self.blobs.put(key, body)

    async def load(self) -> Snapshot | None:
        events = await self._get_json(EVENTS_KEY)
        if events is None:
            return None
        aggregates = await self._get_json(AGGREGATES_KEY)
        try:
            return snapshot_from_documents(events, aggregates)
        except (KeyError, TypeError, ValueError) as e:
            logger.error("stored snapshot is malformed, ignoring: %s", e)
            return None

    async def save(self, snapshot: Snapshot) -> None:
        current = await self._get_json(EVENTS_KEY)
        if current is not None and int(current.get("latestBlock", 0)) > snapshot.latest_scanned_block:
            raise SnapshotError(
                f"refusing to move latestBlock backwards "
                f"({current['latestBlock']} -> {snapshot.latest_scanned_block})"
            )
        # events first: a crash in between leaves aggregates one cycle behind, never ahead
        await self._put_json(EVENTS_KEY, events_document(snapshot))
        await self._put_json(AGGREGATES_KEY, aggregates_document(snapshot))
