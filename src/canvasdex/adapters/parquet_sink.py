from __future__ import annotations
import asyncio, os, pyarrow as pa, pyarrow.parquet as pq
from typing import Iterable

from ..ports.storage import EventSink
from ..domain.models import RawBurnEvent, RawEditEvent

EDITS_SCHEMA = pa.schema([
    ("token_id",        pa.int32()),
    ("block_number",    pa.int64()),
    ("log_index",       pa.int32()),
    ("tx_hash",         pa.string()),
    ("change_count",    pa.int64()),
    ("new_pixel_count", pa.int64()),
    ("transformer",     pa.string()),
])

BURNS_SCHEMA = pa.schema([
    ("token_id",      pa.int32()),
    ("block_number",  pa.int64()),
    ("log_index",     pa.int32()),
    ("tx_hash",       pa.string()),
    ("total_actions", pa.int64()),
    ("owner",         pa.string()),
])

_SORT = [("token_id", "ascending"), ("block_number", "ascending"), ("log_index", "ascending")]

def _edits_to_table(events: Iterable[RawEditEvent]) -> pa.Table:
    evs = list(events)
    return pa.Table.from_arrays(
        arrays=[
            pa.array([e.token_id for e in evs], pa.int32()),
            pa.array([e.block_number for e in evs], pa.int64()),
            pa.array([e.log_index for e in evs], pa.int32()),
            pa.array([e.tx_hash for e in evs], pa.string()),
            pa.array([e.change_count for e in evs], pa.int64()),
            pa.array([e.new_pixel_count for e in evs], pa.int64()),
            pa.array([e.transformer for e in evs], pa.string()),
        ],
        schema=EDITS_SCHEMA,
    ).sort_by(_SORT)

def _burns_to_table(events: Iterable[RawBurnEvent]) -> pa.Table:
    evs = list(events)
    return pa.Table.from_arrays(
        arrays=[
            pa.array([e.token_id for e in evs], pa.int32()),
            pa.array([e.block_number for e in evs], pa.int64()),
            pa.array([e.log_index for e in evs], pa.int32()),
            pa.array([e.tx_hash for e in evs], pa.string()),
            pa.array([e.total_actions for e in evs], pa.int64()),
            pa.array([e.owner for e in evs], pa.string()),
        ],
        schema=BURNS_SCHEMA,
    ).sort_by(_SORT)

class ParquetEventSink(EventSink):
    def __init__(self, out_dir: str, codec: str = "zstd") -> None:
        self.out_dir = out_dir
        self.codec = codec
        os.makedirs(self.out_dir, exist_ok=True)

    def _write(self, table: pa.Table, name: str) -> str:
        path = os.path.join(self.out_dir, name)
        tmp  = path + ".tmp"
        pq.write_table(table, tmp, compression=self.codec)
        os.replace(tmp, path)
        return path

    async def write_events(self, edits: Iterable[RawEditEvent], burns: Iterable[RawBurnEvent]) -> list[str]:
        edits_t = _edits_to_table(edits)
        burns_t = _burns_to_table(burns)
        return [
            await asyncio.to_thread(self._write, edits_t, "edits.parquet"),
            await asyncio.to_thread(self._write, burns_t, "burns.parquet"),
        ]
