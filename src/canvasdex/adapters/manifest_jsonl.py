from __future__ import annotations
import os, json, asyncio
from dataclasses import asdict
from ..ports.storage import ManifestSink
from ..domain.models import ChunkRec

class JSONLManifest(ManifestSink):
    """Append-only audit trail of every chunk fetch (done / failed)."""

    def __init__(self, path: str) -> None:
        self.path = path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        self._lock = asyncio.Lock()

    async def append(self, rec: ChunkRec) -> None:
        line = json.dumps(asdict(rec), separators=(",", ":")) + "\n"
        async with self._lock:
            await asyncio.to_thread(self._write_line, self.path, line)

    @staticmethod
    def _write_line(path: str, line: str) -> None:
        with open(path, "a") as f:
            f.write(line); f.flush(); os.fsync(f.fileno())

def load_failed_ranges(path: str) -> list[tuple[int, int, str]]:
    """(from, to, kind) of chunks whose *last* record is "failed"."""
    last: dict[tuple[int, int, str], str] = {}
    if not os.path.exists(path):
        return []
    with open(path, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                rec = json.loads(line)
            except json.JSONDecodeError:
                # torn trailing line from an interrupted write
                continue
            last[(int(rec["from_block"]), int(rec["to_block"]), str(rec.get("kind", "")))] = rec.get("status", "")
    return sorted(k for k, status in last.items() if status == "failed")
