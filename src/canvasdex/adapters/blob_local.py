from __future__ import annotations
import asyncio, os
from pathlib import Path
from ..ports.storage import BlobStore

class LocalBlobStore(BlobStore):
    """
    Filesystem-backed blob store. Keys map to paths under `root_dir`
    (e.g. "canvas-index/events.json"). Writes go to a temp file first and are
    renamed into place, so readers only ever see a complete document.
    """
    def __init__(self, root_dir: str | os.PathLike[str]) -> None:
        self.root = Path(root_dir)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        p = (self.root / key).resolve()
        if self.root.resolve() not in p.parents:
            raise ValueError(f"blob key escapes store root: {key!r}")
        return p

    async def put(self, key: str, body: bytes) -> str:
        path = self._path(key)
        await asyncio.to_thread(self._write, path, body)
        return path.as_uri()

    async def get(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            return None

    @staticmethod
    def _write(path: Path, body: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        with open(tmp, "wb") as f:
            f.write(body); f.flush(); os.fsync(f.fileno())
        os.replace(tmp, path)
