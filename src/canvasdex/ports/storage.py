from __future__ import annotations

from typing import Iterable, Protocol
from ..domain.models import ChunkRec, RawBurnEvent, RawEditEvent


class BlobStore(Protocol):
    """Port for a durable key/value blob store (JSON documents)."""

    async def put(self, key: str, body: bytes) -> str:
        """Store `body` under `key`, replacing any previous version atomically. Returns its URL."""

    async def get(self, key: str) -> bytes | None:
        """Return the stored bytes, or None if absent."""


class ManifestSink(Protocol):
    """Port for appending chunk status records (e.g., JSONL manifest)."""

    async def append(self, rec: ChunkRec) -> None:
        """Append a manifest record atomically (callers handle ordering/locking)."""


class EventSink(Protocol):
    """Port for exporting the per-key event maps to columnar storage (e.g., Parquet)."""

    async def write_events(
        self,
        edits: Iterable[RawEditEvent],
        burns: Iterable[RawBurnEvent],
    ) -> list[str]:
        """Persist both event kinds; return the paths written."""
