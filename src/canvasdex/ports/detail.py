# canvasdex/ports/detail.py
from __future__ import annotations

from typing import Any, Protocol


class DetailAPI(Protocol):
    """Port for the per-key detail API.

    Each call returns the decoded JSON body, or None when the key has no such
    resource (non-2xx other than 429). A 429 raises `RateLimited`; transport
    failures propagate as `httpx.HTTPError`.
    """

    async def canvas_info(self, key_id: int) -> dict[str, Any] | None:
        """Customization flag, level and action points."""

    async def canvas_diff(self, key_id: int) -> dict[str, Any] | None:
        """Added / removed pixel counts vs the original."""

    async def traits(self, key_id: int) -> dict[str, Any] | None:
        """Trait attributes (we read the "Type" trait)."""
