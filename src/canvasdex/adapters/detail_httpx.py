from __future__ import annotations
import httpx
from typing import Any
from ..errors import RateLimited
from ..ports.detail import DetailAPI

def _retry_after_seconds(r: httpx.Response) -> float | None:
    ra = r.headers.get("Retry-After")
    if ra and ra.strip().isdigit():
        return float(ra.strip())
    return None

class HttpxDetailAPI(DetailAPI):
    """Thin client for the canvas detail API (one GET per call, no retry here)."""

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 15,
        max_conn: int = 16,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max(1, max_conn//2)),
        )

    async def _get_json(self, path: str) -> dict[str, Any] | None:
        url = f"{self.base_url}{path}"
        r = await self.client.get(url)
        if r.status_code == 429:
            raise RateLimited(url, _retry_after_seconds(r))
        if not r.is_success:
            return None
        return r.json()

    async def canvas_info(self, key_id: int) -> dict[str, Any] | None:
        return await self._get_json(f"/normie/{key_id}/canvas/info")

    async def canvas_diff(self, key_id: int) -> dict[str, Any] | None:
        return await self._get_json(f"/normie/{key_id}/canvas/diff")

    async def traits(self, key_id: int) -> dict[str, Any] | None:
        return await self._get_json(f"/normie/{key_id}/traits")

    async def aclose(self) -> None:
        await self.client.aclose()
