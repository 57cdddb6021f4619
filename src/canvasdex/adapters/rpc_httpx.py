from __future__ import annotations
import asyncio, httpx
from typing import Any, Sequence
from ..domain.models import EventLog
from ..domain.value_types import Address, Topic0
from ..errors import RPCError
from ..ports.rpc import RPCClient

MAX_429_RETRIES = 3

def _hex(n: int) -> str: return hex(int(n))
def _int(h: str) -> int: return int(h, 16)

def _topics_filter(topic0s: Sequence[Topic0]) -> list[list[str]]:
    # one OR-list in position 0
    t0s = [str(t).strip().lower() for t in topic0s]
    bad = [t for t in t0s if not (t.startswith("0x") and len(t) == 66)]
    if bad:
        raise ValueError(f"Invalid topic0(s): {bad}")
    return [t0s]

def _log_from_json(rl: dict[str, Any]) -> EventLog:
    return EventLog(
        address=Address(rl["address"].lower()),
        topics=tuple(t.lower() for t in rl.get("topics", [])),
        data_hex=str(rl.get("data") or "0x"),
        block_number=_int(rl["blockNumber"]),
        tx_hash=rl["transactionHash"].lower(),
        log_index=_int(rl["logIndex"]),
    )

class HttpxRPC(RPCClient):
    """Ethereum JSON-RPC over one pooled `httpx.AsyncClient` (HTTP/2)."""

    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 15,
        max_conn: int = 64,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.client = client or httpx.AsyncClient(
            http2=True,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max_conn//2),
        )
        self._id = 0

    async def _call(self, method: str, params: list[Any]) -> Any:
        self._id += 1
        payload = {"jsonrpc": "2.0", "id": self._id, "method": method, "params": params}
        for attempt in range(MAX_429_RETRIES):
            r = await self.client.post(self.rpc_url, json=payload)
            if r.status_code != 429:
                break
            ra = r.headers.get("Retry-After", "")
            await asyncio.sleep(max(1.0, float(ra)) if ra.isdigit() else 2.0 ** attempt)
        else:
            raise RPCError(429, f"{method}: still rate limited after {MAX_429_RETRIES} tries")

        r.raise_for_status()
        body = r.json()
        err = body.get("error")
        if err is not None:
            if isinstance(err, dict):
                raise RPCError(err.get("code"), err.get("message"))
            raise RPCError(None, str(err))
        return body.get("result")

    async def latest_block(self) -> int:
        return _int(await self._call("eth_blockNumber", []))

    async def block_timestamp(self, block_number: int) -> int:
        block = await self._call("eth_getBlockByNumber", [_hex(block_number), False])
        if not block:
            raise RPCError(None, f"block {block_number} not found")
        return _int(block["timestamp"])

    async def get_logs(self, address: Address, topic0s: Sequence[Topic0], from_block: int, to_block: int) -> list[EventLog]:
        flt = {
            "address": str(address),
            "fromBlock": _hex(from_block),
            "toBlock": _hex(to_block),
            "topics": _topics_filter(topic0s),
        }
        return [_log_from_json(rl) for rl in await self._call("eth_getLogs", [flt]) or []]

    async def aclose(self) -> None:
        await self.client.aclose()
