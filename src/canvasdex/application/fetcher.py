from __future__ import annotations

import asyncio
import logging
import time

from ..domain.decoding import TOPIC0_BY_KIND, decode_logs
from ..domain.models import ChunkRec, ChunkResult
from ..domain.value_types import Address, EventKind
from ..ports.rpc import RPCClient
from ..ports.storage import ManifestSink
from .retry import CHUNK_RETRY, RetryPolicy, Sleep

logger = logging.getLogger(__name__)


class ChunkFetcher:
    """One bounded-range log query with bounded retries.

    Never raises on remote failure: after the last attempt it logs a warning
    and returns an empty, `ok=False` result for that chunk.
    """

    def __init__(
        self,
        rpc: RPCClient,
        address: Address,
        *,
        policy: RetryPolicy = CHUNK_RETRY,
        manifest: ManifestSink | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.rpc = rpc
        self.address = address
        self.policy = policy
        self.manifest = manifest
        self._sleep = sleep

    async def _record(self, kind: EventKind, fb: int, tb: int, status, attempts: int, err: str | None, logs_cnt: int) -> None:
        if self.manifest is None:
            return
        await self.manifest.append(ChunkRec(
            from_block=fb, to_block=tb, kind=kind, status=status,
            attempts=attempts, error=err, logs=logs_cnt, updated_at=time.time(),
        ))

    async def fetch(self, kind: EventKind, from_block: int, to_block: int) -> ChunkResult:
        topic0 = TOPIC0_BY_KIND[kind]
        err: str | None = None
        tries = 0
        while tries < self.policy.max_attempts:
            tries += 1
            try:
                call = self.rpc.get_logs(self.address, [topic0], from_block, to_block)
                if self.policy.timeout_s is not None:
                    logs = await asyncio.wait_for(call, self.policy.timeout_s)
                else:
                    logs = await call
            except Exception as e:
                err = f"{type(e).__name__}: {e}"
                logger.debug("chunk %s %d-%d attempt %d failed: %s", kind, from_block, to_block, tries, err)
                if tries < self.policy.max_attempts:
                    await self._sleep(self.policy.delay(tries))
                continue
            events = decode_logs(kind, logs)
            await self._record(kind, from_block, to_block, "done", tries, None, len(logs))
            return ChunkResult(from_block, to_block, events, ok=True, attempts=tries)

        logger.warning("chunk %s %d-%d failed after %d attempts: %s", kind, from_block, to_block, tries, err)
        await self._record(kind, from_block, to_block, "failed", tries, err, 0)
        return ChunkResult(from_block, to_block, [], ok=False, attempts=tries, error=err)
