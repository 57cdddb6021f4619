from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Mapping

import httpx

from ..domain.models import Aggregate
from ..errors import RateLimited
from ..ports.detail import DetailAPI
from .planning import waves
from .rate_limit import TokenBucket
from .retry import DETAIL_RETRY, RATE_LIMIT_RETRY, RetryPolicy, Sleep

logger = logging.getLogger(__name__)

BATCH_SIZE       = 8
BATCH_COOLDOWN_S = 1.5
DEFAULT_CATEGORY = "Human"


class _Unfetchable(Exception):
    """Retry budget exhausted for one detail call."""


class EnrichmentBatcher:
    """Turn touched keys into `Aggregate`s via the detail API.

    Keys whose info read fails or reports `customized: false` are dropped.
    Keys are processed `batch_size` at a time with a cooldown between batches;
    every single call also takes a token from the shared bucket.
    """

    def __init__(
        self,
        api: DetailAPI,
        *,
        limiter: TokenBucket | None = None,
        batch_size: int = BATCH_SIZE,
        cooldown_s: float = BATCH_COOLDOWN_S,
        retry: RetryPolicy = DETAIL_RETRY,
        rate_limit_retry: RetryPolicy = RATE_LIMIT_RETRY,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.api = api
        self.limiter = limiter
        self.batch_size = batch_size
        self.cooldown_s = cooldown_s
        self.retry = retry
        self.rate_limit_retry = rate_limit_retry
        self._sleep = sleep

    async def _call(self, fn: Callable[[int], Awaitable[dict[str, Any] | None]], key_id: int) -> dict[str, Any] | None:
        errors = limited = 0
        while True:
            if self.limiter is not None:
                await self.limiter.acquire()
            try:
                call = fn(key_id)
                if self.retry.timeout_s is not None:
                    return await asyncio.wait_for(call, self.retry.timeout_s)
                return await call
            except RateLimited as e:
                limited += 1
                if limited >= self.rate_limit_retry.max_attempts:
                    raise _Unfetchable(str(e)) from e
                wait = (e.retry_after or self.rate_limit_retry.base_delay) * limited
                logger.info("rate limited on key %d, waiting %.1fs", key_id, wait)
                await self._sleep(wait)
            except (httpx.HTTPError, asyncio.TimeoutError, ValueError) as e:
                # ValueError covers undecodable JSON bodies
                errors += 1
                if errors >= self.retry.max_attempts:
                    raise _Unfetchable(f"{type(e).__name__}: {e}") from e
                await self._sleep(self.retry.delay(errors))

    async def _optional(self, fn: Callable[[int], Awaitable[dict[str, Any] | None]], key_id: int) -> dict[str, Any] | None:
        try:
            res = await self._call(fn, key_id)
        except Exception as e:
            logger.debug("optional detail read for key %d failed: %s", key_id, e)
            return None
        return res if isinstance(res, dict) else None

    async def enrich_one(self, key_id: int, edit_count: int) -> Aggregate | None:
        info, diff, traits = await asyncio.gather(
            self._call(self.api.canvas_info, key_id),
            self._optional(self.api.canvas_diff, key_id),
            self._optional(self.api.traits, key_id),
            return_exceptions=True,
        )
        if isinstance(info, BaseException):
            if not isinstance(info, Exception):
                raise info
            logger.warning("details for key %d unfetchable, dropping: %s", key_id, info)
            return None
        if not isinstance(info, dict) or not info.get("customized"):
            return None

        diff = diff if isinstance(diff, dict) else {}
        traits = traits if isinstance(traits, dict) else {}
        attributes = traits.get("attributes")
        category = next(
            (a.get("value") for a in attributes if isinstance(a, dict) and a.get("trait_type") == "Type"),
            DEFAULT_CATEGORY,
        ) if isinstance(attributes, list) else DEFAULT_CATEGORY
        try:
            return Aggregate(
                key_id=key_id,
                level=int(info.get("level") or 1),
                action_points=int(info.get("actionPoints") or 0),
                added_count=int(diff.get("addedCount") or 0),
                removed_count=int(diff.get("removedCount") or 0),
                category=str(category),
                edit_count=edit_count,
            )
        except (TypeError, ValueError) as e:
            logger.warning("details for key %d malformed, dropping: %s", key_id, e)
            return None

    async def enrich(self, key_ids: Iterable[int], edit_count_by_key: Mapping[int, int]) -> list[Aggregate]:
        ids = sorted(set(key_ids))
        out: list[Aggregate] = []
        batches = waves(ids, self.batch_size)
        for i, batch in enumerate(batches):
            results = await asyncio.gather(*(self.enrich_one(k, edit_count_by_key.get(k, 0)) for k in batch))
            out.extend(r for r in results if r is not None)
            if (i + 1) % 10 == 0:
                done = min((i + 1) * self.batch_size, len(ids))
                logger.info("fetched details for %d/%d keys (%d kept)", done, len(ids), len(out))
            if i + 1 < len(batches):
                await self._sleep(self.cooldown_s)
        return out
