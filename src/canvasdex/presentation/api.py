from __future__ import annotations

import logging
import secrets
import time
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from ..application.coordinator import CacheCoordinator
from ..application.snapshot_store import aggregate_to_json
from ..application.views import latest_edits, leaderboards, the_100
from ..domain.value_types import KEY_SPACE
from ..errors import InvalidKeyError, NotIndexedError

logger = logging.getLogger(__name__)

READ_CACHE_CONTROL   = "public, s-maxage=300, stale-while-revalidate=600"
LATEST_CACHE_CONTROL = "public, s-maxage=60, stale-while-revalidate=120"


def _cached(payload: dict, cache_control: str = READ_CACHE_CONTROL) -> JSONResponse:
    return JSONResponse(payload, headers={"Cache-Control": cache_control})


def create_app(
    coordinator: CacheCoordinator,
    *,
    cron_secret: str = "",
    on_shutdown: Callable[[], Awaitable[None]] | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        if on_shutdown is not None:
            await on_shutdown()

    app = FastAPI(title="canvasdex", lifespan=lifespan)

    @app.exception_handler(NotIndexedError)
    async def _not_indexed(_req: Request, exc: NotIndexedError) -> JSONResponse:
        return JSONResponse({"error": "not_indexed", "indexing": True, "detail": str(exc)},
                            status_code=503, headers={"Retry-After": "60"})

    @app.get("/health")
    async def health() -> dict:
        snap = coordinator.state.snapshot
        return {"status": "ok", "cache": coordinator.status().value,
                "latestBlock": snap.latest_scanned_block if snap else None}

    @app.get("/aggregates")
    async def aggregates() -> JSONResponse:
        was_cached = coordinator.state.snapshot is not None
        snap = await coordinator.get_snapshot()
        return _cached({
            "upgraded": [aggregate_to_json(a) for a in snap.aggregates],
            "count": len(snap.aggregates),
            "scannedAt": snap.saved_at,
            "latestBlock": snap.latest_scanned_block,
            "fromCache": was_cached,
        })

    @app.get("/leaderboards")
    async def get_leaderboards() -> JSONResponse:
        return _cached(leaderboards(await coordinator.get_snapshot()))

    @app.get("/the-100")
    async def get_the_100() -> JSONResponse:
        return _cached(the_100(await coordinator.get_snapshot()))

    @app.get("/latest")
    async def get_latest(count: int = Query(10)) -> JSONResponse:
        return _cached(latest_edits(await coordinator.get_snapshot(), count), LATEST_CACHE_CONTROL)

    @app.get("/keys/{key_id}/history")
    async def history(key_id: int) -> JSONResponse:
        if not 0 <= key_id < KEY_SPACE:
            raise HTTPException(status_code=400, detail=f"Invalid token ID (0-{KEY_SPACE - 1})")
        try:
            payload = await coordinator.get_key_history(key_id)
        except InvalidKeyError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return _cached(payload)

    @app.get("/cron/index")
    async def cron_index(authorization: str | None = Header(default=None)) -> JSONResponse:
        expected = f"Bearer {cron_secret}"
        if not cron_secret or not authorization or not secrets.compare_digest(authorization, expected):
            raise HTTPException(status_code=401, detail="unauthorized")
        t0 = time.monotonic()
        try:
            result = await coordinator.run_cycle()
        except Exception as e:
            logger.error("cron scan cycle failed: %s", e)
            return JSONResponse({"error": str(e), "durationMs": int((time.monotonic() - t0) * 1000)},
                                status_code=500)
        return JSONResponse({
            "status": result.mode,
            "aggregates": len(result.snapshot.aggregates),
            "latestBlock": result.snapshot.latest_scanned_block,
            "touched": len(result.touched),
            "durationMs": int((time.monotonic() - t0) * 1000),
        })

    return app
