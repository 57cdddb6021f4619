"""Wire concrete adapters into the application services for CLI / server use."""
from __future__ import annotations

from dataclasses import dataclass

from .adapters.blob_local import LocalBlobStore
from .adapters.detail_httpx import HttpxDetailAPI
from .adapters.manifest_jsonl import JSONLManifest
from .adapters.rpc_httpx import HttpxRPC
from .application.coordinator import CacheCoordinator
from .application.enrichment import EnrichmentBatcher
from .application.fetcher import ChunkFetcher
from .application.rate_limit import TokenBucket
from .application.scanner import RangeScanner
from .application.snapshot_store import SnapshotStore
from .application.timestamps import TimestampResolver
from .application.use_cases import ScanDeps
from .config import Settings
from .domain.value_types import Address


@dataclass(slots=True)
class Runtime:
    settings: Settings
    rpc: HttpxRPC
    detail: HttpxDetailAPI
    store: SnapshotStore
    coordinator: CacheCoordinator

    async def aclose(self) -> None:
        await self.coordinator.wait_idle()
        await self.rpc.aclose()
        await self.detail.aclose()


def build_runtime(settings: Settings) -> Runtime:
    rpc = HttpxRPC(settings.rpc_url, timeout_s=settings.rpc_timeout_seconds,
                   max_conn=max(32, 2 * settings.parallel_chunks))
    detail = HttpxDetailAPI(settings.detail_api_url)
    manifest = JSONLManifest(settings.manifest_path) if settings.write_manifest else None

    fetcher = ChunkFetcher(rpc, Address(settings.canvas_address), manifest=manifest)
    scanner = RangeScanner(fetcher, chunk_size=settings.chunk_size, parallel_chunks=settings.parallel_chunks)
    enricher = EnrichmentBatcher(
        detail,
        limiter=TokenBucket.per_minute(settings.detail_rate_per_minute, burst=3 * settings.enrich_batch_size),
        batch_size=settings.enrich_batch_size,
        cooldown_s=settings.enrich_cooldown_seconds,
    )
    timestamps = TimestampResolver(rpc)
    store = SnapshotStore(LocalBlobStore(settings.blob_dir))
    deps = ScanDeps(rpc=rpc, scanner=scanner, enricher=enricher,
                    deploy_block=settings.deploy_block, timestamps=timestamps)
    coordinator = CacheCoordinator(deps, store, timestamps, ttl_s=settings.cache_ttl_seconds)
    return Runtime(settings, rpc, detail, store, coordinator)
