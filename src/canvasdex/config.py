from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {'1', 'true', 'yes', 'y', 'on'}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, '').strip().replace('_', '')
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name, '').strip()
    return float(value) if value else default


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    rpc_timeout_seconds: float
    canvas_address: str
    deploy_block: int
    detail_api_url: str
    chunk_size: int
    parallel_chunks: int
    cache_ttl_seconds: float
    enrich_batch_size: int
    enrich_cooldown_seconds: float
    detail_rate_per_minute: int
    blob_dir: str
    manifest_path: str
    cron_secret: str
    log_level: str
    write_manifest: bool


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(
        rpc_url=os.getenv('ETHEREUM_RPC_URL', 'https://ethereum.publicnode.com'),
        rpc_timeout_seconds=_env_float('RPC_TIMEOUT_SECONDS', 15.0),
        canvas_address=os.getenv('CANVAS_ADDRESS', '0x64951d92e345C50381267380e2975f66810E869c').lower(),
        deploy_block=_env_int('CANVAS_DEPLOY_BLOCK', 19_614_531),
        detail_api_url=os.getenv('DETAIL_API_URL', 'https://api.normies.art'),
        chunk_size=_env_int('CHUNK_SIZE', 50_000),
        parallel_chunks=_env_int('PARALLEL_CHUNKS', 12),
        cache_ttl_seconds=_env_float('CACHE_TTL_SECONDS', 300.0),
        enrich_batch_size=_env_int('ENRICH_BATCH_SIZE', 8),
        enrich_cooldown_seconds=_env_float('ENRICH_COOLDOWN_SECONDS', 1.5),
        detail_rate_per_minute=_env_int('DETAIL_RATE_PER_MINUTE', 60),
        blob_dir=os.getenv('BLOB_DIR', 'canvasdex_data'),
        manifest_path=os.getenv('MANIFEST_PATH', os.path.join(os.getenv('BLOB_DIR', 'canvasdex_data'), 'manifests', 'chunks.jsonl')),
        cron_secret=os.getenv('CRON_SECRET', ''),
        log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        write_manifest=_env_bool('WRITE_MANIFEST', True),
    )
