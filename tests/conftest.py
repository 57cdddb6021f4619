from __future__ import annotations

import asyncio
from typing import Any, Sequence

import pytest

from canvasdex.application.coordinator import CacheCoordinator
from canvasdex.application.enrichment import EnrichmentBatcher
from canvasdex.application.fetcher import ChunkFetcher
from canvasdex.application.scanner import RangeScanner
from canvasdex.application.snapshot_store import SnapshotStore
from canvasdex.application.timestamps import TimestampResolver
from canvasdex.application.use_cases import ScanDeps
from canvasdex.domain.decoding import BURN_T0, EDIT_T0
from canvasdex.domain.models import EventLog
from canvasdex.domain.value_types import Address, Topic0
from canvasdex.errors import RateLimited

CANVAS = Address("0x64951d92e345c50381267380e2975f66810e869c")
TRANSFORMER = "0x" + "ab" * 20
OWNER = "0x" + "cd" * 20


def word(n: int) -> str:
    return format(n, "064x")


def edit_log(key: int, block: int, tx: str | None = None, *, log_index: int = 0,
             change: int = 5, pixels: int = 100, transformer: str = TRANSFORMER) -> EventLog:
    return EventLog(
        address=CANVAS,
        topics=(EDIT_T0, "0x" + word(int(transformer, 16)), "0x" + word(key)),
        data_hex="0x" + word(change) + word(pixels),
        block_number=block,
        tx_hash=tx or f"0x{block:08x}{key:04x}{log_index:04x}",
        log_index=log_index,
    )


def burn_log(receiver: int, block: int, tx: str | None = None, *, log_index: int = 1,
             actions: int = 3, owner: str = OWNER, commit_id: int = 1) -> EventLog:
    return EventLog(
        address=CANVAS,
        topics=(BURN_T0, "0x" + word(commit_id), "0x" + word(int(owner, 16)), "0x" + word(receiver)),
        data_hex="0x" + word(actions) + word(0),
        block_number=block,
        tx_hash=tx or f"0x{block:08x}{receiver:04x}ffff",
        log_index=log_index,
    )


class FakeRPC:
    """In-memory event source. Ranges in `fail_ranges` raise on every attempt."""

    def __init__(self, logs: list[EventLog] | None = None, head: int = 0) -> None:
        self.logs = list(logs or [])
        self.head = head
        self.fail_ranges: set[tuple[int, int]] = set()
        self.fail_latest = False
        self.log_calls: list[tuple[str, int, int]] = []
        self.timestamps: dict[int, int] = {}
        self.timestamp_calls: list[int] = []
        self.hang_blocks: set[int] = set()

    async def get_logs(self, address: Address, topic0s: Sequence[Topic0], from_block: int, to_block: int) -> list[EventLog]:
        self.log_calls.append((topic0s[0], from_block, to_block))
        if (from_block, to_block) in self.fail_ranges:
            raise TimeoutError(f"timeout {from_block}-{to_block}")
        return [l for l in self.logs if l.topics[0] in topic0s and from_block <= l.block_number <= to_block]

    async def latest_block(self) -> int:
        if self.fail_latest:
            raise ConnectionError("rpc down")
        return self.head

    async def block_timestamp(self, block_number: int) -> int:
        self.timestamp_calls.append(block_number)
        if block_number in self.hang_blocks:
            await asyncio.Event().wait()
        if block_number not in self.timestamps:
            raise ConnectionError(f"no block {block_number}")
        return self.timestamps[block_number]


class FakeDetail:
    """Detail API double: every key customized unless listed in `plain`."""

    def __init__(self) -> None:
        self.plain: set[int] = set()
        self.levels: dict[int, int] = {}
        self.rate_limited_once: dict[int, float | None] = {}
        self.always_limited: set[int] = set()
        self.calls: list[tuple[str, int]] = []

    async def canvas_info(self, key_id: int) -> dict[str, Any] | None:
        self.calls.append(("info", key_id))
        if key_id in self.always_limited:
            raise RateLimited(f"/normie/{key_id}/canvas/info", None)
        if key_id in self.rate_limited_once:
            raise RateLimited(f"/normie/{key_id}/canvas/info", self.rate_limited_once.pop(key_id))
        return {"customized": key_id not in self.plain, "level": self.levels.get(key_id, 2), "actionPoints": 10}

    async def canvas_diff(self, key_id: int) -> dict[str, Any] | None:
        self.calls.append(("diff", key_id))
        return {"addedCount": key_id % 7, "removedCount": 1}

    async def traits(self, key_id: int) -> dict[str, Any] | None:
        self.calls.append(("traits", key_id))
        return {"attributes": [{"trait_type": "Type", "value": "Cat" if key_id % 2 else "Alien"}]}


class MemoryBlobStore:
    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.puts: list[str] = []

    async def put(self, key: str, body: bytes) -> str:
        self.blobs[key] = body
        self.puts.append(key)
        return f"memory://{key}"

    async def get(self, key: str) -> bytes | None:
        return self.blobs.get(key)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, s: float) -> None:
        self.now += s


class SleepRecorder:
    def __init__(self) -> None:
        self.waits: list[float] = []

    async def __call__(self, s: float) -> None:
        self.waits.append(s)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rpc() -> FakeRPC:
    return FakeRPC()


@pytest.fixture
def detail() -> FakeDetail:
    return FakeDetail()


@pytest.fixture
def blobs() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def scanner(rpc: FakeRPC, sleeps: SleepRecorder) -> RangeScanner:
    return RangeScanner(ChunkFetcher(rpc, CANVAS, sleep=sleeps), chunk_size=50_000, parallel_chunks=4)


@pytest.fixture
def enricher(detail: FakeDetail, sleeps: SleepRecorder) -> EnrichmentBatcher:
    return EnrichmentBatcher(detail, sleep=sleeps)


@pytest.fixture
def timestamps(rpc: FakeRPC, clock: FakeClock) -> TimestampResolver:
    return TimestampResolver(rpc, clock=clock)


@pytest.fixture
def deps(rpc, scanner, enricher, timestamps, clock) -> ScanDeps:
    return ScanDeps(rpc=rpc, scanner=scanner, enricher=enricher, deploy_block=1000,
                    timestamps=timestamps, clock=clock)


@pytest.fixture
def coordinator(deps, blobs, timestamps, clock) -> CacheCoordinator:
    return CacheCoordinator(deps, SnapshotStore(blobs), timestamps, ttl_s=300, clock=clock)
