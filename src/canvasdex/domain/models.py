from __future__ import annotations
from dataclasses import dataclass, field
from typing import Union
from .value_types import Address, Status

@dataclass(slots=True, frozen=True)
class BlockRange:
    start: int
    end: int

@dataclass(slots=True, frozen=True)
class EventLog:
    address: Address
    topics: tuple[str, ...]
    data_hex: str
    block_number: int
    tx_hash: str
    log_index: int

@dataclass(slots=True, frozen=True)
class RawEditEvent:
    block_number: int
    tx_hash: str
    change_count: int
    new_pixel_count: int
    transformer: str
    token_id: int
    log_index: int = 0

@dataclass(slots=True, frozen=True)
class RawBurnEvent:
    block_number: int
    tx_hash: str
    token_id: int          # receiver token id
    total_actions: int
    owner: str
    log_index: int = 0

RawEvent = Union[RawEditEvent, RawBurnEvent]

@dataclass(slots=True, frozen=True)
class Aggregate:
    key_id: int
    level: int
    action_points: int
    added_count: int
    removed_count: int
    category: str
    edit_count: int

@dataclass(slots=True, frozen=True)
class Snapshot:
    """Unit of durability: raw per-key event maps plus derived aggregates."""
    latest_scanned_block: int
    saved_at: float
    deploy_block: int
    edits_by_key: dict[int, list[RawEditEvent]]
    burns_by_key: dict[int, list[RawBurnEvent]]
    aggregates: list[Aggregate]
    skipped_ranges: list[tuple[int, int]] = field(default_factory=list)
    timestamps: dict[int, int] = field(default_factory=dict)

@dataclass(slots=True, frozen=True)
class ChunkRec:
    from_block: int
    to_block: int
    kind: str
    status: Status = "pending"
    attempts: int = 0
    error: str | None = None
    logs: int = 0
    updated_at: float = 0.0

@dataclass(slots=True, frozen=True)
class ChunkResult:
    from_block: int
    to_block: int
    events: list[RawEvent]
    ok: bool
    attempts: int
    error: str | None = None

# --- typed scan outcomes ------------------------------------------------------

@dataclass(slots=True, frozen=True)
class Success:
    events: list[RawEvent]
    skipped_ranges: list[tuple[int, int]] = field(default_factory=list)

@dataclass(slots=True, frozen=True)
class PartialFailure:
    events: list[RawEvent]
    skipped_ranges: list[tuple[int, int]]

@dataclass(slots=True, frozen=True)
class Failure:
    reason: str
    skipped_ranges: list[tuple[int, int]]
    events: list[RawEvent] = field(default_factory=list)

ScanOutcome = Union[Success, PartialFailure, Failure]
