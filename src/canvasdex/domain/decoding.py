from __future__ import annotations

from typing import Iterable

from eth_utils import keccak, to_checksum_address

from canvasdex.domain.models import EventLog, RawBurnEvent, RawEditEvent, RawEvent
from canvasdex.domain.value_types import EventKind, Topic0


# Event signatures emitted by the canvas contract
EDIT_SIGNATURE = "PixelsTransformed(address,uint256,uint256,uint256)"
BURN_SIGNATURE = "BurnRevealed(uint256,address,uint256,uint256,bool)"

def _topic0(signature: str) -> Topic0:
    return Topic0("0x" + keccak(text=signature).hex())

EDIT_T0 = _topic0(EDIT_SIGNATURE)
BURN_T0 = _topic0(BURN_SIGNATURE)

TOPIC0_BY_KIND: dict[EventKind, Topic0] = {"edit": EDIT_T0, "burn": BURN_T0}

# --------- 32B word slicing (fast, no eth_abi) --------------------------------
def _strip0x(s: str) -> str:
    return s[2:] if s[:2].lower() == "0x" else s

def _hexstr_to_bytes(s: str) -> bytes:
    h = _strip0x(s or "")
    if len(h) % 2: h = "0" + h
    return bytes.fromhex(h) if h else b""

def _word(b: bytes, i: int) -> bytes:
    return b[i*32:(i+1)*32]

def _u256(w: bytes) -> int:
    return int.from_bytes(w, "big")

def _topic_int(t: str) -> int:
    return int(_strip0x(t) or "0", 16)

def _topic_addr(t: str) -> str:
    return to_checksum_address("0x" + _strip0x(t)[-40:])

# ---------------------------- public API --------------------------------------

def decode_edit(log: EventLog) -> RawEditEvent | None:
    """PixelsTransformed(address indexed transformer, uint256 indexed tokenId,
    uint256 changeCount, uint256 newPixelCount)."""
    if len(log.topics) < 3 or log.topics[0].lower() != EDIT_T0:
        return None
    data = _hexstr_to_bytes(log.data_hex)
    if len(data) < 32 * 2:
        return None
    return RawEditEvent(
        block_number=log.block_number,
        tx_hash=log.tx_hash,
        change_count=_u256(_word(data, 0)),
        new_pixel_count=_u256(_word(data, 1)),
        transformer=_topic_addr(log.topics[1]),
        token_id=_topic_int(log.topics[2]),
        log_index=log.log_index,
    )

def decode_burn(log: EventLog) -> RawBurnEvent | None:
    """BurnRevealed(uint256 indexed commitId, address indexed owner,
    uint256 indexed receiverTokenId, uint256 totalActions, bool expired)."""
    if len(log.topics) < 4 or log.topics[0].lower() != BURN_T0:
        return None
    data = _hexstr_to_bytes(log.data_hex)
    if len(data) < 32:
        return None
    return RawBurnEvent(
        block_number=log.block_number,
        tx_hash=log.tx_hash,
        token_id=_topic_int(log.topics[3]),
        total_actions=_u256(_word(data, 0)),
        owner=_topic_addr(log.topics[2]),
        log_index=log.log_index,
    )

def decode_logs(kind: EventKind, logs: Iterable[EventLog]) -> list[RawEvent]:
    """Decode raw logs of one kind; rows that don't decode are skipped."""
    decode = decode_edit if kind == "edit" else decode_burn
    out: list[RawEvent] = []
    for log in logs:
        try:
            ev = decode(log)
        except ValueError:
            # malformed hex in a single row
            continue
        if ev is not None:
            out.append(ev)
    return out
