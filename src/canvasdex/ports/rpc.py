from __future__ import annotations

from typing import Protocol, Sequence
from ..domain.models import EventLog
from ..domain.value_types import Address, Topic0


class RPCClient(Protocol):
    """What the scanner and timestamp resolver need from an Ethereum node."""

    async def get_logs(
        self, address: Address, topic0s: Sequence[Topic0], from_block: int, to_block: int,
    ) -> list[EventLog]:
        """Logs of `address` matching any of `topic0s` in the inclusive block range."""

    async def latest_block(self) -> int:
        """Current chain head."""

    async def block_timestamp(self, block_number: int) -> int:
        """Unix seconds of `block_number`."""
