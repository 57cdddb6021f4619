from __future__ import annotations
from typing import Sequence, TypeVar
from ..domain.models import BlockRange

T = TypeVar("T")

def plan_chunks(start_block: int, end_block: int, step: int) -> list[BlockRange]:
    """Inclusive, gap-free `BlockRange`s of at most `step` blocks."""
    if step <= 0:
        raise ValueError("step must be positive")
    return [BlockRange(fb, min(end_block, fb + step - 1)) for fb in range(start_block, end_block + 1, step)]

def waves(items: Sequence[T], size: int) -> list[list[T]]:
    """Split `items` into consecutive groups of at most `size`."""
    size = max(1, size)
    return [list(items[i:i+size]) for i in range(0, len(items), size)]

def merge_intervals(intervals: list[tuple[int,int]]) -> list[tuple[int,int]]:
    """Union of inclusive intervals; adjacent ones (e+1 == s) are joined."""
    out: list[tuple[int,int]] = []
    for s, e in sorted(intervals):
        if out and s <= out[-1][1] + 1:
            out[-1] = (out[-1][0], max(out[-1][1], e))
        else:
            out.append((s, e))
    return out
