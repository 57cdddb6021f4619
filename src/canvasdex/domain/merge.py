"""Merge engine: fold newly scanned events into per-key event lists.

Callers pass a *working copy* of the live maps (see `copy_event_map`); the
live cache is only replaced once the whole scan cycle has succeeded.

Only keys that received events are re-sorted, so merge cost follows the
number of new events rather than total history size.
"""
from __future__ import annotations

from typing import Iterable, TypeVar

from .models import RawBurnEvent, RawEditEvent

E = TypeVar("E", RawEditEvent, RawBurnEvent)


def copy_event_map(src: dict[int, list[E]]) -> dict[int, list[E]]:
    """Shallow copy of the map *and* of every list (events themselves are frozen)."""
    return {k: list(v) for k, v in src.items()}


def _compact(events: list[E]) -> list[E]:
    """Sort by (block, log index) and drop repeats of the same log."""
    seen: set[tuple[int, str, int]] = set()
    out: list[E] = []
    for ev in sorted(events, key=lambda e: (e.block_number, e.log_index, e.tx_hash)):
        ident = (ev.block_number, ev.tx_hash, ev.log_index)
        if ident in seen:
            continue
        seen.add(ident)
        out.append(ev)
    return out


def _merge(by_key: dict[int, list[E]], events: Iterable[E]) -> set[int]:
    before: dict[int, int] = {}
    for ev in events:
        key = ev.token_id
        bucket = by_key.setdefault(key, [])
        before.setdefault(key, len(bucket))
        bucket.append(ev)

    touched: set[int] = set()
    for key, old_len in before.items():
        compacted = _compact(by_key[key])
        by_key[key] = compacted
        if len(compacted) != old_len:
            touched.add(key)
    return touched


def merge_edits(edits_by_key: dict[int, list[RawEditEvent]], events: Iterable[RawEditEvent]) -> set[int]:
    """Append edit events keyed by token id; return the keys whose list grew."""
    return _merge(edits_by_key, events)


def merge_burns(burns_by_key: dict[int, list[RawBurnEvent]], events: Iterable[RawBurnEvent]) -> set[int]:
    """Append burn events keyed by the receiving token id; return the keys whose list grew."""
    return _merge(burns_by_key, events)
