"""Merge-by-key with recency tie-break and a size cap.

Shared by the signal stores and the operational event log.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import TypeVar

T = TypeVar("T")


def merge_by_key(
    existing: Sequence[T],
    incoming: Iterable[T | None],
    *,
    key: Callable[[T], str | None],
    ts: Callable[[T], float],
    cap: int,
) -> list[T]:
    """Merge *incoming* into *existing*, newest first, at most *cap* entries.

    Per key the entry with the greatest ``ts`` survives. On equal ``ts`` the
    later-merged item wins: incoming beats existing, and within one batch
    the later position beats the earlier one. Items that are ``None`` or
    have no key are dropped. The result is sorted descending by ``ts``.
    """
    batch = [item for item in incoming if item is not None]
    if not batch:
        return list(existing)

    best: dict[str, T] = {}
    for item in [*existing, *batch]:
        k = key(item)
        if not k:
            continue
        current = best.get(k)
        if current is None or ts(item) >= ts(current):
            best[k] = item

    merged = sorted(best.values(), key=ts, reverse=True)
    return merged[:cap]
