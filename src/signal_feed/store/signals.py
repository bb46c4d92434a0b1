"""Signal store — canonical, deduplicated, bounded set of current signals."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence

import structlog

from signal_feed.models import Signal
from signal_feed.store.merge import merge_by_key

log = structlog.get_logger("signal_store")

DEFAULT_SIGNAL_CAP = 200


def _signal_key(signal: Signal) -> str | None:
    if not signal.pair:
        return None
    return signal.merge_key


def merge_signals(
    existing: Sequence[Signal],
    incoming: Iterable[Signal | None],
    cap: int = DEFAULT_SIGNAL_CAP,
) -> list[Signal]:
    """Merge a batch of signals into the current ordered contents."""
    return merge_by_key(
        existing,
        incoming,
        key=_signal_key,
        ts=lambda s: s.relevant_ts,
        cap=cap,
    )


class SignalStore:
    """Process-lifetime signal collection, mutated only via ``merge``.

    A second instance holds candidate (not-yet-actionable) signals.
    """

    def __init__(self, cap: int = DEFAULT_SIGNAL_CAP, name: str = "signals") -> None:
        self.cap = cap
        self.name = name
        self._signals: list[Signal] = []
        self._by_key: dict[str, Signal] = {}

    def merge(self, incoming: Iterable[Signal | None]) -> list[Signal]:
        """Merge a batch and return the new ordered contents."""
        batch = list(incoming)
        if not any(s is not None for s in batch):
            return self.signals
        merged = merge_signals(self._signals, batch, cap=self.cap)
        evicted = len(self._signals) + len(batch) - len(merged)
        self._signals = merged
        self._by_key = {s.merge_key: s for s in merged}
        log.debug(
            "store_merged",
            store=self.name,
            incoming=len(batch),
            size=len(merged),
            dropped=max(evicted, 0),
        )
        return self.signals

    @property
    def signals(self) -> list[Signal]:
        """Current contents, newest first."""
        return list(self._signals)

    def get(self, merge_key: str) -> Signal | None:
        return self._by_key.get(merge_key)

    def __len__(self) -> int:
        return len(self._signals)

    def __contains__(self, merge_key: object) -> bool:
        return merge_key in self._by_key

    def __iter__(self) -> Iterator[Signal]:
        return iter(list(self._signals))
