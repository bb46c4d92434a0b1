"""Active and recently closed trades, kept as the engine reports them."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from signal_feed.normalize import to_timestamp
from signal_feed.store.merge import merge_by_key

DEFAULT_ACTIVE_CAP = 12
DEFAULT_HISTORY_CAP = 40

# Ordering fields, first present wins.
OPENED_TIME_KEYS = ("openedAt", "openTime", "createdAt", "timestamp")
CLOSED_TIME_KEYS = ("closedAt", "closeTime", "completedAt", "updatedAt")


def trade_time(trade: dict, keys: tuple[str, ...]) -> float:
    """First usable timestamp among *keys*, or 0 so undated trades sort last."""
    for k in keys:
        value = trade.get(k)
        if value:
            return to_timestamp(value) or 0.0
    return 0.0


def _trade_id(trade: dict) -> str | None:
    trade_id = trade.get("id")
    return str(trade_id) if trade_id not in (None, "") else None


class TradeBook:
    """Raw trade records keyed by ``id``, newest first, capped.

    Pull responses replace the book wholesale; push events upsert or remove
    single trades.
    """

    def __init__(self, cap: int, time_keys: tuple[str, ...], name: str = "trades") -> None:
        self.cap = cap
        self.time_keys = time_keys
        self.name = name
        self._trades: list[dict] = []

    def _merge(self, existing: list[dict], incoming: Iterable[dict | None]) -> list[dict]:
        return merge_by_key(
            existing,
            (t for t in incoming if isinstance(t, dict)),
            key=_trade_id,
            ts=lambda t: trade_time(t, self.time_keys),
            cap=self.cap,
        )

    def merge(self, incoming: Iterable[dict | None]) -> list[dict]:
        self._trades = self._merge(self._trades, incoming)
        return self.trades

    def replace(self, trades: Iterable[dict | None]) -> list[dict]:
        """Swap in a fresh snapshot (ordered, deduplicated, capped)."""
        self._trades = self._merge([], trades)
        return self.trades

    def remove(self, trade_id: object) -> bool:
        key = str(trade_id)
        kept = [t for t in self._trades if _trade_id(t) != key]
        removed = len(kept) != len(self._trades)
        self._trades = kept
        return removed

    def clear(self) -> None:
        self._trades = []

    @property
    def trades(self) -> list[dict]:
        return list(self._trades)

    def ids(self) -> list[str]:
        return [_trade_id(t) for t in self._trades]

    def __len__(self) -> int:
        return len(self._trades)

    def __iter__(self) -> Iterator[dict]:
        return iter(list(self._trades))
