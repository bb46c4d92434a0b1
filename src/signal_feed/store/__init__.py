"""Bounded, deduplicated stores for signals, trades and events."""

from signal_feed.store.events import DEFAULT_EVENT_CAP, EventLog
from signal_feed.store.merge import merge_by_key
from signal_feed.store.signals import DEFAULT_SIGNAL_CAP, SignalStore, merge_signals
from signal_feed.store.trades import (
    CLOSED_TIME_KEYS,
    DEFAULT_ACTIVE_CAP,
    DEFAULT_HISTORY_CAP,
    OPENED_TIME_KEYS,
    TradeBook,
    trade_time,
)

__all__ = [
    "CLOSED_TIME_KEYS",
    "DEFAULT_ACTIVE_CAP",
    "DEFAULT_EVENT_CAP",
    "DEFAULT_HISTORY_CAP",
    "DEFAULT_SIGNAL_CAP",
    "EventLog",
    "OPENED_TIME_KEYS",
    "SignalStore",
    "TradeBook",
    "merge_by_key",
    "merge_signals",
    "trade_time",
]
