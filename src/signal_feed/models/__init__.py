"""Pydantic domain models."""

from signal_feed.models.event import BridgeSession, FeedEvent
from signal_feed.models.signal import (
    ENTER_STATES,
    WATCH_STATE,
    Decision,
    Signal,
    build_merge_key,
)

__all__ = [
    "BridgeSession",
    "Decision",
    "ENTER_STATES",
    "FeedEvent",
    "Signal",
    "WATCH_STATE",
    "build_merge_key",
]
