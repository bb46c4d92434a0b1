"""Bounded log of operational events from the push channel."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from signal_feed.models import FeedEvent
from signal_feed.store.merge import merge_by_key

DEFAULT_EVENT_CAP = 28


class EventLog:
    """Newest-first, id-deduplicated, capped event feed."""

    def __init__(self, cap: int = DEFAULT_EVENT_CAP) -> None:
        self.cap = cap
        self._events: list[FeedEvent] = []

    def merge(self, incoming: Iterable[FeedEvent | None]) -> list[FeedEvent]:
        self._events = merge_by_key(
            self._events,
            incoming,
            key=lambda e: e.id,
            ts=lambda e: e.timestamp,
            cap=self.cap,
        )
        return self.events

    def append(self, event: FeedEvent) -> list[FeedEvent]:
        return self.merge([event])

    @property
    def events(self) -> list[FeedEvent]:
        return list(self._events)

    @property
    def latest(self) -> FeedEvent | None:
        return self._events[0] if self._events else None

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[FeedEvent]:
        return iter(list(self._events))
