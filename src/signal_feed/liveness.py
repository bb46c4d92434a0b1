"""Source liveness from bridge heartbeats, with data freshness as fallback."""

from __future__ import annotations

import time
from collections.abc import Iterable

import structlog

from signal_feed.models import BridgeSession

log = structlog.get_logger("liveness")

FRESHNESS_WINDOW_MS = 2 * 60 * 1000


def _now_ms() -> float:
    return time.time() * 1000


def primary_session(sessions: Iterable[BridgeSession]) -> BridgeSession | None:
    """The session with the most recent heartbeat, if any has one."""
    best: BridgeSession | None = None
    for session in sessions:
        if session.last_heartbeat_at is None:
            continue
        if best is None or session.last_heartbeat_at > best.last_heartbeat_at:
            best = session
    return best


def is_fresh(ts: float | None, now: float | None = None, window_ms: float = FRESHNESS_WINDOW_MS) -> bool:
    if ts is None:
        return False
    current = _now_ms() if now is None else now
    return current - ts <= window_ms


def is_source_live(
    sessions: Iterable[BridgeSession],
    fallback_fresh: Iterable[float | None] = (),
    now: float | None = None,
    window_ms: float = FRESHNESS_WINDOW_MS,
) -> bool:
    """True if a heartbeat is fresh, else if the newest data update is fresh.

    Heartbeat records may not be loaded yet while data is visibly flowing,
    hence the second stage.
    """
    current = _now_ms() if now is None else now
    primary = primary_session(sessions)
    if primary is not None and is_fresh(primary.last_heartbeat_at, current, window_ms):
        return True

    stamps = [ts for ts in fallback_fresh if ts is not None]
    if not stamps:
        return False
    return is_fresh(max(stamps), current, window_ms)


class LivenessTracker:
    """Keeps the latest sessions and data-update times per source."""

    def __init__(self, window_s: float = FRESHNESS_WINDOW_MS / 1000) -> None:
        self.window_ms = window_s * 1000
        self._sessions: dict[str, dict[str, BridgeSession]] = {}
        self._data_updates: dict[str, float] = {}

    def record_session(self, session: BridgeSession, session_key: str | None = None) -> None:
        """Upsert one session; a stale heartbeat never replaces a newer one."""
        key = session_key or session.account_number or session.source_id
        by_key = self._sessions.setdefault(session.source_id, {})
        current = by_key.get(key)
        if (
            current is not None
            and current.last_heartbeat_at is not None
            and (session.last_heartbeat_at or 0) < current.last_heartbeat_at
        ):
            log.debug("stale_heartbeat_ignored", source=session.source_id, session=key)
            return
        by_key[key] = session

    def record_data(self, source_id: str, ts: float | None = None) -> None:
        ts = _now_ms() if ts is None else ts
        if ts > self._data_updates.get(source_id, 0):
            self._data_updates[source_id] = ts

    def sessions(self, source_id: str) -> list[BridgeSession]:
        return list(self._sessions.get(source_id, {}).values())

    def primary(self, source_id: str) -> BridgeSession | None:
        return primary_session(self.sessions(source_id))

    def is_live(self, source_id: str | None = None, now: float | None = None) -> bool:
        """Liveness of one source, or of any source when *source_id* is None."""
        if source_id is None:
            sessions = [s for by_key in self._sessions.values() for s in by_key.values()]
            updates = list(self._data_updates.values())
        else:
            sessions = self.sessions(source_id)
            updates = [self._data_updates.get(source_id)]
        return is_source_live(sessions, updates, now=now, window_ms=self.window_ms)

    def sources(self) -> list[str]:
        return sorted(set(self._sessions) | set(self._data_updates))
