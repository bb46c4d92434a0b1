"""Shared, reference-counted, auto-reconnecting WebSocket connection.

Many logical subscribers share one physical socket. The socket opens when the
first subscriber arrives and closes a short grace period after the last one
leaves. While subscribers exist, any close or error is followed by a
reconnect after a fixed delay.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from enum import Enum
from typing import Any

import structlog
import websockets

from signal_feed.models import FeedEvent
from signal_feed.normalize import decode_frame

log = structlog.get_logger("connection")

Listener = Callable[[FeedEvent], None]
Connector = Callable[[str], AbstractAsyncContextManager[Any]]


class ConnectionState(str, Enum):
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    ERRORED = "ERRORED"


def websocket_connector(heartbeat_interval_s: float = 30.0, max_missed: int = 2) -> Connector:
    """Connector backed by ``websockets.connect`` with client keepalive pings."""
    return functools.partial(
        websockets.connect,
        ping_interval=heartbeat_interval_s,
        ping_timeout=heartbeat_interval_s * max_missed,
    )


class Subscription:
    """Handle returned by ``SharedConnection.subscribe``."""

    def __init__(self, connection: SharedConnection, listener: Listener) -> None:
        self._connection = connection
        self.listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._connection._remove(self)


class SharedConnection:
    """One physical channel multiplexed over many listeners."""

    def __init__(
        self,
        url: str,
        reconnect_delay_s: float = 5.0,
        idle_close_s: float = 0.25,
        connector: Connector | None = None,
    ) -> None:
        self.url = url
        self.reconnect_delay_s = reconnect_delay_s
        self.idle_close_s = idle_close_s
        self._connector = connector or websocket_connector()
        self._subs: dict[Subscription, Listener] = {}
        self._task: asyncio.Task | None = None
        self._idle_timer: asyncio.TimerHandle | None = None
        self.state = ConnectionState.IDLE
        self.connect_attempts = 0
        self.messages_received = 0

    # ── Public API ────────────────────────────────────────────

    @property
    def listener_count(self) -> int:
        return len(self._subs)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, listener: Listener) -> Subscription:
        """Register *listener*; opens the socket on the first subscriber."""
        sub = Subscription(self, listener)
        self._subs[sub] = listener
        self._cancel_idle_timer()
        self._ensure_running()
        return sub

    async def close(self) -> None:
        """Drop all subscribers and tear the socket down immediately."""
        for sub in list(self._subs):
            sub.active = False
        self._subs.clear()
        self._cancel_idle_timer()
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.state = ConnectionState.IDLE

    # ── Lifecycle ─────────────────────────────────────────────

    def _remove(self, sub: Subscription) -> None:
        self._subs.pop(sub, None)
        if self._subs:
            return
        if self.state in (ConnectionState.CLOSED, ConnectionState.ERRORED):
            # Waiting to reconnect; nobody is listening any more.
            self._stop()
            return
        self._schedule_idle_close()

    def _ensure_running(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def _schedule_idle_close(self) -> None:
        if self._idle_timer is not None or self._subs:
            return
        loop = asyncio.get_running_loop()
        self._idle_timer = loop.call_later(self.idle_close_s, self._close_if_idle)

    def _cancel_idle_timer(self) -> None:
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None

    def _close_if_idle(self) -> None:
        self._idle_timer = None
        if not self._subs:
            log.info("connection_idle_close", url=self.url)
            self._stop()

    def _stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        try:
            while self._subs:
                self.state = ConnectionState.CONNECTING
                self.connect_attempts += 1
                try:
                    async with self._connector(self.url) as ws:
                        self.state = ConnectionState.OPEN
                        log.info("connection_opened", url=self.url, attempt=self.connect_attempts)
                        async for frame in ws:
                            self._dispatch(frame)
                    log.info("connection_closed", url=self.url)
                    self.state = ConnectionState.CLOSED
                except asyncio.CancelledError:
                    raise
                except Exception:
                    log.warning("connection_error", url=self.url, exc_info=True)
                    self.state = ConnectionState.ERRORED

                if not self._subs:
                    break
                log.info("connection_reconnect_scheduled", delay_s=self.reconnect_delay_s)
                await asyncio.sleep(self.reconnect_delay_s)
        finally:
            # A replacement task may already own the state.
            if self._task is None or self._task is asyncio.current_task():
                self.state = ConnectionState.IDLE

    # ── Delivery ──────────────────────────────────────────────

    def _dispatch(self, frame: str | bytes) -> None:
        event = decode_frame(frame)
        if event is None:
            return
        self.messages_received += 1
        for sub, listener in list(self._subs.items()):
            if not sub.active:
                continue
            try:
                listener(event)
            except Exception:
                log.exception("listener_error", event_type=event.type)
