"""Server-side ping/pong liveness for broadcast clients."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import structlog

log = structlog.get_logger("heartbeat")


@dataclass
class _Tracked:
    socket: Any
    missed: int = 0
    pong_waiter: Any = field(default=None)


class HeartbeatMonitor:
    """Ping every tracked socket on an interval; drop those that stop answering.

    A socket whose previous ping is still unanswered at the next tick counts
    one miss. After ``max_missed`` consecutive misses it is aborted.
    """

    def __init__(self, interval_s: float = 30.0, max_missed: int = 2) -> None:
        self.interval_s = interval_s
        self.max_missed = max_missed
        self._tracked: dict[int, _Tracked] = {}
        self._task: asyncio.Task | None = None
        self.terminated = 0

    def track(self, socket: Any) -> None:
        self._tracked[id(socket)] = _Tracked(socket)

    def untrack(self, socket: Any) -> None:
        self._tracked.pop(id(socket), None)

    def __len__(self) -> int:
        return len(self._tracked)

    async def tick(self) -> None:
        """One heartbeat round; pings go out concurrently."""
        due: list[tuple[int, _Tracked]] = []
        for key, entry in list(self._tracked.items()):
            waiter = entry.pong_waiter
            if waiter is not None and not waiter.done():
                entry.missed += 1
            else:
                entry.missed = 0

            if entry.missed >= self.max_missed:
                log.warning("heartbeat_missed", missed=entry.missed, remote=_remote(entry.socket))
                self._terminate(key, entry)
                continue

            if entry.missed:
                # previous ping still outstanding
                continue
            due.append((key, entry))

        await asyncio.gather(*(self._ping(key, entry) for key, entry in due))

    async def _ping(self, key: int, entry: _Tracked) -> None:
        try:
            # A client whose write buffer never drains cannot hold up the round.
            entry.pong_waiter = await asyncio.wait_for(entry.socket.ping(), timeout=self.interval_s)
        except asyncio.TimeoutError:
            log.warning("heartbeat_ping_stalled", timeout_s=self.interval_s, remote=_remote(entry.socket))
            self._terminate(key, entry)
        except Exception:
            log.warning("heartbeat_ping_failed", remote=_remote(entry.socket), exc_info=True)
            self._tracked.pop(key, None)

    def _terminate(self, key: int, entry: _Tracked) -> None:
        self._tracked.pop(key, None)
        self.terminated += 1
        entry.socket.transport.abort()

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            await self.tick()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


def _remote(socket: Any) -> str | None:
    address = getattr(socket, "remote_address", None)
    return str(address) if address else None
