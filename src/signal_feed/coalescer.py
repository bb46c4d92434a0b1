"""Update coalescer — batch high-frequency keyed updates into timed flushes."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Hashable
from typing import Any

import structlog

log = structlog.get_logger("coalescer")

FlushHandler = Callable[[dict[Hashable, Any]], None]


class UpdateCoalescer:
    """Buffer per-key updates and deliver them as one batch per period.

    The first ``push`` after a flush arms a single timer; later pushes only
    overwrite the buffered value for their key. When the timer fires the
    whole buffer goes to every handler and is cleared.
    """

    def __init__(
        self,
        delay_s: float = 0.65,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.delay_s = delay_s
        self._loop = loop
        self._buffer: dict[Hashable, Any] = {}
        self._handlers: list[FlushHandler] = []
        self._timer: asyncio.TimerHandle | None = None
        self.flush_count = 0

    def add_handler(self, handler: FlushHandler) -> None:
        self._handlers.append(handler)

    def remove_handler(self, handler: FlushHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    @property
    def pending(self) -> int:
        return len(self._buffer)

    @property
    def armed(self) -> bool:
        return self._timer is not None

    def push(self, key: Hashable, update: Any) -> None:
        """Buffer *update* for *key*, replacing any earlier unflushed value."""
        self._buffer[key] = update
        if self._timer is None:
            loop = self._loop or asyncio.get_running_loop()
            self._timer = loop.call_later(self.delay_s, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self.flush()

    def flush(self) -> dict[Hashable, Any]:
        """Deliver everything buffered now and return the delivered batch."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._buffer:
            return {}

        batch, self._buffer = self._buffer, {}
        self.flush_count += 1
        for handler in list(self._handlers):
            try:
                handler(dict(batch))
            except Exception:
                log.exception("flush_handler_error", keys=len(batch))
        return batch

    def close(self) -> None:
        """Cancel the pending timer and discard buffered updates."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._buffer.clear()
