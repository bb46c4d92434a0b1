"""Feed service — reconciles pull and push updates into one signal view."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from signal_feed.classifier import Classification, classify
from signal_feed.client import EngineApiClient
from signal_feed.coalescer import UpdateCoalescer
from signal_feed.config.schema import AppConfig
from signal_feed.liveness import LivenessTracker
from signal_feed.models import FeedEvent, Signal
from signal_feed.normalize import normalize_session, normalize_signal, to_timestamp
from signal_feed.store import CLOSED_TIME_KEYS, OPENED_TIME_KEYS, EventLog, SignalStore, TradeBook
from signal_feed.transport.connection import SharedConnection, Subscription

log = structlog.get_logger("feed")

QUOTES_SOURCE = "quotes"

# Trade payloads embed their originating signal under one of these keys.
_OPENED_SIGNAL_KEYS = ("signal", "originSignal")
_CLOSED_SIGNAL_KEYS = ("signal", "latestSignal", "originSignal")

# Push events after which the engine status is reloaded.
_ENGINE_RELOAD_EVENTS = frozenset({
    "trade_opened",
    "trade_closed",
    "all_trades_closed",
    "auto_trading_started",
    "auto_trading_stopped",
})


def signal_from_trade(
    trade: Any,
    signal_keys: tuple[str, ...],
    fallback_keys: tuple[str, ...],
    fallback_ts: Any = None,
) -> Signal | None:
    """Normalize the signal embedded in a trade, linked back to the trade."""
    if not isinstance(trade, dict):
        return None
    base = next((trade[k] for k in signal_keys if isinstance(trade.get(k), dict)), None)
    if base is None:
        return None
    fallback = next((trade[k] for k in fallback_keys if trade.get(k)), None)
    return normalize_signal(
        {**base, "tradeReference": trade},
        fallback or base.get("generatedAt") or fallback_ts,
    )


def _closed_trades(payload: Any) -> list[dict]:
    """Trades reported by an ``all_trades_closed`` event.

    Per-trade ``results`` take precedence; failed closes are skipped.
    """
    if not isinstance(payload, dict):
        return []
    results = payload.get("results")
    if isinstance(results, list):
        return [
            r["trade"] for r in results
            if isinstance(r, dict) and r.get("success") and isinstance(r.get("trade"), dict)
        ]
    trades = payload.get("trades")
    return [t for t in trades if isinstance(t, dict)] if isinstance(trades, list) else []


@dataclass
class EngineSnapshot:
    """Last known engine status; kept when a refresh fails."""

    status: dict | None = None
    statistics: dict | None = None
    updated_at: float | None = None
    error: str | None = None


@dataclass
class FeedView:
    classification: Classification
    live: bool
    events: list[FeedEvent] = field(default_factory=list)
    active_trades: list[dict] = field(default_factory=list)
    trade_history: list[dict] = field(default_factory=list)

    @property
    def tier(self) -> str:
        return self.classification.tier.value

    @property
    def signals(self) -> list[Signal]:
        return self.classification.signals

    @property
    def mode_label(self) -> str:
        return self.classification.mode_label


class FeedService:
    """Owns the stores and is the only code that mutates them."""

    def __init__(
        self,
        config: AppConfig,
        client: EngineApiClient,
        connection: SharedConnection,
    ) -> None:
        self.config = config
        self.client = client
        self.connection = connection

        self.signals = SignalStore(cap=config.stores.signal_cap, name="signals")
        self.candidates = SignalStore(cap=config.stores.candidate_cap, name="candidates")
        self.active_trades = TradeBook(config.stores.active_trade_cap, OPENED_TIME_KEYS, name="active_trades")
        self.trade_history = TradeBook(config.stores.history_trade_cap, CLOSED_TIME_KEYS, name="trade_history")
        self.events = EventLog(cap=config.stores.event_cap)
        self.liveness = LivenessTracker(window_s=config.liveness.freshness_window_s)
        self.engine = EngineSnapshot()
        self.quotes: dict[str, dict] = {}

        self.coalescer = UpdateCoalescer(delay_s=config.coalescer.flush_delay_s)
        self.coalescer.add_handler(self._apply_quotes)

        self.scope: tuple[str | None, str | None] = (None, None)
        self._subscription: Subscription | None = None
        self._pollers: list[asyncio.Task] = []
        self._inflight: dict[str, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()
        self._refreshers: dict[str, Callable[[], Awaitable[None]]] = {
            "trades": self.refresh_trades,
            "candidates": self.refresh_candidates,
            "engine": self.refresh_engine,
            "bridge": self.refresh_bridge,
        }

    # ── Read side ─────────────────────────────────────────────

    def view(self) -> FeedView:
        """Classify the current stores; called on every read."""
        return FeedView(
            classification=classify(
                self.signals.signals,
                self.candidates.signals,
                self.config.classifier,
            ),
            live=self.liveness.is_live(),
            events=self.events.events,
            active_trades=self.active_trades.trades,
            trade_history=self.trade_history.trades,
        )

    # ── Push path ─────────────────────────────────────────────

    def handle_event(self, event: FeedEvent) -> None:
        """Route one envelope from the streaming connection."""
        kind = event.type.lower()
        payload = event.payload

        if kind != "connected":
            self.events.append(event)

        if "quote" in kind or kind == "tick":
            self._buffer_quote(payload, event.timestamp)
            return

        if "heartbeat" in kind:
            session = normalize_session(payload)
            if session is not None:
                self.liveness.record_session(session)
            return

        if "signal" in kind:
            signal = normalize_signal(payload, event.timestamp)
            if signal is None:
                return
            store = self.candidates if "candidate" in kind else self.signals
            store.merge([signal])
            return

        if kind == "trade_opened":
            if isinstance(payload, dict):
                self.active_trades.merge([payload])
                self.signals.merge([
                    signal_from_trade(payload, _OPENED_SIGNAL_KEYS, ("openedAt", "openTime"), event.timestamp)
                ])
        elif kind == "trade_closed":
            if isinstance(payload, dict):
                if payload.get("id") is not None:
                    self.active_trades.remove(payload["id"])
                self.trade_history.merge([payload])
                self.signals.merge([
                    signal_from_trade(
                        payload, _CLOSED_SIGNAL_KEYS, ("closedAt", "closeTime"), event.timestamp,
                    )
                ])
        elif kind == "all_trades_closed":
            trades = _closed_trades(payload)
            self.trade_history.merge(trades)
            self.active_trades.clear()
            self.signals.merge([
                signal_from_trade(t, _CLOSED_SIGNAL_KEYS, ("closedAt", "closeTime"), event.timestamp)
                for t in trades
            ])

        if kind in _ENGINE_RELOAD_EVENTS:
            self._spawn_refresh("engine")

    def _spawn_refresh(self, name: str) -> asyncio.Task | None:
        """Run a refresh in the background; failures are logged, never raised."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Called outside the loop; the next poll catches up.
            return None
        task = loop.create_task(self._refresh_logged(name))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _refresh_logged(self, name: str) -> None:
        try:
            await self.refresh(name)
        except Exception:
            log.exception("background_refresh_failed", refresh=name)

    def _buffer_quote(self, payload: Any, ts: float) -> None:
        if not isinstance(payload, dict):
            return
        symbol = payload.get("symbol") or payload.get("pair")
        if not symbol:
            return
        quote = dict(payload)
        quote["receivedAt"] = ts
        self.coalescer.push(str(symbol).upper(), quote)

    def _apply_quotes(self, batch: dict) -> None:
        self.quotes.update(batch)
        stamps = [
            to_timestamp(q.get("timestamp")) or q.get("receivedAt")
            for q in batch.values()
        ]
        self.liveness.record_data(QUOTES_SOURCE, max((s for s in stamps if s), default=None))
        log.debug("quotes_flushed", symbols=len(batch))

    # ── Pull path ─────────────────────────────────────────────

    async def refresh_trades(self) -> None:
        """Pull trade history and active trades; merge their signals.

        Each branch fails independently. A branch that succeeds replaces its
        trade book; a failed one leaves the previous book in place.
        """
        limit = self.config.api.history_limit
        history, active = await asyncio.gather(
            self.client.get_trade_history(limit=limit),
            self.client.get_active_trades(),
            return_exceptions=True,
        )

        collected: list[Signal | None] = []
        if isinstance(history, BaseException):
            log.warning("pull_branch_failed", branch="history", error=str(history))
        else:
            collected.extend(
                signal_from_trade(
                    t, _CLOSED_SIGNAL_KEYS, ("closedAt", "closeTime", "openedAt", "openTime"),
                )
                for t in self.trade_history.replace(history[:limit])
            )
        if isinstance(active, BaseException):
            log.warning("pull_branch_failed", branch="active", error=str(active))
        else:
            collected.extend(
                signal_from_trade(t, _OPENED_SIGNAL_KEYS, ("openedAt", "openTime"))
                for t in self.active_trades.replace(active)
            )

        if any(s is not None for s in collected):
            self.signals.merge(collected)

    async def refresh_candidates(self) -> None:
        scope = self.scope
        raw = await self.client.get_candidate_signals(*scope)
        if scope != self.scope:
            log.debug("candidates_discarded", scope=scope, current=self.scope)
            return
        self.candidates.merge([normalize_signal(r) for r in raw])

    async def refresh_engine(self) -> None:
        try:
            data = await self.client.get_engine_status()
        except Exception as exc:
            log.warning("engine_refresh_failed", error=str(exc))
            self.engine.error = str(exc) or type(exc).__name__
            return
        self.engine = EngineSnapshot(
            status=data.get("status"),
            statistics=data.get("statistics"),
            updated_at=time.time() * 1000,
        )

    async def refresh_bridge(self) -> None:
        window_ms = int(self.config.liveness.freshness_window_s * 1000)
        for raw in await self.client.get_bridge_sessions(max_age_ms=window_ms):
            session = normalize_session(raw)
            if session is not None:
                self.liveness.record_session(session)

    async def refresh(self, name: str) -> None:
        """Run one named refresh, superseding any still in flight."""
        previous = self._inflight.get(name)
        if previous is not None and not previous.done():
            previous.cancel()
        # The task copies the current context, so its log lines carry the name.
        with structlog.contextvars.bound_contextvars(refresh=name):
            task = asyncio.get_running_loop().create_task(self._refreshers[name]())
        self._inflight[name] = task
        try:
            await task
        except asyncio.CancelledError:
            if self._inflight.get(name) is task:
                raise
            log.debug("refresh_superseded", refresh=name)
        finally:
            if self._inflight.get(name) is task:
                del self._inflight[name]

    def set_scope(self, pair: str | None, timeframe: str | None) -> asyncio.Task | None:
        """Change the candidate scope; abandons the in-flight candidate pull."""
        scope = (pair.upper() if pair else None, timeframe.upper() if timeframe else None)
        if scope == self.scope:
            return None
        self.scope = scope
        log.info("scope_changed", pair=scope[0], timeframe=scope[1])
        return self._spawn_refresh("candidates")

    async def _poll(self, name: str, interval_s: float) -> None:
        while True:
            try:
                await self.refresh(name)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("poll_failed", refresh=name)
            await asyncio.sleep(interval_s)

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        if self._subscription is not None:
            return
        self._subscription = self.connection.subscribe(self.handle_event)
        polling = self.config.polling
        loop = asyncio.get_running_loop()
        for name, interval in (
            ("trades", polling.trades_interval_s),
            ("candidates", polling.candidates_interval_s),
            ("engine", polling.engine_interval_s),
            ("bridge", polling.bridge_interval_s),
        ):
            self._pollers.append(loop.create_task(self._poll(name, interval)))
        log.info("feed_started", ws_url=self.connection.url, api=self.client.base_url)

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        tasks = [*self._pollers, *self._inflight.values(), *self._background]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._pollers.clear()
        self._inflight.clear()
        self._background.clear()
        self.coalescer.close()
        log.info("feed_stopped")
