"""Boundary normalization for loosely-typed inbound records.

Everything that arrives from the pull endpoints or the push channel passes
through here exactly once. Internal code works with ``Signal`` / ``FeedEvent``
and does not re-validate.
"""

from __future__ import annotations

import json
import math
import time
import uuid
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import ValidationError

from signal_feed.models import BridgeSession, Decision, FeedEvent, Signal

log = structlog.get_logger("normalize")

# 2000-01-01T00:00:00Z
TIMESTAMP_FLOOR_MS = 946_684_800_000
MAX_FUTURE_MS = 3 * 365 * 24 * 3600 * 1000
# Below this magnitude a numeric timestamp is taken to be epoch seconds.
_SECONDS_CUTOFF = 100_000_000_000

_DIRECTION_ALIASES = {
    "BUY": "BUY",
    "LONG": "BUY",
    "BULLISH": "BUY",
    "SELL": "SELL",
    "SHORT": "SELL",
    "BEARISH": "SELL",
}


def now_ms() -> float:
    return time.time() * 1000


def to_number(value: Any) -> float | None:
    """Coerce to a finite float, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    return numeric if math.isfinite(numeric) else None


def to_timestamp(value: Any, now: float | None = None) -> float | None:
    """Parse a timestamp into epoch milliseconds.

    Accepts epoch ms, epoch seconds, numeric strings, ISO-8601 strings and
    ``datetime`` objects. Values before 2000 or more than ~3 years in the
    future are treated as absent.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None

    ms: float | None = None
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        ms = dt.timestamp() * 1000
    elif isinstance(value, (int, float)):
        ms = float(value)
    elif isinstance(value, str):
        text = value.strip()
        numeric = to_number(text)
        if numeric is not None:
            ms = numeric
        else:
            try:
                dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            ms = dt.timestamp() * 1000

    if ms is None or not math.isfinite(ms):
        return None
    if abs(ms) < _SECONDS_CUTOFF:
        ms *= 1000

    current = now_ms() if now is None else now
    if ms < TIMESTAMP_FLOOR_MS or ms > current + MAX_FUTURE_MS:
        return None
    return ms


def _first(*values: Any) -> Any:
    """Return the first value that is not None."""
    for v in values:
        if v is not None:
            return v
    return None


def _first_truthy(*values: Any) -> Any:
    """Return the first truthy value."""
    for v in values:
        if v:
            return v
    return None


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> str | None:
    return str(value) if value else None


def _parse_decision(payload: dict) -> tuple[Decision, bool]:
    """Extract the decision block and strict validity flag.

    ``isValid`` is either a boolean or an object carrying ``{isValid, decision}``.
    """
    raw_valid = payload.get("isValid")
    decision_raw = payload.get("decision")
    is_valid = raw_valid is True
    if isinstance(raw_valid, dict):
        is_valid = raw_valid.get("isValid") is True
        decision_raw = _first(decision_raw, raw_valid.get("decision"))

    decision_raw = _as_dict(decision_raw)
    state = decision_raw.get("state")
    decision = Decision(
        state=str(state).upper() if state else None,
        blocked=decision_raw.get("blocked") is True,
        blockers=[str(b) for b in decision_raw.get("blockers") or [] if b],
        missing=[str(m) for m in decision_raw.get("missing") or [] if m],
    )
    return decision, is_valid


def normalize_signal(
    payload: Any,
    fallback_timestamp: Any = None,
    now: float | None = None,
) -> Signal | None:
    """Turn a raw signal-like record into a ``Signal``, or None if unusable."""
    if not isinstance(payload, dict) or not payload:
        return None

    pair = _first_truthy(payload.get("pair"), payload.get("symbol"), payload.get("instrument"))
    if not pair:
        return None
    pair = str(pair).upper()

    raw_direction = str(
        _first_truthy(payload.get("direction"), payload.get("side"), payload.get("bias")) or "NEUTRAL"
    ).upper()
    direction = _DIRECTION_ALIASES.get(raw_direction, "NEUTRAL")

    current = now_ms() if now is None else now
    timestamp = (
        to_timestamp(
            _first_truthy(
                payload.get("generatedAt"),
                payload.get("createdAt"),
                payload.get("timestamp"),
                fallback_timestamp,
            ),
            now=current,
        )
        or current
    )

    signal_id = _first_truthy(payload.get("id"), payload.get("signalId"))
    signal_id = str(signal_id) if signal_id else f"{pair}-{direction}-{int(timestamp)}"

    components = _as_dict(payload.get("components"))
    technical = _as_dict(components.get("technical")).get("signals") or []
    primary = _as_dict(technical[0]) if isinstance(technical, list) and technical else {}
    meta = _as_dict(payload.get("meta"))
    metrics = _as_dict(payload.get("metrics"))
    trade = _as_dict(_first_truthy(payload.get("tradeReference"), payload.get("trade")))
    entry = _as_dict(
        _first_truthy(
            payload.get("entry"),
            payload.get("entryPlan"),
            payload.get("orderPlan"),
            trade.get("entry"),
        )
    )

    entry_price = to_number(_first(
        entry.get("price"), payload.get("entryPrice"), trade.get("entryPrice"),
        trade.get("openPrice"), trade.get("priceOpened"),
    ))
    stop_loss = to_number(_first(
        entry.get("stopLoss"), payload.get("stopLoss"), trade.get("stopLoss"),
        _as_dict(trade.get("risk")).get("stopLoss"),
    ))
    take_profit = to_number(_first(
        entry.get("takeProfit"), payload.get("takeProfit"), trade.get("takeProfit"),
        trade.get("targetPrice"), _as_dict(trade.get("targets")).get("takeProfit"),
    ))
    risk_reward = to_number(_first(
        entry.get("riskReward"), payload.get("riskReward"), metrics.get("riskReward"),
        trade.get("riskReward"),
    ))
    expected_pnl = to_number(_first(
        payload.get("expectedPnL"), payload.get("expectedPnl"),
        _as_dict(payload.get("performance")).get("expectedPnL"),
        entry.get("expectedPnL"), trade.get("expectedPnL"),
    ))
    realized_pnl = to_number(_first(
        payload.get("realizedPnL"), payload.get("pnl"), payload.get("profit"),
        trade.get("realizedPnl"), trade.get("pnl"), trade.get("profit"),
    ))

    opened_at = to_timestamp(
        _first_truthy(payload.get("openedAt"), payload.get("openTime"), trade.get("openTime"), trade.get("openedAt")),
        now=current,
    )
    closed_at = to_timestamp(
        _first_truthy(payload.get("closedAt"), payload.get("closeTime"), trade.get("closeTime"), trade.get("closedAt")),
        now=current,
    )
    expires_at = to_timestamp(
        _first_truthy(payload.get("expiresAt"), payload.get("validUntil"), payload.get("expiry")),
        now=current,
    )

    status_raw = _first_truthy(payload.get("status"), payload.get("signalStatus"), trade.get("status")) or "pending"
    decision, is_valid = _parse_decision(payload)

    try:
        signal = Signal(
            id=signal_id,
            pair=pair,
            direction=direction,
            timeframe=_text(_first_truthy(payload.get("timeframe"), primary.get("timeframe"), meta.get("timeframe"))),
            strategy=_text(_first_truthy(payload.get("strategy"), payload.get("source"), meta.get("strategy"))),
            timestamp=timestamp,
            opened_at=opened_at,
            closed_at=closed_at,
            expires_at=expires_at,
            entry_price=entry_price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            risk_reward=risk_reward,
            confidence=to_number(_first(payload.get("confidence"), primary.get("confidence"))),
            strength=to_number(_first(payload.get("strength"), primary.get("strength"))),
            score=to_number(_first(
                payload.get("finalScore"), payload.get("score"),
                payload.get("aggregateScore"), meta.get("score"),
            )),
            win_rate=to_number(_first(
                payload.get("estimatedWinRate"), payload.get("winRate"), metrics.get("winRate"),
            )),
            expected_pnl=expected_pnl,
            realized_pnl=realized_pnl,
            status=str(status_raw).upper(),
            decision=decision,
            is_valid=is_valid,
        )
    except ValidationError:
        log.debug("signal_dropped", pair=pair, signal_id=signal_id)
        return None

    # Expiry overrides whatever status the producer reported.
    signal.status = signal.status_at(current)
    return signal


def normalize_session(raw: Any, source_id: str | None = None, now: float | None = None) -> BridgeSession | None:
    """Bridge heartbeat record from the status endpoint or a push message."""
    if not isinstance(raw, dict):
        return None
    source = _first_truthy(source_id, raw.get("broker"), raw.get("platform"), raw.get("source"))
    if not source:
        return None
    account = _first(raw.get("accountNumber"), raw.get("account"))
    return BridgeSession(
        source_id=str(source).lower(),
        last_heartbeat_at=to_timestamp(
            _first_truthy(raw.get("lastHeartbeat"), raw.get("lastHeartbeatAt"), raw.get("timestamp")),
            now=now,
        ),
        connected_at=to_timestamp(raw.get("connectedAt"), now=now),
        account_number=str(account) if account is not None else None,
        server=_text(raw.get("server")),
        currency=_text(raw.get("currency")),
        equity=to_number(raw.get("equity")),
        balance=to_number(raw.get("balance")),
        account_mode=_text(_first_truthy(raw.get("accountMode"), raw.get("mode"))),
    )


def normalize_event(raw: Any, now: float | None = None) -> FeedEvent:
    """Wrap a decoded push message into a ``FeedEvent`` envelope.

    Unrecognized types are kept as-is; routing happens downstream.
    """
    current = now_ms() if now is None else now
    suffix = uuid.uuid4().hex[:12]
    if not isinstance(raw, dict):
        return FeedEvent(
            id=f"event-{int(current)}-{suffix}",
            type="unknown",
            payload=raw,
            timestamp=current,
        )

    timestamp = to_timestamp(raw.get("timestamp"), now=current) or current
    event_type = str(_first_truthy(raw.get("type"), raw.get("event")) or "unknown")
    event_id = raw.get("id")
    return FeedEvent(
        id=str(event_id) if event_id else f"{event_type}-{int(timestamp)}-{suffix}",
        type=event_type,
        payload=_first(raw.get("payload"), raw.get("data")),
        timestamp=timestamp,
    )


def decode_frame(frame: str | bytes) -> FeedEvent | None:
    """Parse one text/binary WebSocket frame. Returns None for invalid JSON."""
    try:
        raw = json.loads(frame)
    except (TypeError, ValueError):
        log.warning("frame_parse_failed", size=len(frame) if frame else 0)
        return None
    return normalize_event(raw)
