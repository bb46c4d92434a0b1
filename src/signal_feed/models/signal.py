"""Signal model — one trading opportunity observation, normalized."""

from __future__ import annotations

import time
from typing import Literal

from pydantic import BaseModel, Field, model_validator

Direction = Literal["BUY", "SELL", "NEUTRAL"]

ENTER_STATES = frozenset({"ENTER", "ENTER_STRONG", "ENTER_TRADE"})
WATCH_STATE = "WAIT_MONITOR"


def build_merge_key(
    pair: str,
    direction: str,
    timeframe: str | None = None,
    strategy: str | None = None,
    trade_id: str | None = None,
) -> str:
    """Identity used to collapse repeated emissions of the same opportunity.

    Signals tied to a concrete trade keep their own id so distinct trades
    never collapse into one entry.
    """
    if trade_id:
        return trade_id
    return ":".join((
        pair.upper() if pair else "-",
        direction.upper() if direction else "-",
        timeframe.upper() if timeframe else "-",
        strategy or "-",
    ))


class Decision(BaseModel):
    """Engine verdict attached to a signal."""

    state: str | None = None
    blocked: bool = False
    blockers: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)


class Signal(BaseModel):
    """A normalized trading signal. Timestamps are epoch milliseconds."""

    id: str
    pair: str
    direction: Direction = "NEUTRAL"
    timeframe: str | None = None
    strategy: str | None = None
    merge_key: str | None = None

    timestamp: float
    opened_at: float | None = None
    closed_at: float | None = None
    expires_at: float | None = None

    entry_price: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    risk_reward: float | None = None

    confidence: float | None = None
    strength: float | None = None
    score: float | None = None
    win_rate: float | None = None
    expected_pnl: float | None = None
    realized_pnl: float | None = None

    status: str = "PENDING"
    decision: Decision = Field(default_factory=Decision)
    is_valid: bool = False

    @model_validator(mode="after")
    def _fill_merge_key(self) -> Signal:
        if not self.merge_key:
            linked = self.opened_at is not None or self.closed_at is not None
            self.merge_key = build_merge_key(
                self.pair,
                self.direction,
                self.timeframe,
                self.strategy,
                trade_id=self.id if linked else None,
            )
        return self

    @property
    def relevant_ts(self) -> float:
        """Timestamp used for recency comparison and ordering."""
        return self.opened_at if self.opened_at is not None else self.timestamp

    def status_at(self, now_ms: float | None = None) -> str:
        """Lifecycle status, EXPIRED once ``expires_at`` has passed."""
        if self.expires_at is not None:
            now = time.time() * 1000 if now_ms is None else now_ms
            if self.expires_at <= now:
                return "EXPIRED"
        return self.status
