"""Shared test fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from signal_feed.models import Decision, Signal


def build_signal(
    pair: str = "EURUSD",
    direction: str = "BUY",
    timestamp: float = 100,
    *,
    id: str | None = None,
    merge_key: str | None = None,
    state: str | None = "ENTER",
    blocked: bool = False,
    is_valid: bool = True,
    confidence: float | None = 80,
    strength: float | None = 65,
    entry_price: float | None = 1.1,
    stop_loss: float | None = 1.09,
    take_profit: float | None = 1.12,
    **extra: Any,
) -> Signal:
    return Signal(
        id=id or f"{pair}-{direction}-{timestamp}",
        pair=pair,
        direction=direction,
        merge_key=merge_key,
        timestamp=timestamp,
        decision=Decision(state=state, blocked=blocked),
        is_valid=is_valid,
        confidence=confidence,
        strength=strength,
        entry_price=entry_price,
        stop_loss=stop_loss,
        take_profit=take_profit,
        **extra,
    )


@pytest.fixture
def make_signal():
    """Factory for fully-tradeable strict-ENTER signals; override per test."""
    return build_signal
