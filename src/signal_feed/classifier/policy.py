"""Named selection policies — pure predicate + threshold records."""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from signal_feed.models import ENTER_STATES, WATCH_STATE, Signal

ACTIONABLE_DIRECTIONS = frozenset({"BUY", "SELL"})


class Tier(str, Enum):
    STRICT = "STRICT"
    RELAXED = "RELAXED"
    WATCH = "WATCH"


def _finite(value: float | None) -> bool:
    return value is not None and math.isfinite(value)


def is_tradeable(signal: Signal) -> bool:
    """A signal is tradeable only with a complete, finite entry plan."""
    return _finite(signal.entry_price) and _finite(signal.stop_loss) and _finite(signal.take_profit)


def _watch_rank(signal: Signal) -> tuple[float, float, float]:
    return (signal.strength or 0.0, signal.confidence or 0.0, signal.relevant_ts)


@dataclass(frozen=True)
class Policy:
    """One rung of the strict -> relaxed -> watch ladder."""

    tier: Tier
    states: frozenset[str]
    min_confidence: float
    min_strength: float
    require_valid: bool = True
    limit: int = 50
    rank: Callable[[Signal], tuple] | None = None

    def accepts(self, signal: Signal) -> bool:
        if signal.direction not in ACTIONABLE_DIRECTIONS:
            return False
        if signal.decision.blocked:
            return False
        if signal.decision.state not in self.states:
            return False
        if self.require_valid and signal.is_valid is not True:
            return False
        if not is_tradeable(signal):
            return False
        if not _finite(signal.confidence) or signal.confidence < self.min_confidence:
            return False
        if not _finite(signal.strength) or signal.strength < self.min_strength:
            return False
        return True

    def select(self, pool: Sequence[Signal]) -> list[Signal]:
        """Filter *pool* (kept in its own order unless the policy ranks)."""
        picked = [s for s in pool if self.accepts(s)]
        if self.rank is not None:
            picked.sort(key=self.rank, reverse=True)
        return picked[: self.limit]


def strict_policy(min_confidence: float = 75, min_strength: float = 60, limit: int = 50) -> Policy:
    return Policy(Tier.STRICT, ENTER_STATES, min_confidence, min_strength, limit=limit)


def relaxed_policy(min_confidence: float = 45, min_strength: float = 55, limit: int = 50) -> Policy:
    return Policy(Tier.RELAXED, ENTER_STATES, min_confidence, min_strength, limit=limit)


def watch_policy(min_confidence: float = 20, min_strength: float = 10, limit: int = 50) -> Policy:
    return Policy(
        Tier.WATCH,
        frozenset({WATCH_STATE}),
        min_confidence,
        min_strength,
        require_valid=False,
        limit=limit,
        rank=_watch_rank,
    )
