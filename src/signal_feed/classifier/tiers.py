"""Tiered classifier — first non-empty policy wins."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from signal_feed.classifier.policy import (
    Policy,
    Tier,
    relaxed_policy,
    strict_policy,
    watch_policy,
)
from signal_feed.config.schema import ClassifierConfig
from signal_feed.models import Signal


@dataclass
class Classification:
    """What the display layer renders: a tier, its signals and a label."""

    tier: Tier
    signals: list[Signal] = field(default_factory=list)
    mode_label: str = ""
    used_fallback: bool = False


def build_policies(config: ClassifierConfig | None = None) -> list[Policy]:
    cfg = config or ClassifierConfig()
    return [
        strict_policy(cfg.strict_min_confidence, cfg.strict_min_strength, cfg.max_results),
        relaxed_policy(cfg.relaxed_min_confidence, cfg.relaxed_min_strength, cfg.max_results),
        watch_policy(cfg.watch_min_confidence, cfg.watch_min_strength, cfg.max_results),
    ]


def _fmt(value: float) -> str:
    return f"{value:g}"


def mode_label(policy: Policy, used_fallback: bool) -> str:
    suffix = ", fallback pool" if used_fallback else ""
    if policy.tier is Tier.STRICT:
        return f"ENTER only (strict{suffix})"
    if policy.tier is Tier.RELAXED:
        return (
            f"ENTER only (relaxed conf>={_fmt(policy.min_confidence)}, "
            f"strength>={_fmt(policy.min_strength)}{suffix})"
        )
    return f"WAIT_MONITOR watchlist{' (fallback pool)' if used_fallback else ''}"


def classify(
    primary_pool: Sequence[Signal],
    candidate_pool: Sequence[Signal],
    config: ClassifierConfig | None = None,
    policies: Sequence[Policy] | None = None,
) -> Classification:
    """Pick the strictest tier that yields anything.

    Uses *primary_pool* when it has entries, else *candidate_pool*. The last
    policy is terminal and its result is returned even when empty.
    """
    ladder = list(policies) if policies is not None else build_policies(config)
    used_fallback = len(primary_pool) == 0
    pool = candidate_pool if used_fallback else primary_pool

    for policy in ladder[:-1]:
        picked = policy.select(pool)
        if picked:
            return Classification(policy.tier, picked, mode_label(policy, used_fallback), used_fallback)

    terminal = ladder[-1]
    return Classification(
        terminal.tier,
        terminal.select(pool),
        mode_label(terminal, used_fallback),
        used_fallback,
    )
