"""Actionability tiers for the current signal view."""

from signal_feed.classifier.policy import (
    Policy,
    Tier,
    is_tradeable,
    relaxed_policy,
    strict_policy,
    watch_policy,
)
from signal_feed.classifier.tiers import Classification, build_policies, classify

__all__ = [
    "Classification",
    "Policy",
    "Tier",
    "build_policies",
    "classify",
    "is_tradeable",
    "relaxed_policy",
    "strict_policy",
    "watch_policy",
]
