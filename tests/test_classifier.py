"""Tests for the tiered classifier and its policies."""

from __future__ import annotations

import math

import pytest

from signal_feed.classifier import (
    Tier,
    classify,
    is_tradeable,
    relaxed_policy,
    strict_policy,
    watch_policy,
)
from signal_feed.config import ClassifierConfig
from signal_feed.store import merge_signals

SCENARIO_KEY = "EURUSD:BUY:H1:trend"


# ── Scenarios ───────────────────────────────────────────────────


class TestScenarios:
    def test_scenario_a_strict(self, make_signal):
        store = merge_signals([], [make_signal(merge_key=SCENARIO_KEY, confidence=80, strength=65)])
        result = classify(store, [])
        assert result.tier is Tier.STRICT
        assert len(result.signals) == 1
        assert result.mode_label == "ENTER only (strict)"
        assert result.used_fallback is False

    def test_scenario_b_relaxed(self, make_signal):
        store = merge_signals([], [make_signal(merge_key=SCENARIO_KEY, confidence=50, strength=56)])
        result = classify(store, [])
        assert result.tier is Tier.RELAXED
        assert len(result.signals) == 1
        assert "relaxed" in result.mode_label
        assert "45" in result.mode_label
        assert "55" in result.mode_label

    def test_scenario_c_watch(self, make_signal):
        sig = make_signal(merge_key=SCENARIO_KEY, state="WAIT_MONITOR", confidence=30, strength=15)
        result = classify([sig], [])
        assert result.tier is Tier.WATCH
        assert [s.merge_key for s in result.signals] == [SCENARIO_KEY]


# ── Ladder behaviour ────────────────────────────────────────────


class TestLadder:
    def test_strict_shadows_watch(self, make_signal):
        strong = make_signal(merge_key="strong", timestamp=1)
        watch = make_signal(merge_key="watch", timestamp=2, state="WAIT_MONITOR", confidence=30, strength=15)
        result = classify([watch, strong], [])
        assert result.tier is Tier.STRICT
        assert [s.merge_key for s in result.signals] == ["strong"]

    def test_fallback_pool_used_when_primary_empty(self, make_signal):
        result = classify([], [make_signal(merge_key="cand")])
        assert result.tier is Tier.STRICT
        assert result.used_fallback is True
        assert result.mode_label == "ENTER only (strict, fallback pool)"

    def test_fallback_pool_ignored_when_primary_has_entries(self, make_signal):
        primary = [make_signal(merge_key="p", state="WAIT_MONITOR", confidence=30, strength=15)]
        result = classify(primary, [make_signal(merge_key="cand")])
        assert result.tier is Tier.WATCH
        assert result.used_fallback is False

    def test_all_empty_returns_empty_watch(self):
        result = classify([], [])
        assert result.tier is Tier.WATCH
        assert result.signals == []
        assert "fallback pool" in result.mode_label

    def test_relaxed_thresholds_configurable(self, make_signal):
        sig = make_signal(confidence=50, strength=56)
        cfg = ClassifierConfig(relaxed_min_confidence=60)
        result = classify([sig], [], cfg)
        assert result.tier is Tier.WATCH
        assert result.signals == []

    def test_relaxed_thresholds_clamped(self):
        cfg = ClassifierConfig(relaxed_min_confidence=150, relaxed_min_strength=-5)
        assert cfg.relaxed_min_confidence == 100
        assert cfg.relaxed_min_strength == 0

    def test_relaxed_label_embeds_configured_thresholds(self, make_signal):
        cfg = ClassifierConfig(relaxed_min_confidence=40, relaxed_min_strength=50.5)
        result = classify([make_signal(confidence=41, strength=51)], [], cfg)
        assert result.mode_label == "ENTER only (relaxed conf>=40, strength>=50.5)"

    def test_results_capped_at_fifty(self, make_signal):
        pool = [make_signal(merge_key=f"K{i}", timestamp=i) for i in range(80)]
        result = classify(pool, [])
        assert len(result.signals) == 50


# ── Individual policies ─────────────────────────────────────────


class TestStrictPolicy:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"direction": "NEUTRAL"},
            {"blocked": True},
            {"state": "WAIT_MONITOR"},
            {"state": None},
            {"is_valid": False},
            {"confidence": 74.9},
            {"strength": 59},
            {"confidence": None},
            {"stop_loss": None},
        ],
    )
    def test_rejects(self, make_signal, overrides):
        assert strict_policy().accepts(make_signal(**overrides)) is False

    @pytest.mark.parametrize("state", ["ENTER", "ENTER_STRONG", "ENTER_TRADE"])
    def test_accepts_enter_states(self, make_signal, state):
        assert strict_policy().accepts(make_signal(state=state, direction="SELL"))

    def test_boundary_values_inclusive(self, make_signal):
        assert strict_policy().accepts(make_signal(confidence=75, strength=60))

    def test_keeps_pool_order(self, make_signal):
        pool = [make_signal(merge_key="b", timestamp=2), make_signal(merge_key="a", timestamp=1)]
        assert [s.merge_key for s in strict_policy().select(pool)] == ["b", "a"]


class TestWatchPolicy:
    def test_does_not_require_valid(self, make_signal):
        sig = make_signal(state="WAIT_MONITOR", is_valid=False, confidence=20, strength=10)
        assert watch_policy().accepts(sig)

    def test_rejects_below_floor(self, make_signal):
        assert not watch_policy().accepts(make_signal(state="WAIT_MONITOR", confidence=19, strength=50))
        assert not watch_policy().accepts(make_signal(state="WAIT_MONITOR", confidence=50, strength=9))

    def test_rejects_untradeable(self, make_signal):
        assert not watch_policy().accepts(make_signal(state="WAIT_MONITOR", take_profit=None))

    def test_sorted_by_strength_confidence_recency(self, make_signal):
        pool = [
            make_signal(merge_key="weak", state="WAIT_MONITOR", strength=20, confidence=90, timestamp=9),
            make_signal(merge_key="old", state="WAIT_MONITOR", strength=40, confidence=50, timestamp=1),
            make_signal(merge_key="new", state="WAIT_MONITOR", strength=40, confidence=50, timestamp=5),
            make_signal(merge_key="conf", state="WAIT_MONITOR", strength=40, confidence=70, timestamp=0),
        ]
        picked = watch_policy().select(pool)
        assert [s.merge_key for s in picked] == ["conf", "new", "old", "weak"]


class TestRelaxedPolicy:
    def test_requires_enter_state(self, make_signal):
        assert not relaxed_policy().accepts(make_signal(state="WAIT_MONITOR", confidence=50, strength=56))


class TestTradeable:
    def test_complete_plan(self, make_signal):
        assert is_tradeable(make_signal())

    @pytest.mark.parametrize("field", ["entry_price", "stop_loss", "take_profit"])
    def test_missing_leg(self, make_signal, field):
        assert not is_tradeable(make_signal(**{field: None}))

    def test_non_finite_leg(self, make_signal):
        assert not is_tradeable(make_signal(entry_price=math.inf))
