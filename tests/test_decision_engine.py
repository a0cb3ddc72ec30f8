"""Tests for the decision engine gates and money math."""

import dataclasses
import random

import pytest

from flipcore.categories import CATEGORY_PROFILES, Category
from flipcore.decision.engine import (
    DecisionConfig,
    DecisionEngine,
    ReasonCode,
    UserCosts,
    Verdict,
    confidence_label,
    margin_band,
    money,
    percent,
)
from flipcore.identity.base import ConfidenceTier, Identity
from flipcore.pricing.price_truth import PriceTruth, PricingSource, blocked_price_truth


def card(tier=ConfidenceTier.HIGH, **kwargs):
    return Identity(category=Category.TRADING_CARDS, confidence=tier, **kwargs)


def truth(anchor, tier=ConfidenceTier.HIGH, category=Category.TRADING_CARDS, **kwargs):
    return PriceTruth(
        source_used=PricingSource.SOLD_COMPS,
        anchor_price=anchor,
        pricing_confidence=tier,
        category=category,
        **kwargs,
    )


@pytest.fixture
def engine():
    return DecisionEngine(DecisionConfig())


def test_card_flip_math(engine):
    decision = engine.decide(card(), truth(44.0), UserCosts(buy_price=20, shipping_out=0, other_costs=0))

    assert decision.verdict == Verdict.FLIP
    assert decision.label == "Flip It!"
    assert decision.costs.platform_fees == 5.72
    assert decision.costs.total_costs == 25.72
    assert decision.profit == 18.28
    assert decision.margin_percent == 41.5
    assert decision.roi_percent == 71.1
    assert decision.max_buy_price == 18.62
    assert decision.target_profit == 15.0
    assert decision.margin_band == "Above target margin"
    assert decision.confidence_label == "High Confidence"
    assert decision.reason_code is None


def test_category_defaults_applied(engine):
    """Card shipping ($4) and fixed overhead ($5) eat the margin."""
    decision = engine.decide(card(), truth(44.0), UserCosts(buy_price=20))

    assert decision.costs.shipping_out == 4.0
    assert decision.costs.fixed_overhead == 5.0
    assert decision.profit == 9.28
    assert decision.verdict == Verdict.SKIP
    assert decision.reason_code == ReasonCode.LOW_MARGIN.value


def test_negative_profit_skips(engine):
    decision = engine.decide(card(), truth(44.0), UserCosts(buy_price=50))

    assert decision.verdict == Verdict.SKIP
    assert decision.reason_code == ReasonCode.NEGATIVE_PROFIT.value
    assert decision.profit < 0


def test_blocked_identity_has_no_money(engine):
    identity = card(ConfidenceTier.BLOCKED, block_code="BRAND_ONLY", block_reason="Only brand detected")
    decision = engine.decide(identity, truth(44.0), UserCosts(buy_price=1))

    assert decision.verdict == Verdict.BLOCKED
    assert decision.label == "Blocked"
    assert decision.reason_code == "BRAND_ONLY"
    assert decision.is_blocked
    data = decision.to_dict()
    for key in ("expected_sell_price", "platform_fees", "total_costs", "profit", "margin_percent", "max_buy_price"):
        assert data[key] is None


def test_watch_blocked_is_not_enough_info(engine):
    identity = Identity(
        category=Category.WATCHES,
        confidence=ConfidenceTier.BLOCKED,
        block_code="MODEL_SELECTION_REQUIRED",
    )
    decision = engine.decide(identity, blocked_price_truth("IDENTITY_BLOCKED", Category.WATCHES), UserCosts(buy_price=40))

    assert decision.verdict == Verdict.NOT_ENOUGH_INFO
    assert decision.label == "Not Enough Info"
    assert decision.reason_code == "MODEL_SELECTION_REQUIRED"
    assert decision.profit is None


def test_missing_anchor_blocks(engine):
    decision = engine.decide(card(), blocked_price_truth("NO_COMPS", Category.TRADING_CARDS), UserCosts(buy_price=5))

    assert decision.verdict == Verdict.BLOCKED
    assert decision.reason_code == ReasonCode.NO_COMPS.value
    assert "NO_COMPS" in decision.reason


@pytest.mark.parametrize("anchor", [float("nan"), float("inf")])
def test_non_finite_anchor_blocks(engine, anchor):
    decision = engine.decide(card(), truth(anchor), UserCosts(buy_price=5))

    assert decision.verdict == Verdict.BLOCKED
    assert decision.reason_code == ReasonCode.NO_COMPS.value
    assert decision.profit is None


def test_estimate_identity_is_likely_flip(engine):
    decision = engine.decide(
        card(ConfidenceTier.ESTIMATE),
        truth(100.0, ConfidenceTier.ESTIMATE),
        UserCosts(buy_price=20),
    )

    assert decision.verdict == Verdict.FLIP
    assert decision.is_likely_flip
    assert decision.label == "Likely Flip"
    assert decision.confidence_label == "Estimate - Verify Details"
    assert decision.confidence == ConfidenceTier.ESTIMATE


def test_conservative_discount_applied_once(engine):
    undiscounted = truth(100.0, is_conservative_estimate=True)
    discounted = truth(85.0, is_conservative_estimate=True, conservative_discount_applied=True)
    costs = UserCosts(buy_price=10)

    first = engine.decide(card(), undiscounted, costs)
    second = engine.decide(card(), discounted, costs)

    assert first.expected_sell_price == 85.0
    assert second.expected_sell_price == 85.0
    assert first.profit == second.profit
    assert second.reason_code == ReasonCode.CONSERVATIVE_ESTIMATE.value


def test_positive_max_buy_required_for_watches():
    identity = Identity(category=Category.WATCHES, confidence=ConfidenceTier.HIGH)
    price = truth(20.0, category=Category.WATCHES)
    costs = UserCosts(buy_price=1, shipping_out=0, other_costs=3)

    lenient = DecisionEngine(DecisionConfig()).decide(identity, price, costs)
    strict = DecisionEngine(DecisionConfig(require_positive_max_buy=True)).decide(identity, price, costs)

    assert lenient.verdict == Verdict.FLIP
    assert lenient.max_buy_price < 0
    assert strict.verdict == Verdict.SKIP
    assert strict.reason_code == ReasonCode.MAX_BUY_NEGATIVE.value


def test_non_positive_profit_is_never_flip(engine):
    rng = random.Random(7)
    for _ in range(500):
        anchor = round(rng.uniform(1, 600), 2)
        costs = UserCosts(
            buy_price=round(rng.uniform(0, 400), 2),
            shipping_in=round(rng.uniform(0, 20), 2),
            fee_rate=rng.choice([None, 0.0, 0.1, 0.2]),
            shipping_out=rng.choice([None, 0.0, 12.0]),
            other_costs=rng.choice([None, 0.0, 2.5]),
        )
        tier = rng.choice([ConfidenceTier.HIGH, ConfidenceTier.ESTIMATE])
        decision = engine.decide(card(tier), truth(anchor, tier), costs)

        if decision.profit <= 0:
            assert decision.verdict == Verdict.SKIP
        if decision.verdict == Verdict.FLIP:
            assert decision.profit > 0
            assert decision.margin_percent >= 25.0


def test_config_is_validated_and_frozen():
    with pytest.raises(ValueError):
        DecisionConfig(margin_threshold=1.5)
    with pytest.raises(ValueError):
        DecisionConfig(max_buy_safety_factor=0)
    with pytest.raises(ValueError):
        DecisionConfig(fixed_overhead=-1)

    config = DecisionConfig()
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.margin_threshold = 0.1


def test_config_from_settings_overrides():
    config = DecisionConfig.from_settings(margin_threshold=0.3)

    assert config.margin_threshold == 0.3
    assert config.max_buy_safety_factor == 0.8


def test_user_costs_validated():
    with pytest.raises(ValueError):
        UserCosts(buy_price=-1)
    with pytest.raises(ValueError):
        UserCosts(buy_price=1, fee_rate=1.2)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"buy_price": float("nan")},
        {"buy_price": float("inf")},
        {"buy_price": 10, "shipping_in": float("nan")},
        {"buy_price": 10, "shipping_out": float("inf")},
        {"buy_price": 10, "other_costs": float("nan")},
        {"buy_price": 10, "fee_rate": float("nan")},
    ],
)
def test_user_costs_reject_non_finite(kwargs):
    with pytest.raises(ValueError):
        UserCosts(**kwargs)


def test_config_default_category_table():
    config = DecisionConfig()

    assert config.categories is CATEGORY_PROFILES
    assert DecisionConfig().categories is config.categories
    assert config == DecisionConfig()


def test_rounding_helpers():
    assert money(2.675) == 2.68
    assert money(18.624) == 18.62
    assert percent(41.55) == 41.6
    assert percent(41.545454) == 41.5


def test_labels_and_bands():
    assert confidence_label(ConfidenceTier.HIGH, ConfidenceTier.HIGH) == "High Confidence"
    assert confidence_label(ConfidenceTier.HIGH, ConfidenceTier.ESTIMATE) == "Estimate"
    assert confidence_label(ConfidenceTier.ESTIMATE, ConfidenceTier.HIGH) == "Estimate - Verify Details"
    assert confidence_label(ConfidenceTier.HIGH, ConfidenceTier.BLOCKED) == "Rescan Required"
    assert margin_band(60) == "Well above target"
    assert margin_band(25) == "Meets target margin"
    assert margin_band(20) == "Below target margin"
    assert margin_band(1) == "Below minimum threshold"
