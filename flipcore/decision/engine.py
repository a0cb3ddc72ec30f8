"""Margin-based decision engine.

The single place where an identity, a price truth and user costs are
combined into a verdict. Gates run strictly in order and short-circuit:

1. Identity BLOCKED            -> BLOCKED / NOT_ENOUGH_INFO, no money fields
2. No positive anchor price    -> BLOCKED / NOT_ENOUGH_INFO, no money fields
3. Cost breakdown, profit, margin, ROI and max justified buy price
4. Profit <= 0                 -> SKIP (nothing overrides this)
5. Margin below threshold      -> SKIP
6. Otherwise                   -> FLIP ("likely flip" for ESTIMATE identities)

Money is rounded to cents and percentages to one decimal only when the
decision is assembled.
"""

import logging
import math
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import List, Optional

from flipcore.categories import CATEGORY_PROFILES, BlockedVerdict, Category, CategoryTable
from flipcore.config import Settings, settings
from flipcore.identity.base import ConfidenceTier, Identity, weakest_tier
from flipcore.metrics import record_decision
from flipcore.pricing.price_truth import PriceTruth

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
TENTH = Decimal("0.1")


class Verdict(str, Enum):
    FLIP = "FLIP"
    SKIP = "SKIP"
    BLOCKED = "BLOCKED"
    NOT_ENOUGH_INFO = "NOT_ENOUGH_INFO"


class ReasonCode(str, Enum):
    """Why a decision was not a plain FLIP."""

    IDENTITY_BLOCKED = "IDENTITY_BLOCKED"
    NO_COMPS = "NO_COMPS"
    NEGATIVE_PROFIT = "NEGATIVE_PROFIT"
    LOW_MARGIN = "LOW_MARGIN"
    MAX_BUY_NEGATIVE = "MAX_BUY_NEGATIVE"
    CONSERVATIVE_ESTIMATE = "CONSERVATIVE_ESTIMATE"


@dataclass(frozen=True)
class DecisionConfig:
    """Immutable decision constants, injected into the engine."""

    margin_threshold: float = 0.25          # Minimum margin for FLIP
    min_profit_floor: float = 15.0          # Dollar floor for target profit
    max_buy_safety_factor: float = 0.8      # Reduction applied to max buy
    conservative_multiplier: float = 0.85   # Anchor discount when variant unconfirmed
    fixed_overhead: float = 5.0             # Packaging, labels, etc.
    default_fee_rate: float = 0.13
    require_positive_max_buy: bool = False  # SKIP when max buy <= 0 (watches)
    categories: CategoryTable = field(default_factory=lambda: CATEGORY_PROFILES, compare=False)

    def __post_init__(self):
        if not 0 < self.margin_threshold < 1:
            raise ValueError(f"margin_threshold must be in (0, 1), got {self.margin_threshold}")
        if not 0 < self.max_buy_safety_factor <= 1:
            raise ValueError(f"max_buy_safety_factor must be in (0, 1], got {self.max_buy_safety_factor}")
        if not 0 < self.conservative_multiplier <= 1:
            raise ValueError(f"conservative_multiplier must be in (0, 1], got {self.conservative_multiplier}")
        if not 0 <= self.default_fee_rate < 1:
            raise ValueError(f"default_fee_rate must be in [0, 1), got {self.default_fee_rate}")
        if self.min_profit_floor < 0 or self.fixed_overhead < 0:
            raise ValueError("min_profit_floor and fixed_overhead must be non-negative")

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None, **overrides) -> "DecisionConfig":
        """Build a config from application settings."""
        s = source or settings
        values = dict(
            margin_threshold=s.margin_threshold,
            min_profit_floor=s.min_profit_floor,
            max_buy_safety_factor=s.max_buy_safety_factor,
            conservative_multiplier=s.conservative_multiplier,
            fixed_overhead=s.fixed_overhead,
            default_fee_rate=s.default_fee_rate,
        )
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True)
class UserCosts:
    """User-specific costs for one buy decision."""

    buy_price: float
    shipping_in: float = 0.0
    fee_rate: Optional[float] = None        # Overrides the category fee rate
    shipping_out: Optional[float] = None    # Overrides the category outbound shipping
    other_costs: Optional[float] = None     # Overrides the fixed overhead

    def __post_init__(self):
        for name in ("buy_price", "shipping_in", "shipping_out", "other_costs"):
            value = getattr(self, name)
            if value is not None and not (math.isfinite(value) and value >= 0):
                raise ValueError(f"{name} must be a finite non-negative amount, got {value}")
        if self.fee_rate is not None and not (math.isfinite(self.fee_rate) and 0 <= self.fee_rate < 1):
            raise ValueError(f"fee_rate must be in [0, 1), got {self.fee_rate}")


@dataclass(frozen=True)
class CostBreakdown:
    buy_price: float
    shipping_in: float
    shipping_out: float
    fee_rate: float
    platform_fees: float
    fixed_overhead: float
    total_costs: float


@dataclass(frozen=True)
class ComputedDecision:
    """Decision shown unmodified on every surface. Never cached."""

    verdict: Verdict
    label: str
    category: Category
    identity_confidence: ConfidenceTier
    pricing_confidence: ConfidenceTier
    confidence_label: str
    is_likely_flip: bool = False
    expected_sell_price: Optional[float] = None
    costs: Optional[CostBreakdown] = None
    profit: Optional[float] = None
    margin_percent: Optional[float] = None
    roi_percent: Optional[float] = None
    max_buy_price: Optional[float] = None
    target_profit: Optional[float] = None
    margin_band: Optional[str] = None
    reason_code: Optional[str] = None
    reason: Optional[str] = None
    gates: tuple = ()
    warnings: tuple = ()

    @property
    def is_flip(self) -> bool:
        return self.verdict == Verdict.FLIP

    @property
    def is_blocked(self) -> bool:
        return self.verdict in (Verdict.BLOCKED, Verdict.NOT_ENOUGH_INFO)

    @property
    def confidence(self) -> ConfidenceTier:
        return weakest_tier(self.identity_confidence, self.pricing_confidence)

    def to_dict(self) -> dict:
        costs = self.costs
        return {
            "verdict": self.verdict.value,
            "label": self.label,
            "category": self.category.value,
            "identity_confidence": self.identity_confidence.value,
            "pricing_confidence": self.pricing_confidence.value,
            "confidence_label": self.confidence_label,
            "is_likely_flip": self.is_likely_flip,
            "expected_sell_price": self.expected_sell_price,
            "platform_fees": costs.platform_fees if costs else None,
            "total_costs": costs.total_costs if costs else None,
            "profit": self.profit,
            "margin_percent": self.margin_percent,
            "roi_percent": self.roi_percent,
            "max_buy_price": self.max_buy_price,
            "reason_code": self.reason_code,
            "reason": self.reason,
            "gates": list(self.gates),
            "warnings": list(self.warnings),
        }


def money(value: float) -> float:
    """Round a currency amount to cents (half up)."""
    return float(Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP))


def percent(value: float) -> float:
    """Round a percentage to one decimal (half up)."""
    return float(Decimal(str(value)).quantize(TENTH, rounding=ROUND_HALF_UP))


def confidence_label(identity: ConfidenceTier, pricing: ConfidenceTier) -> str:
    """User-facing confidence label for an identity/pricing pair."""
    if ConfidenceTier.BLOCKED in (identity, pricing):
        return "Rescan Required"
    if identity == ConfidenceTier.ESTIMATE:
        return "Estimate - Verify Details"
    if pricing == ConfidenceTier.ESTIMATE:
        return "Estimate"
    return "High Confidence"


def margin_band(margin_percent: float, target_percent: float = 25.0) -> str:
    """Describe a margin relative to the target margin."""
    ratio = margin_percent / target_percent if target_percent else 0.0
    if ratio >= 2:
        return "Well above target"
    if ratio >= 1.4:
        return "Above target margin"
    if ratio >= 1:
        return "Meets target margin"
    if ratio >= 0.6:
        return "Below target margin"
    if ratio >= 0.2:
        return "Minimal margin"
    return "Below minimum threshold"


class DecisionEngine:
    """Pure gate evaluation over an injected DecisionConfig."""

    def __init__(self, config: Optional[DecisionConfig] = None):
        self.config = config or DecisionConfig()

    def _blocked(
        self,
        identity: Identity,
        price_truth: PriceTruth,
        reason_code: str,
        reason: str,
        gates: List[str],
        warnings: List[str],
    ) -> ComputedDecision:
        profile = self.config.categories[identity.category]
        verdict = Verdict(profile.blocked_verdict.value)
        label = "Not Enough Info" if profile.blocked_verdict == BlockedVerdict.NOT_ENOUGH_INFO else "Blocked"
        return ComputedDecision(
            verdict=verdict,
            label=label,
            category=identity.category,
            identity_confidence=identity.confidence,
            pricing_confidence=price_truth.pricing_confidence,
            confidence_label="Rescan Required",
            reason_code=reason_code,
            reason=reason,
            gates=tuple(gates),
            warnings=tuple(warnings),
        )

    def decide(self, identity: Identity, price_truth: PriceTruth, costs: UserCosts) -> ComputedDecision:
        """
        Evaluate the decision gates.

        Args:
            identity: Resolved identity (any category)
            price_truth: Price snapshot for the identity
            costs: User-supplied buy price and cost overrides

        Returns:
            ComputedDecision with verdict, cost breakdown and gate trace
        """
        decision = self._evaluate(identity, price_truth, costs)
        record_decision(identity.category.value, decision.verdict.value)
        logger.info(
            f"Decision ({identity.category.value}): {decision.verdict.value}"
            + (f" [{decision.reason_code}]" if decision.reason_code else "")
            + (f" profit=${decision.profit:.2f}" if decision.profit is not None else "")
        )
        return decision

    def _evaluate(self, identity: Identity, price_truth: PriceTruth, costs: UserCosts) -> ComputedDecision:
        config = self.config
        profile = config.categories[identity.category]
        gates: List[str] = []
        warnings: List[str] = list(price_truth.warnings)

        # Gate 1: identity
        if identity.is_blocked:
            code = identity.block_code or ReasonCode.IDENTITY_BLOCKED.value
            reason = identity.block_reason or "Item could not be identified"
            gates.append(f"Gate 1 FAILED: identity BLOCKED ({code})")
            return self._blocked(identity, price_truth, code, reason, gates, warnings)
        gates.append(f"Gate 1 PASSED: identity {identity.confidence.value}")

        # Gate 2: pricing data
        if not price_truth.has_anchor:
            reason = "No pricing data"
            if price_truth.block_reasons:
                reason = f"No pricing data ({', '.join(price_truth.block_reasons)})"
            gates.append("Gate 2 FAILED: no positive anchor price")
            return self._blocked(identity, price_truth, ReasonCode.NO_COMPS.value, reason, gates, warnings)
        gates.append(f"Gate 2 PASSED: anchor ${price_truth.anchor_price:.2f} ({price_truth.pricing_confidence.value})")

        # Gate 3: economics
        expected = price_truth.anchor_price
        if price_truth.is_conservative_estimate:
            if not price_truth.conservative_discount_applied:
                expected = expected * config.conservative_multiplier
            warnings.append("CONSERVATIVE_ESTIMATE: variant unconfirmed, sell price discounted")

        fee_rate = costs.fee_rate if costs.fee_rate is not None else profile.fee_rate
        shipping_out = costs.shipping_out if costs.shipping_out is not None else profile.outbound_shipping
        overhead = costs.other_costs if costs.other_costs is not None else config.fixed_overhead

        fees = expected * fee_rate
        total_costs = costs.buy_price + costs.shipping_in + shipping_out + fees + overhead
        profit = expected - total_costs
        margin = profit / expected
        roi = profit / total_costs if total_costs > 0 else 0.0
        target_profit = max(config.min_profit_floor, config.margin_threshold * expected)
        max_buy = (
            expected - fees - costs.shipping_in - shipping_out - overhead - target_profit
        ) * config.max_buy_safety_factor

        breakdown = CostBreakdown(
            buy_price=money(costs.buy_price),
            shipping_in=money(costs.shipping_in),
            shipping_out=money(shipping_out),
            fee_rate=fee_rate,
            platform_fees=money(fees),
            fixed_overhead=money(overhead),
            total_costs=money(total_costs),
        )
        rounded_profit = money(profit)
        margin_pct = percent(margin * 100)
        gates.append(
            f"Gate 3: sell ${expected:.2f}, fees ${fees:.2f}, costs ${total_costs:.2f}, "
            f"profit ${profit:.2f}, margin {margin * 100:.1f}%, max buy ${max_buy:.2f}"
        )
        if max_buy <= 0:
            warnings.append("Comps do not support any profitable buy price")

        identity_tier = identity.confidence
        pricing_tier = price_truth.pricing_confidence
        common = dict(
            category=identity.category,
            identity_confidence=identity_tier,
            pricing_confidence=pricing_tier,
            confidence_label=confidence_label(identity_tier, pricing_tier),
            expected_sell_price=money(expected),
            costs=breakdown,
            profit=rounded_profit,
            margin_percent=margin_pct,
            roi_percent=percent(roi * 100),
            max_buy_price=money(max_buy),
            target_profit=money(target_profit),
            margin_band=margin_band(margin * 100, config.margin_threshold * 100),
        )

        # Gate 4: profit (absolute)
        if profit <= 0 or rounded_profit <= 0:
            gates.append(f"Gate 4 FAILED: net profit ${profit:.2f} is not positive")
            return ComputedDecision(
                verdict=Verdict.SKIP,
                label="Skip It",
                reason_code=ReasonCode.NEGATIVE_PROFIT.value,
                reason="Costs exceed expected sale price",
                gates=tuple(gates),
                warnings=tuple(warnings),
                **common,
            )
        gates.append(f"Gate 4 PASSED: net profit ${profit:.2f}")

        # Gate 5: margin
        if margin < config.margin_threshold:
            gates.append(
                f"Gate 5 FAILED: margin {margin * 100:.1f}% below {config.margin_threshold * 100:.0f}% threshold"
            )
            return ComputedDecision(
                verdict=Verdict.SKIP,
                label="Skip It",
                reason_code=ReasonCode.LOW_MARGIN.value,
                reason=f"Margin {margin_pct}% is below {config.margin_threshold * 100:.0f}%",
                gates=tuple(gates),
                warnings=tuple(warnings),
                **common,
            )
        gates.append(f"Gate 5 PASSED: margin {margin * 100:.1f}%")

        if config.require_positive_max_buy and max_buy <= 0:
            gates.append("Gate 6 FAILED: max buy price is not positive")
            return ComputedDecision(
                verdict=Verdict.SKIP,
                label="Skip It",
                reason_code=ReasonCode.MAX_BUY_NEGATIVE.value,
                reason="No buy price supports the target profit",
                gates=tuple(gates),
                warnings=tuple(warnings),
                **common,
            )

        likely = identity_tier == ConfidenceTier.ESTIMATE
        gates.append("All gates passed -> " + ("LIKELY FLIP" if likely else "FLIP"))
        return ComputedDecision(
            verdict=Verdict.FLIP,
            label="Likely Flip" if likely else "Flip It!",
            is_likely_flip=likely,
            reason_code=ReasonCode.CONSERVATIVE_ESTIMATE.value if price_truth.is_conservative_estimate else None,
            gates=tuple(gates),
            warnings=tuple(warnings),
            **common,
        )


decision_engine = DecisionEngine(DecisionConfig.from_settings())
