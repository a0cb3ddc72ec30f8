"""Price truth: a stable, cacheable price snapshot for an identity.

Turns processed comp statistics into an anchor price with guardrails:
- Category price ceiling (or 2.5x median when the category is unknown)
- Sanity clamp at the tighter of 3x buy price and 3x median
- Confidence that can never be HIGH once a guardrail fired
- Conservative discount when the variant/configuration is unconfirmed
"""

import logging
import math
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from flipcore.categories import Category, get_profile
from flipcore.config import settings
from flipcore.identity.base import ConfidenceTier, weakest_tier
from flipcore.metrics import record_price_truth
from flipcore.pricing.comp_stats import CompProcessingResult

logger = logging.getLogger(__name__)

UNKNOWN_CATEGORY_CEILING_FACTOR = 2.5
SANITY_CLAMP_FACTOR = 3.0
RANGE_FRACTION = 0.15

# HIGH confidence requirements
HIGH_MIN_COMPS = 5                  # Sold comps fed into the filter chain
HIGH_MAX_CV = 0.30
HIGH_MAX_SPREAD = 2.2
MODERATE_MIN_COMPS = 2

# Inconsistent comps warning thresholds
INCONSISTENT_CV = 0.35
INCONSISTENT_SPREAD = 2.5


class PricingSource(str, Enum):
    """Where the anchor price came from."""

    SOLD_COMPS = "sold_comps"
    ACTIVE_LISTINGS = "active_listings"
    AI_ESTIMATE = "ai_estimate"
    MANUAL = "manual"
    NONE = "none"


class ResaleConfidence(str, Enum):
    """Detailed resale confidence level behind the tier."""

    HIGH = "high"
    MODERATE = "moderate"
    LOW = "low"
    AI_ESTIMATE = "ai_estimate"


@dataclass(frozen=True)
class PriceTruth:
    """Immutable price snapshot. Refreshes replace the whole snapshot."""

    source_used: PricingSource
    anchor_price: Optional[float]           # None when no usable anchor
    pricing_confidence: ConfidenceTier
    category: Optional[Category] = None
    resale_confidence: ResaleConfidence = ResaleConfidence.AI_ESTIMATE
    price_range_low: Optional[float] = None
    price_range_high: Optional[float] = None
    comp_count: int = 0                     # Comps actually used
    sold_count: int = 0                     # Sold comps reported by the search
    raw_median: Optional[float] = None      # Median before guardrails/discount
    guarded_price: Optional[float] = None   # After ceiling/clamp, before discount
    coefficient_of_variation: Optional[float] = None
    spread_ratio: Optional[float] = None
    is_conservative_estimate: bool = False
    conservative_discount_applied: bool = False
    ceiling_applied: bool = False
    clamp_applied: bool = False
    inconsistent_comps: bool = False
    condition_bucket: Optional[str] = None
    time_window_days: int = 90
    cache_key: Optional[str] = None
    block_reasons: tuple = ()
    warnings: tuple = ()
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_anchor(self) -> bool:
        return self.anchor_price is not None and math.isfinite(self.anchor_price) and self.anchor_price > 0

    def to_dict(self) -> dict:
        """Serialize to a JSON-safe dict."""
        data = asdict(self)
        data["source_used"] = self.source_used.value
        data["pricing_confidence"] = self.pricing_confidence.value
        data["resale_confidence"] = self.resale_confidence.value
        data["category"] = self.category.value if self.category else None
        data["block_reasons"] = list(self.block_reasons)
        data["warnings"] = list(self.warnings)
        data["updated_at"] = self.updated_at.isoformat()
        if self.spread_ratio is not None and math.isinf(self.spread_ratio):
            data["spread_ratio"] = None
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PriceTruth":
        """Rebuild a snapshot from to_dict() output."""
        payload = dict(data)
        payload["source_used"] = PricingSource(payload["source_used"])
        payload["pricing_confidence"] = ConfidenceTier(payload["pricing_confidence"])
        payload["resale_confidence"] = ResaleConfidence(payload["resale_confidence"])
        payload["category"] = Category.parse(payload["category"]) if payload.get("category") else None
        payload["block_reasons"] = tuple(payload.get("block_reasons") or ())
        payload["warnings"] = tuple(payload.get("warnings") or ())
        payload["updated_at"] = datetime.fromisoformat(payload["updated_at"])
        return cls(**payload)


def price_truth_cache_key(category: Category | str, fingerprint: str, condition_bucket: Optional[str]) -> str:
    """Composite cache key: category + identity fingerprint + condition bucket."""
    cat = Category.parse(category)
    condition = (condition_bucket or "any").lower()
    return f"{cat.name.lower()}:{fingerprint.lower()}:{condition}"


def blocked_price_truth(
    reason: str,
    category: Optional[Category] = None,
    condition_bucket: Optional[str] = None,
    cache_key: Optional[str] = None,
) -> PriceTruth:
    """Price truth with no usable anchor."""
    return PriceTruth(
        source_used=PricingSource.NONE,
        anchor_price=None,
        pricing_confidence=ConfidenceTier.BLOCKED,
        category=category,
        condition_bucket=condition_bucket,
        time_window_days=0,
        cache_key=cache_key,
        block_reasons=(reason,),
    )


def price_ceiling(category: Optional[Category | str], median_price: float) -> float:
    """Category ceiling, or 2.5x the median when the category is not given."""
    if category is not None:
        return get_profile(category).price_ceiling
    if median_price > 0:
        return median_price * UNKNOWN_CATEGORY_CEILING_FACTOR
    return math.inf


def sanity_bound(median_price: float, buy_price: Optional[float]) -> float:
    """The tighter of 3x median and (when supplied) 3x buy price."""
    bounds = []
    if median_price > 0:
        bounds.append(median_price * SANITY_CLAMP_FACTOR)
    if buy_price is not None and buy_price > 0:
        bounds.append(buy_price * SANITY_CLAMP_FACTOR)
    return min(bounds) if bounds else math.inf


def _resale_confidence(
    comp_count: int,
    sample_size: int,
    cv: float,
    spread: float,
    source: PricingSource,
    ceiling_applied: bool,
    clamp_applied: bool,
) -> ResaleConfidence:
    is_sold = source == PricingSource.SOLD_COMPS

    if clamp_applied:
        return ResaleConfidence.LOW

    if (
        is_sold
        and sample_size >= HIGH_MIN_COMPS
        and cv <= HIGH_MAX_CV
        and spread <= HIGH_MAX_SPREAD
        and not ceiling_applied
    ):
        return ResaleConfidence.HIGH

    if is_sold and comp_count >= MODERATE_MIN_COMPS:
        return ResaleConfidence.MODERATE
    if comp_count >= 1 or source == PricingSource.ACTIVE_LISTINGS:
        return ResaleConfidence.LOW
    return ResaleConfidence.AI_ESTIMATE


def build_price_truth(
    stats: Optional[CompProcessingResult] = None,
    identity_confidence: ConfidenceTier = ConfidenceTier.HIGH,
    category: Optional[Category | str] = None,
    buy_price: Optional[float] = None,
    *,
    median_price: Optional[float] = None,
    source: PricingSource = PricingSource.SOLD_COMPS,
    variant_confirmed: bool = True,
    sold_count: Optional[int] = None,
    condition_bucket: Optional[str] = None,
    cache_key: Optional[str] = None,
    max_confidence: ConfidenceTier = ConfidenceTier.HIGH,
    conservative_multiplier: Optional[float] = None,
) -> PriceTruth:
    """
    Build a price truth snapshot from comp statistics.

    Args:
        stats: Processed comp statistics
        identity_confidence: Confidence tier of the identity being priced
        category: Category for ceiling lookup (None uses 2.5x median)
        buy_price: Optional buy price for the sanity clamp
        median_price: Directly supplied median for legacy paths without comps
        source: Where the comps came from
        variant_confirmed: False discounts the anchor conservatively
        sold_count: Sold comps reported by the search (defaults to comp count)
        condition_bucket: Condition the comps were queried for
        cache_key: Cache key to stamp on the snapshot
        max_confidence: Upper bound for the pricing tier (category rules)
        conservative_multiplier: Override for the conservative discount

    Returns:
        PriceTruth snapshot
    """
    cat = Category.parse(category) if category is not None else None
    cat_label = cat.value if cat else "unknown"

    if identity_confidence == ConfidenceTier.BLOCKED:
        logger.info(f"Pricing blocked for {cat_label}: identity is BLOCKED")
        truth = blocked_price_truth("IDENTITY_BLOCKED", cat, condition_bucket, cache_key)
        record_price_truth(cat_label, truth.pricing_confidence.value, False, False)
        return truth

    if stats is not None and stats.has_data:
        base_median = stats.trimmed_median
        comp_count = stats.comp_count
        sample_size = sold_count if sold_count is not None else len(stats.original_comps)
        cv = stats.coefficient_of_variation
        spread = stats.spread_ratio
        observed_low, observed_high = stats.low_comp, stats.high_comp
    elif median_price is not None and median_price > 0:
        base_median = float(median_price)
        comp_count = 0
        sample_size = 0
        cv, spread = 1.0, math.inf
        observed_low = observed_high = None
    else:
        logger.info(f"No usable comps for {cat_label}")
        truth = blocked_price_truth("NO_COMPS", cat, condition_bucket, cache_key)
        record_price_truth(cat_label, truth.pricing_confidence.value, False, False)
        return truth

    if source == PricingSource.NONE:
        source = PricingSource.AI_ESTIMATE if comp_count == 0 else PricingSource.SOLD_COMPS

    warnings = []
    expected = base_median

    ceiling = price_ceiling(cat, base_median)
    ceiling_applied = expected > ceiling
    if ceiling_applied:
        expected = ceiling
        warnings.append(f"Price capped at category ceiling ${ceiling:.2f}")

    bound = sanity_bound(base_median, buy_price)
    clamp_applied = expected > bound
    if clamp_applied:
        expected = bound
        warnings.append(f"Price clamped to sanity bound ${bound:.2f}")

    resale = _resale_confidence(comp_count, sample_size, cv, spread, source, ceiling_applied, clamp_applied)
    tier = ConfidenceTier.HIGH if resale == ResaleConfidence.HIGH else ConfidenceTier.ESTIMATE
    tier = weakest_tier(tier, max_confidence)

    inconsistent = comp_count >= 2 and (cv > INCONSISTENT_CV or spread > INCONSISTENT_SPREAD)
    if inconsistent:
        warnings.append("Comps are inconsistent - verify condition and variant")

    multiplier = conservative_multiplier or settings.conservative_multiplier
    anchor = expected
    if not variant_confirmed:
        anchor = expected * multiplier
        warnings.append(f"Variant unconfirmed - anchor discounted to {multiplier:.0%}")

    if ceiling_applied or clamp_applied or observed_low is None:
        range_low = anchor * (1 - RANGE_FRACTION)
        range_high = anchor * (1 + RANGE_FRACTION)
    else:
        range_low, range_high = observed_low, observed_high

    truth = PriceTruth(
        source_used=source,
        anchor_price=anchor,
        pricing_confidence=tier,
        category=cat,
        resale_confidence=resale,
        price_range_low=range_low,
        price_range_high=range_high,
        comp_count=comp_count,
        sold_count=sold_count if sold_count is not None else comp_count,
        raw_median=base_median,
        guarded_price=expected,
        coefficient_of_variation=cv,
        spread_ratio=spread,
        is_conservative_estimate=not variant_confirmed,
        conservative_discount_applied=not variant_confirmed,
        ceiling_applied=ceiling_applied,
        clamp_applied=clamp_applied,
        inconsistent_comps=inconsistent,
        condition_bucket=condition_bucket,
        cache_key=cache_key,
        warnings=tuple(warnings),
    )

    record_price_truth(cat_label, tier.value, ceiling_applied, clamp_applied)
    logger.info(
        f"PriceTruth ({cat_label}): ${anchor:.2f} from {comp_count} comps "
        f"[{resale.value}/{tier.value}]"
        + (" ceiling" if ceiling_applied else "")
        + (" clamp" if clamp_applied else "")
    )
    return truth


def apply_buy_price_clamp(truth: PriceTruth, buy_price: Optional[float]) -> PriceTruth:
    """
    Apply the buy-price sanity clamp to a buy-independent snapshot.

    Cached snapshots are built without a buy price, so the 3x buy bound is
    applied per request. The conservative discount, if any, is preserved.

    Args:
        truth: Snapshot built without a buy price
        buy_price: The user's buy price

    Returns:
        The same snapshot, or a clamped copy with confidence downgraded
    """
    if not truth.has_anchor or buy_price is None or buy_price <= 0:
        return truth

    bound = buy_price * SANITY_CLAMP_FACTOR
    guarded = truth.guarded_price or truth.anchor_price
    if guarded <= bound:
        return truth

    discount = truth.anchor_price / guarded
    anchor = bound * discount
    logger.info(f"Sanity clamp: ${guarded:.2f} -> ${bound:.2f} for buy price ${buy_price:.2f}")
    return replace(
        truth,
        anchor_price=anchor,
        guarded_price=bound,
        pricing_confidence=weakest_tier(truth.pricing_confidence, ConfidenceTier.ESTIMATE),
        resale_confidence=ResaleConfidence.LOW,
        clamp_applied=True,
        price_range_low=anchor * (1 - RANGE_FRACTION),
        price_range_high=anchor * (1 + RANGE_FRACTION),
        warnings=truth.warnings + (f"Price clamped to sanity bound ${bound:.2f}",),
    )
