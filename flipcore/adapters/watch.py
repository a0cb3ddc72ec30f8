"""Watch adapter: evidence -> identity -> price truth -> decision.

Watches are priced from condition-separated sold comps. Pricing
confidence follows sold volume (8+ for HIGH, 3+ for ESTIMATE) and the
decision additionally requires a positive max buy price.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from flipcore.adapters.pricing import PricingRequest, fetch_price_truth
from flipcore.adapters.summary import DisplaySummary, build_summary, join_words
from flipcore.catalog.watches import LibraryCandidate, WatchLibrary, watch_library
from flipcore.categories import Category
from flipcore.decision.engine import ComputedDecision, DecisionEngine, UserCosts, decision_engine
from flipcore.identity.evidence import Evidence
from flipcore.logging_config import get_logger
from flipcore.identity.watches import WatchIdentity, determine_pricing_confidence, resolve_watch_identity
from flipcore.metrics import record_analysis
from flipcore.pricing.cache import PriceTruthCache, price_cache
from flipcore.pricing.price_truth import PriceTruth, apply_buy_price_clamp
from flipcore.pricing.queries import build_negative_keywords, build_watch_query
from flipcore.services.comps import CompSearch
from flipcore.services.retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WatchAnalysisResult:
    """Identity + price truth + decision + display summary for one watch scan."""

    identity: WatchIdentity
    price_truth: PriceTruth
    decision: ComputedDecision
    summary: DisplaySummary
    query: Optional[str] = None
    negative_keywords: tuple = ()
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def candidates(self) -> tuple:
        """Families to offer when the user must pick a model."""
        return self.identity.candidates

    def to_dict(self) -> dict:
        return {
            "identity": {
                "display_name": self.identity.display_name,
                "confidence": self.identity.confidence.value,
                "block_code": self.identity.block_code,
                "needs_model_selection": self.identity.needs_model_selection,
                "candidates": [
                    {"key": f"{c.family.brand.name.lower()}:{c.family.id}", "name": c.family.display_name, "score": c.score}
                    for c in self.identity.candidates
                ],
                "resolution_path": list(self.identity.resolution_path),
            },
            "price_truth": self.price_truth.to_dict(),
            "decision": self.decision.to_dict(),
            "summary": self.summary.to_dict(),
            "query": self.query,
            "analyzed_at": self.analyzed_at.isoformat(),
        }


def watch_engine(base: Optional[DecisionEngine] = None) -> DecisionEngine:
    """Engine with the watch max-buy gate switched on."""
    base = base or decision_engine
    if base.config.require_positive_max_buy:
        return base
    return DecisionEngine(replace(base.config, require_positive_max_buy=True))


def watch_subheadline(identity: WatchIdentity) -> str:
    if identity.needs_model_selection:
        return f"{identity.brand} - choose from {len(identity.candidates)} models"
    dial = f"{identity.dial_color} dial" if identity.dial_color else None
    return join_words(identity.brand, identity.model_name, identity.model_number, dial) or "Unidentified watch"


async def analyze_watch(
    evidence: Iterable[Evidence],
    costs: UserCosts,
    comp_search: CompSearch,
    *,
    library: WatchLibrary = watch_library,
    library_candidates: Optional[Sequence[LibraryCandidate]] = None,
    selected_family: Optional[str] = None,
    condition_hint: Optional[str] = None,
    completeness_hint: Optional[str] = None,
    buyer_paid_shipping: bool = True,
    cache: Optional[PriceTruthCache] = None,
    engine: Optional[DecisionEngine] = None,
    retry_policy: Optional[RetryPolicy] = None,
    scan_id: Optional[str] = None,
) -> WatchAnalysisResult:
    """
    Analyze a scanned watch.

    Args:
        evidence: Scan evidence (vision extraction, manual entry...)
        costs: User buy price and cost overrides
        comp_search: Comparable-sale search collaborator
        library: Watch library
        library_candidates: Scored families from a visual matcher
        selected_family: "brand:family" key picked by the user
        condition_hint: Condition text (new / used / parts...)
        completeness_hint: Box/papers text
        buyer_paid_shipping: Buyer pays shipping, so seller outbound shipping is zero
        cache: Price truth cache (defaults to the global cache)
        engine: Decision engine (the max-buy gate is always enabled)
        retry_policy: Override the comp search retry policy
        scan_id: Caller's scan identifier, attached to log records

    Returns:
        WatchAnalysisResult
    """
    started = time.perf_counter()
    log = get_logger(__name__, category=Category.WATCHES.value, scan_id=scan_id)
    cache = cache or price_cache
    engine = watch_engine(engine)

    identity = resolve_watch_identity(
        evidence,
        library,
        library_candidates=library_candidates,
        selected_family=selected_family,
        condition_hint=condition_hint,
        completeness_hint=completeness_hint,
    )
    log.debug(f"Watch identity {identity.display_name}: {identity.confidence.value}")

    query = None
    negatives: list = []
    if identity.is_blocked:
        truth = await fetch_price_truth(PricingRequest(identity, "", []), comp_search, cache, retry_policy)
    else:
        query = build_watch_query(identity)
        negatives = build_negative_keywords(identity.condition)
        request = PricingRequest(
            identity=identity,
            query=query,
            negative_keywords=negatives,
            condition_bucket=identity.condition.value,
            max_confidence=lambda sold: determine_pricing_confidence(sold, identity.confidence),
        )
        truth = await fetch_price_truth(request, comp_search, cache, retry_policy)

    if buyer_paid_shipping:
        costs = replace(costs, shipping_out=0.0)

    truth = apply_buy_price_clamp(truth, costs.buy_price)
    decision = engine.decide(identity, truth, costs)
    summary = build_summary(decision, watch_subheadline(identity), item_noun="Watch")

    record_analysis(Category.WATCHES.value, time.perf_counter() - started)
    log.info(f"Watch analysis: {summary.headline} ({summary.subheadline})")
    return WatchAnalysisResult(
        identity=identity,
        price_truth=truth,
        decision=decision,
        summary=summary,
        query=query,
        negative_keywords=tuple(negatives),
    )
