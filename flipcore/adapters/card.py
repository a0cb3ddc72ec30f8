"""Trading card adapter: evidence -> identity -> price truth -> decision.

Single entry point `analyze_card`. It always returns a complete
CardAnalysisResult; collaborator failures show up as a blocked price
truth with a reason, never as an exception.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Iterable, Optional

from flipcore.adapters.pricing import PricingRequest, fetch_price_truth
from flipcore.adapters.summary import DisplaySummary, build_summary, join_words
from flipcore.catalog.cards import CardChecklist, card_checklist
from flipcore.categories import Category
from flipcore.decision.engine import ComputedDecision, DecisionEngine, UserCosts, decision_engine
from flipcore.identity.base import ConfidenceTier
from flipcore.identity.cards import CardIdentity, resolve_card_identity
from flipcore.identity.evidence import Evidence
from flipcore.logging_config import get_logger
from flipcore.metrics import record_analysis
from flipcore.pricing.cache import PriceTruthCache, price_cache
from flipcore.pricing.price_truth import (
    PriceTruth,
    PricingSource,
    apply_buy_price_clamp,
    build_price_truth,
    price_truth_cache_key,
)
from flipcore.pricing.queries import CARD_NEGATIVE_KEYWORDS, build_card_query
from flipcore.services.cert_registry import CertLookupResult, CertRegistryClient, grade_premium
from flipcore.services.comps import CompSearch
from flipcore.services.retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CardAnalysisResult:
    """Identity + price truth + decision + display summary for one card scan."""

    identity: CardIdentity
    price_truth: PriceTruth
    decision: ComputedDecision
    summary: DisplaySummary
    cert: Optional[CertLookupResult] = None
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "identity": {
                "display_name": self.identity.display_name,
                "confidence": self.identity.confidence.value,
                "block_reason": self.identity.block_reason,
                "resolution_path": list(self.identity.resolution_path),
            },
            "price_truth": self.price_truth.to_dict(),
            "decision": self.decision.to_dict(),
            "summary": self.summary.to_dict(),
            "analyzed_at": self.analyzed_at.isoformat(),
        }


def card_subheadline(identity: CardIdentity) -> str:
    """e.g. "2020 Prizm Silver" or "2020 Prizm Joe Burrow"."""
    detail = identity.variant_label or identity.name
    return join_words(identity.year, identity.set_name, detail) or "Unidentified card"


def card_condition_bucket(identity: CardIdentity) -> str:
    return "graded" if identity.is_graded else "raw"


async def apply_cert(identity: CardIdentity, cert_client: CertRegistryClient) -> tuple[CardIdentity, CertLookupResult]:
    """Verify the slab cert and take the registry's grade when it succeeds."""
    result = await cert_client.lookup(identity.cert_number)
    if not result.success:
        note = f"Cert {identity.cert_number} not verified ({result.error_code.value})"
        return replace(identity, resolution_path=identity.resolution_path + (note,)), result

    record = result.record
    note = f"Cert {record.cert_number} verified: {record.grade} {record.grade_label}"
    return replace(
        identity,
        grading_company=identity.grading_company or "PSA",
        grade=record.grade or identity.grade,
        resolution_path=identity.resolution_path + (note,),
    ), result


async def _price_from_raw_comps(
    identity: CardIdentity,
    comp_search: CompSearch,
    cache: PriceTruthCache,
    retry_policy: Optional[RetryPolicy],
) -> Optional[PriceTruth]:
    """Estimate a graded price from raw comps times the grade premium."""
    raw = replace(identity, grading_company=None, grade=None)
    raw_truth = await fetch_price_truth(
        PricingRequest(
            identity=raw,
            query=build_card_query(raw),
            negative_keywords=CARD_NEGATIVE_KEYWORDS,
            condition_bucket=card_condition_bucket(raw),
        ),
        comp_search,
        cache,
        retry_policy,
    )
    if not raw_truth.has_anchor:
        return None

    premium = grade_premium(identity.grade)
    truth = build_price_truth(
        identity_confidence=identity.confidence,
        category=Category.TRADING_CARDS,
        median_price=raw_truth.raw_median * premium,
        source=PricingSource.SOLD_COMPS,
        variant_confirmed=identity.variant_confirmed,
        condition_bucket=card_condition_bucket(identity),
        cache_key=price_truth_cache_key(Category.TRADING_CARDS, identity.price_fingerprint, card_condition_bucket(identity)),
        max_confidence=ConfidenceTier.ESTIMATE,
    )
    logger.info(f"Graded estimate for {identity.display_name}: raw ${raw_truth.raw_median:.2f} x{premium}")
    return replace(
        truth,
        warnings=truth.warnings + (f"No graded comps - estimated from raw comps x{premium} grade premium",),
    )


async def analyze_card(
    evidence: Iterable[Evidence],
    costs: UserCosts,
    comp_search: CompSearch,
    *,
    checklist: CardChecklist = card_checklist,
    cert_client: Optional[CertRegistryClient] = None,
    cache: Optional[PriceTruthCache] = None,
    engine: Optional[DecisionEngine] = None,
    retry_policy: Optional[RetryPolicy] = None,
    scan_id: Optional[str] = None,
) -> CardAnalysisResult:
    """
    Analyze a scanned trading card.

    Args:
        evidence: Scan evidence (front/back/vision/manual)
        costs: User buy price and cost overrides
        comp_search: Comparable-sale search collaborator
        checklist: Card checklist
        cert_client: Cert registry client for graded slabs
        cache: Price truth cache (defaults to the global cache)
        engine: Decision engine (defaults to the global engine)
        retry_policy: Override the comp search retry policy
        scan_id: Caller's scan identifier, attached to log records

    Returns:
        CardAnalysisResult
    """
    started = time.perf_counter()
    log = get_logger(__name__, category=Category.TRADING_CARDS.value, scan_id=scan_id)
    cache = cache or price_cache
    engine = engine or decision_engine

    identity = resolve_card_identity(evidence, checklist)
    log.debug(f"Card identity {identity.display_name}: {identity.confidence.value}")

    cert_result = None
    if cert_client is not None and identity.cert_number and not identity.is_blocked:
        identity, cert_result = await apply_cert(identity, cert_client)

    request = PricingRequest(
        identity=identity,
        query=build_card_query(identity),
        negative_keywords=CARD_NEGATIVE_KEYWORDS,
        condition_bucket=card_condition_bucket(identity),
    )
    truth = await fetch_price_truth(request, comp_search, cache, retry_policy)

    if identity.is_graded and not identity.is_blocked and "NO_COMPS" in truth.block_reasons:
        estimated = await _price_from_raw_comps(identity, comp_search, cache, retry_policy)
        if estimated is not None:
            truth = estimated

    truth = apply_buy_price_clamp(truth, costs.buy_price)
    decision = engine.decide(identity, truth, costs)
    summary = build_summary(decision, card_subheadline(identity), item_noun="Card")

    record_analysis(Category.TRADING_CARDS.value, time.perf_counter() - started)
    log.info(f"Card analysis: {summary.headline} ({summary.subheadline})")
    return CardAnalysisResult(
        identity=identity,
        price_truth=truth,
        decision=decision,
        summary=summary,
        cert=cert_result,
    )
