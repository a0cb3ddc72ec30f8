"""Comp search -> filter -> statistics -> price truth, with caching.

Shared by the category adapters. Collaborator failures become a
pricing-BLOCKED snapshot (or a stale cached one) instead of an exception.
"""

import logging
from dataclasses import dataclass, replace
from typing import Callable, List, Optional

from flipcore.categories import Category
from flipcore.config import settings
from flipcore.identity.base import ConfidenceTier, Identity
from flipcore.pricing.cache import PriceTruthCache
from flipcore.pricing.comp_filter import CompFilterResult, filter_comps
from flipcore.pricing.comp_stats import CompProcessingResult, process_comps
from flipcore.pricing.price_truth import (
    PriceTruth,
    blocked_price_truth,
    build_price_truth,
    price_truth_cache_key,
)
from flipcore.services.comps import CompSearch, CompSearchResult, CompSource
from flipcore.services.errors import ServiceError
from flipcore.services.retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)

COMP_SEARCH_SERVICE = "ebay"


@dataclass
class PricingRequest:
    """Everything needed to price one identity."""

    identity: Identity
    query: str
    negative_keywords: List[str]
    condition_bucket: Optional[str] = None
    # Caps the pricing tier from the number of relevant sold comps
    max_confidence: Callable[[int], ConfidenceTier] = lambda sold: ConfidenceTier.HIGH


@dataclass
class CompPricing:
    """Intermediate comp data, kept for diagnostics."""

    search: CompSearchResult
    filtered: CompFilterResult
    stats: CompProcessingResult

    @property
    def sold_count(self) -> int:
        if self.search.source != CompSource.SOLD:
            return 0
        return len(self.filtered.kept)


async def search_comps(
    comp_search: CompSearch,
    request: PricingRequest,
    retry_policy: Optional[RetryPolicy] = None,
) -> CompPricing:
    """
    Run the comp search (with retries) and filter/process the results.

    Raises:
        ServiceError: The search failed after retries
    """
    identity = request.identity
    search = await with_retry(
        lambda: comp_search(request.query, request.negative_keywords, request.condition_bucket),
        service=COMP_SEARCH_SERVICE,
        policy=retry_policy,
    )
    filtered = filter_comps(search.sales, request.query, identity.category, request.condition_bucket)
    stats = process_comps(filtered.prices)
    logger.info(
        f"Comps for '{request.query}': {len(search.sales)} found, {len(filtered.kept)} relevant, "
        f"{stats.comp_count} after outlier rejection ({search.source.value})"
    )
    return CompPricing(search=search, filtered=filtered, stats=stats)


def price_from_comps(comps: CompPricing, request: PricingRequest, cache_key: Optional[str]) -> PriceTruth:
    """Build a buy-independent price truth from processed comps."""
    identity = request.identity
    max_confidence = request.max_confidence(comps.sold_count)
    if max_confidence == ConfidenceTier.BLOCKED and comps.stats.has_data:
        return blocked_price_truth("INSUFFICIENT_SOLD_COMPS", identity.category, request.condition_bucket, cache_key)
    return build_price_truth(
        comps.stats,
        identity.confidence,
        identity.category,
        source=comps.search.source.pricing_source,
        variant_confirmed=identity.variant_confirmed,
        sold_count=comps.sold_count,
        condition_bucket=request.condition_bucket,
        cache_key=cache_key,
        max_confidence=max_confidence,
    )


async def fetch_price_truth(
    request: PricingRequest,
    comp_search: CompSearch,
    cache: PriceTruthCache,
    retry_policy: Optional[RetryPolicy] = None,
    stale_on_error: Optional[bool] = None,
) -> PriceTruth:
    """
    Price an identity: cache first, then a fresh comp search.

    Args:
        request: Identity plus query parameters
        comp_search: Comparable-sale search collaborator
        cache: Price truth cache
        retry_policy: Override the comp search retry policy
        stale_on_error: Serve an expired snapshot when the search fails

    Returns:
        PriceTruth (blocked when there is no usable market data)
    """
    identity = request.identity
    category: Category = identity.category

    if identity.is_blocked:
        return build_price_truth(identity_confidence=ConfidenceTier.BLOCKED, category=category)

    key = price_truth_cache_key(category, identity.price_fingerprint, request.condition_bucket)
    cached = await cache.get(key)
    if cached is not None:
        return cached

    try:
        comps = await search_comps(comp_search, request, retry_policy)
    except ServiceError as e:
        logger.warning(f"Comp search failed for {key}: {e}")
        use_stale = settings.stale_on_error if stale_on_error is None else stale_on_error
        if use_stale:
            stale = await cache.get_stale(key)
            if stale is not None:
                return replace(
                    stale,
                    warnings=stale.warnings + (f"Showing cached prices: {e.user_message}",),
                )
        return blocked_price_truth(
            f"COMP_SEARCH_FAILED: {e.user_message}",
            category,
            request.condition_bucket,
            key,
        )

    truth = price_from_comps(comps, request, key)
    await cache.set(truth)
    return truth
