"""Marketplace search queries for comp lookups."""

import logging
from typing import List, Optional

from flipcore.identity.cards import CardIdentity, VariantFinish
from flipcore.identity.watches import WatchCondition, WatchIdentity
from flipcore.pricing.comp_filter import build_optimized_query

logger = logging.getLogger(__name__)

NEGATIVE_KEYWORDS_DEFAULT = [
    "parts", "broken", "case only", "band only", "bezel", "dial only",
    "crown", "crystal", "movement only", "repair", "not working",
]
NEW_EXCLUDE_KEYWORDS = ["used", "pre-owned", "preowned", "worn", "vintage"]
USED_EXCLUDE_KEYWORDS = ["new", "unworn", "bnib", "sealed", "nwt"]

# Card listings that never price a single raw/graded card
CARD_NEGATIVE_KEYWORDS = ["lot", "custom", "reprint", "digital"]


def build_negative_keywords(condition_bucket: Optional[WatchCondition | str]) -> List[str]:
    """
    Keywords to exclude from a watch comp search.

    Parts searches exclude nothing; new and used searches exclude the
    opposite condition.
    """
    bucket = WatchCondition(condition_bucket.upper()) if isinstance(condition_bucket, str) else condition_bucket
    if bucket == WatchCondition.PARTS:
        return []

    negatives = list(NEGATIVE_KEYWORDS_DEFAULT)
    if bucket == WatchCondition.NEW:
        negatives.extend(NEW_EXCLUDE_KEYWORDS)
    elif bucket == WatchCondition.USED:
        negatives.extend(USED_EXCLUDE_KEYWORDS)
    return negatives


def build_watch_query(identity: WatchIdentity) -> str:
    """
    Search query for a watch: brand, model, then the visual details that
    move price (dial color, bezel, materials).
    """
    parts: List[str] = [identity.brand or ""]
    if identity.model_number:
        parts.append(identity.model_number)
    elif identity.model_name:
        parts.append(identity.model_name)

    if identity.collection and not any(identity.collection.lower() in p.lower() for p in parts):
        parts.append(identity.collection)

    if identity.dial_color:
        dial = f"{identity.dial_color} dial"
        if not any(dial in p.lower() for p in parts):
            parts.append(dial)

    if identity.bezel_type and not any(identity.bezel_type in p.lower() for p in parts):
        parts.append(identity.bezel_type)

    if identity.materials and identity.materials.lower() != "unknown":
        if not any(identity.materials.lower() in p.lower() for p in parts):
            parts.append(identity.materials)

    query = " ".join(p for p in parts if p)
    logger.debug(f"Watch comp query: '{query}'")
    return query


def build_card_query(identity: CardIdentity) -> str:
    """Search query for a card: year, brand, set, name, number, parallel, grade."""
    number = f"#{identity.card_number}" if identity.card_number else None
    variant = None
    if identity.variant_confirmed and identity.variant_finish not in (
        VariantFinish.BASE,
        VariantFinish.UNKNOWN,
        VariantFinish.GRADED,
    ):
        variant = identity.variant_label
    if identity.print_run:
        variant = f"{variant or ''} /{identity.print_run}".strip()
    grade = f"{identity.grading_company} {identity.grade}" if identity.is_graded else None
    name = identity.name if identity.name != "Unknown" else None

    query = build_optimized_query([
        str(identity.year) if identity.year else None,
        identity.brand,
        identity.set_name,
        name,
        number,
        variant,
        grade,
    ])
    logger.debug(f"Card comp query: '{query}'")
    return query
