"""Watch identity resolution.

Resolution order:
1. Brand from the 15-brand library (aliases included). No brand -> BLOCKED.
2. Model from (in order) a user-selected family, a reference number
   prefix, or scored family candidates (text or visual matcher).
3. Several plausible families -> BLOCKED until the user picks one.

A brand on its own is never priceable. Dial color, bezel and materials
refine the comp query but never block identity.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

from flipcore.catalog.watches import (
    ConfigurationGroup,
    LibraryCandidate,
    WatchBrand,
    WatchFamily,
    WatchLibrary,
    watch_library,
)
from flipcore.categories import Category
from flipcore.identity.base import CatalogMatch, ConfidenceTier, Identity, MatchType
from flipcore.identity.evidence import Evidence, MergedEvidence, merge_evidence
from flipcore.metrics import record_identity

logger = logging.getLogger(__name__)

CANDIDATE_THRESHOLD = 0.55
CONFIRMED_SCORE = 0.85
MIN_SELECTION_CANDIDATES = 2
MAX_SELECTION_CANDIDATES = 5

# Pricing confidence thresholds (sold comps)
HIGH_MIN_SOLD = 8
ESTIMATE_MIN_SOLD = 3


class WatchCondition(str, Enum):
    NEW = "NEW"
    USED = "USED"
    PARTS = "PARTS"


class Completeness(str, Enum):
    FULL_SET = "FULL_SET"
    WATCH_ONLY = "WATCH_ONLY"
    UNKNOWN = "UNKNOWN"


class WatchBlockCode(str, Enum):
    BRAND_UNIDENTIFIED = "BRAND_UNIDENTIFIED"
    MODEL_SELECTION_REQUIRED = "MODEL_SELECTION_REQUIRED"
    MODEL_UNIDENTIFIED = "MODEL_UNIDENTIFIED"


# Checked in order; first hit wins
CONDITION_KEYWORDS: Tuple[Tuple[WatchCondition, Tuple[str, ...]], ...] = (
    (WatchCondition.PARTS, ("parts", "for parts", "not working", "broken", "repair", "as is", "as-is")),
    (WatchCondition.NEW, ("new", "nwt", "unworn", "bnib", "brand new", "sealed", "mint")),
    (WatchCondition.USED, ("used", "pre-owned", "preowned", "worn", "vintage", "estate")),
)

WATCH_ONLY_KEYWORDS = ("watch only", "no box", "no papers")
FULL_SET_KEYWORDS = ("full set", "box", "papers", "complete set", "with box", "with papers", "b&p")

DIAL_COLORS = {
    "black": "black", "blk": "black", "noir": "black",
    "white": "white", "wht": "white", "silver": "silver", "slv": "silver",
    "blue": "blue", "blu": "blue", "navy": "blue",
    "green": "green", "grn": "green", "red": "red", "gold": "gold",
    "champagne": "champagne", "grey": "gray", "gray": "gray",
    "brown": "brown", "orange": "orange", "pink": "pink",
    "mother of pearl": "mother of pearl", "mop": "mother of pearl",
    "skeleton": "skeleton",
}

BEZEL_TERMS = {
    "diver": "diver bezel",
    "rotating": "diver bezel",
    "fluted": "fluted bezel",
    "ceramic": "ceramic bezel",
    "tachymeter": "tachymeter",
    "tachy": "tachymeter",
}


def _contains(text: str, keyword: str) -> bool:
    return re.search(r"(?<![a-z0-9])" + re.escape(keyword) + r"(?![a-z0-9])", text) is not None


def detect_condition(text: Optional[str]) -> WatchCondition:
    """Condition bucket from listing / hint text (USED when nothing matches)."""
    lower = (text or "").lower()
    for condition, keywords in CONDITION_KEYWORDS:
        if any(_contains(lower, k) for k in keywords):
            return condition
    return WatchCondition.USED


def detect_completeness(text: Optional[str]) -> Completeness:
    """Box/papers completeness. "no box" is checked before "box"."""
    lower = (text or "").lower()
    if any(_contains(lower, k) for k in WATCH_ONLY_KEYWORDS):
        return Completeness.WATCH_ONLY
    if any(_contains(lower, k) for k in FULL_SET_KEYWORDS):
        return Completeness.FULL_SET
    return Completeness.UNKNOWN


def normalize_dial_color(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    lower = text.lower().strip()
    for term, color in DIAL_COLORS.items():
        if _contains(lower, term):
            return color
    return lower or None


def normalize_bezel(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    lower = text.lower()
    for term, bezel in BEZEL_TERMS.items():
        if term in lower:
            return bezel
    return None


@dataclass(frozen=True)
class WatchIdentity(Identity):
    """Resolved watch identity."""

    brand: Optional[str] = None
    family_id: Optional[str] = None
    model_name: Optional[str] = None
    model_number: Optional[str] = None
    collection: Optional[str] = None
    configuration_group: ConfigurationGroup = ConfigurationGroup.UNCLASSIFIED
    dial_color: Optional[str] = None
    bezel_type: Optional[str] = None
    materials: Optional[str] = None
    condition: WatchCondition = WatchCondition.USED
    completeness: Completeness = Completeness.UNKNOWN
    model_confirmed: bool = False
    match_score: float = 0.0
    needs_model_selection: bool = False
    candidates: Tuple[LibraryCandidate, ...] = ()
    catalog_match: Optional[CatalogMatch] = None
    evidence_sources: tuple = ()

    @property
    def fingerprint(self) -> str:
        parts = [self.brand or "unknown", self.model_number or self.family_id or "unknown", self.completeness.value]
        return "_".join(re.sub(r"[^a-z0-9]+", "-", p.lower()).strip("-") for p in parts)

    @property
    def display_name(self) -> str:
        parts = [self.brand or "Unknown watch", self.model_name or "", self.model_number or ""]
        return " ".join(p for p in parts if p)


def determine_identity_confidence(
    brand: Optional[WatchBrand],
    match: CatalogMatch,
    needs_model_selection: bool,
) -> Tuple[ConfidenceTier, Optional[WatchBlockCode]]:
    """Identity tier plus block code for a watch match."""
    if brand is None:
        return ConfidenceTier.BLOCKED, WatchBlockCode.BRAND_UNIDENTIFIED
    if needs_model_selection:
        return ConfidenceTier.BLOCKED, WatchBlockCode.MODEL_SELECTION_REQUIRED
    if not match.found:
        return ConfidenceTier.BLOCKED, WatchBlockCode.MODEL_UNIDENTIFIED
    return match.tier, None


def determine_pricing_confidence(sold_count: int, identity_confidence: ConfidenceTier) -> ConfidenceTier:
    """
    Watch pricing tier from sold comp volume.

    HIGH needs 8+ sold comps and a HIGH identity; ESTIMATE needs 3+ (or
    any sold comp at all); otherwise BLOCKED.
    """
    if identity_confidence == ConfidenceTier.BLOCKED:
        return ConfidenceTier.BLOCKED
    if sold_count >= HIGH_MIN_SOLD and identity_confidence == ConfidenceTier.HIGH:
        return ConfidenceTier.HIGH
    if sold_count >= ESTIMATE_MIN_SOLD or sold_count > 0:
        return ConfidenceTier.ESTIMATE
    return ConfidenceTier.BLOCKED


def _evidence_text(merged: MergedEvidence) -> str:
    fields = merged.values
    parts: List[str] = [fields.brand or ""]
    parts.extend(fields.name_candidates)
    parts.extend([fields.set_name or "", fields.model_number or "", fields.catalog_code or "", fields.listing_text or ""])
    return " ".join(p for p in parts if p)


def _match_family(
    brand: WatchBrand,
    merged: MergedEvidence,
    library: WatchLibrary,
    library_candidates: Optional[Sequence[LibraryCandidate]],
    selected_family: Optional[str],
    trace: List[str],
) -> Tuple[CatalogMatch, List[LibraryCandidate]]:
    fields = merged.values

    if selected_family:
        family = library.get(selected_family)
        if family is not None and family.brand == brand:
            trace.append(f"Gate 2 PASSED: user selected {family.display_name}")
            return CatalogMatch(
                match_type=MatchType.EXACT,
                confidence=100,
                reason=f"User confirmed {family.display_name}",
                entry=LibraryCandidate(family=family, score=1.0, matched_by="user"),
            ), []
        trace.append(f"Gate 2: ignored selection '{selected_family}' (not a {brand.value} family)")

    reference = fields.model_number or fields.catalog_code
    family = library.match_model_number(brand, reference)
    if family is not None:
        trace.append(f"Gate 2 PASSED: reference {reference} -> {family.display_name}")
        return CatalogMatch(
            match_type=MatchType.EXACT,
            confidence=95,
            reason=f"Reference {reference} matches {family.display_name}",
            entry=LibraryCandidate(family=family, score=1.0, matched_by="model_number"),
        ), []

    if library_candidates:
        scored = [c for c in library_candidates if c.family.brand == brand]
        visual = True
    else:
        scored = library.score_families(brand, _evidence_text(merged))
        visual = False
    plausible = sorted(
        (c for c in scored if c.score >= CANDIDATE_THRESHOLD),
        key=lambda c: c.score,
        reverse=True,
    )[:MAX_SELECTION_CANDIDATES]

    if not plausible:
        trace.append(f"Gate 2 FAILED: no {brand.value} family scored >= {CANDIDATE_THRESHOLD}")
        return CatalogMatch.none(
            f"Brand {brand.value} identified but model not found in library",
            code=WatchBlockCode.MODEL_UNIDENTIFIED.value,
        ), []

    best = plausible[0]
    tied = [c for c in plausible if c.score >= best.score]
    if len(plausible) >= MIN_SELECTION_CANDIDATES and (len(tied) > 1 or best.score < 1.0):
        trace.append(f"Gate 2 FAILED: {len(plausible)} {brand.value} families plausible - selection required")
        return CatalogMatch.none(
            f"{len(plausible)} possible {brand.value} models - select one",
            code=WatchBlockCode.MODEL_SELECTION_REQUIRED.value,
            alternatives=len(plausible),
        ), plausible

    # Visual and text scores share one scale: CONFIRMED_SCORE confirms the model
    if best.score >= CONFIRMED_SCORE:
        match_type = MatchType.EXACT
    else:
        match_type = MatchType.FUZZY
    confidence = int(best.score * 100)

    trace.append(
        f"Gate 2 PASSED ({match_type.value}): {best.family.display_name} score {best.score:.2f}"
    )
    return CatalogMatch(
        match_type=match_type,
        confidence=confidence,
        alternative_candidates=len(plausible) - 1,
        reason=f"{best.family.display_name} matched by {'visual' if visual else 'text'} score {best.score:.2f}",
        entry=best,
    ), []


def resolve_watch_identity(
    evidence: Iterable[Evidence],
    library: WatchLibrary = watch_library,
    library_candidates: Optional[Sequence[LibraryCandidate]] = None,
    selected_family: Optional[str] = None,
    condition_hint: Optional[str] = None,
    completeness_hint: Optional[str] = None,
) -> WatchIdentity:
    """
    Resolve a watch identity from scan evidence.

    Args:
        evidence: Evidence records (vision extraction, manual entry...)
        library: Watch library to match against
        library_candidates: Scored candidates from a visual matcher, if any
        selected_family: "brand:family" key the user picked from candidates
        condition_hint: Condition text from the user or listing
        completeness_hint: Box/papers text from the user or listing

    Returns:
        WatchIdentity with confidence tier and resolution path
    """
    records = list(evidence)
    merged = merge_evidence(records)
    fields = merged.values
    trace: List[str] = []

    text = _evidence_text(merged)
    brand = library.detect_brand(fields.brand) or library.detect_brand(text)
    candidates: List[LibraryCandidate] = []
    if brand is None:
        trace.append("Gate 1 FAILED: brand not identified")
        match = CatalogMatch.none("Watch brand not identified", code=WatchBlockCode.BRAND_UNIDENTIFIED.value)
    else:
        trace.append(f"Gate 1 PASSED: brand {brand.value}")
        match, candidates = _match_family(brand, merged, library, library_candidates, selected_family, trace)

    needs_selection = match.code == WatchBlockCode.MODEL_SELECTION_REQUIRED.value
    tier, block_code = determine_identity_confidence(brand, match, needs_selection)

    hint_text = " ".join(p for p in (condition_hint, fields.listing_text) if p)
    condition = detect_condition(hint_text)
    completeness = detect_completeness(" ".join(p for p in (completeness_hint, fields.listing_text) if p))

    chosen: Optional[LibraryCandidate] = match.entry
    family: Optional[WatchFamily] = chosen.family if chosen else None
    model_confirmed = bool(chosen) and match.match_type == MatchType.EXACT

    if tier == ConfidenceTier.BLOCKED:
        trace.append(f"BLOCKED: {match.reason}")
    else:
        trace.append(f"{tier.value}: {match.reason}")
    trace.append(f"Condition {condition.value}, completeness {completeness.value}")

    identity = WatchIdentity(
        category=Category.WATCHES,
        confidence=tier,
        block_reason=match.reason if tier == ConfidenceTier.BLOCKED else None,
        block_code=block_code.value if block_code else None,
        # Configuration (dial/bezel variant) is only confirmed on a HIGH match
        variant_confirmed=tier == ConfidenceTier.HIGH,
        resolution_path=tuple(trace),
        brand=brand.value if brand else fields.brand,
        family_id=family.id if family else None,
        model_name=family.name if family else None,
        model_number=fields.model_number,
        collection=family.collection if family else None,
        configuration_group=family.configuration_group if family else ConfigurationGroup.UNCLASSIFIED,
        dial_color=normalize_dial_color(fields.dial_color),
        bezel_type=normalize_bezel(fields.bezel_type),
        materials=fields.materials,
        condition=condition,
        completeness=completeness,
        model_confirmed=model_confirmed,
        match_score=chosen.score if chosen else 0.0,
        needs_model_selection=needs_selection,
        candidates=tuple(candidates),
        catalog_match=match,
        evidence_sources=merged.sources,
    )

    record_identity(Category.WATCHES.value, identity.confidence.value)
    logger.info(f"Watch identity: {identity.display_name} ({identity.confidence.value})")
    return identity
