"""Trading card identity resolution.

Merges front/back/vision/manual evidence, validates the result against
the card checklist and assigns a confidence tier:
- exact (set + card number)            -> HIGH
- name-only / fuzzy (set confirmed)    -> ESTIMATE
- no checklist match, brand-only set,
  or ambiguous sets                    -> BLOCKED

Variant (parallel) uncertainty never blocks identity; it only makes the
price conservative.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from flipcore.catalog.cards import (
    CardChecklist,
    CardParallel,
    CardSet,
    card_checklist,
    parse_brand,
    split_set_text,
)
from flipcore.categories import Category
from flipcore.identity.base import CatalogMatch, ConfidenceTier, Identity, MatchType
from flipcore.identity.evidence import Evidence, EvidenceSource, MergedEvidence, merge_evidence
from flipcore.metrics import record_identity

logger = logging.getLogger(__name__)

EXACT_CONFIDENCE_WITH_VARIANT = 95
EXACT_CONFIDENCE = 85
NAME_ONLY_CONFIDENCE_WITH_VARIANT = 70
NAME_ONLY_CONFIDENCE = 55
FUZZY_CONFIDENCE = 40
MIN_NAME_LENGTH = 3

_SERIAL_RE = re.compile(r"\b\d{1,4}\s*/\s*(\d{1,4})\b")


class VariantFinish(str, Enum):
    """Broad finish classification used for query building."""

    BASE = "base"
    REFRACTOR = "refractor"
    HOLO = "holo"
    REVERSE_HOLO = "reverse-holo"
    FULL_ART = "full-art"
    PARALLEL = "parallel"
    AUTO = "auto"
    RELIC = "relic"
    GRADED = "graded"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class CardIdentity(Identity):
    """Resolved trading card identity."""

    name: str = "Unknown"
    set_name: Optional[str] = None
    brand: Optional[str] = None
    year: Optional[int] = None
    card_number: Optional[str] = None
    sport: Optional[str] = None
    variant_finish: VariantFinish = VariantFinish.UNKNOWN
    variant_label: Optional[str] = None
    parallel_id: Optional[str] = None
    print_run: Optional[int] = None
    grading_company: Optional[str] = None
    grade: Optional[str] = None
    cert_number: Optional[str] = None
    language: Optional[str] = None
    is_vintage: bool = False
    catalog_match: Optional[CatalogMatch] = None
    evidence_sources: tuple = ()

    @property
    def is_graded(self) -> bool:
        return bool(self.grading_company and self.grade)

    @property
    def fingerprint(self) -> str:
        parts = [
            str(self.year or ""),
            self.brand or "",
            self.set_name or "",
            self.card_number or self.name,
            self.parallel_id or "base",
        ]
        if self.is_graded:
            parts.append(f"{self.grading_company}{self.grade}")
        return "-".join(_slug(p) for p in parts if p)

    @property
    def display_name(self) -> str:
        number = f"#{self.card_number}" if self.card_number else ""
        parts = [str(self.year) if self.year else "", self.set_name or "", self.name, number]
        return " ".join(p for p in parts if p)


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", text.lower()).strip("_")


def determine_variant(variant: Optional[str], grade: Optional[str] = None) -> VariantFinish:
    """Classify variant text into a broad finish."""
    if not variant:
        return VariantFinish.GRADED if grade else VariantFinish.UNKNOWN

    v = variant.lower()
    if v.strip() == "base":
        return VariantFinish.BASE
    if "prizm" in v or "refractor" in v:
        return VariantFinish.REFRACTOR
    if "reverse" in v:
        return VariantFinish.REVERSE_HOLO
    if "holo" in v:
        return VariantFinish.HOLO
    if "full art" in v or "full-art" in v:
        return VariantFinish.FULL_ART
    if "auto" in v:
        return VariantFinish.AUTO
    if "relic" in v or "patch" in v or "jersey" in v:
        return VariantFinish.RELIC
    if grade:
        return VariantFinish.GRADED
    return VariantFinish.PARALLEL


def parse_print_run(serial: Optional[str]) -> Optional[int]:
    """Extract the print run from a serial like "23/99"."""
    if not serial:
        return None
    match = _SERIAL_RE.search(serial)
    return int(match.group(1)) if match else None


def _narrow(candidates: List[CardSet], brand, sport: Optional[str], trace: List[str]) -> List[CardSet]:
    if len(candidates) > 1 and brand is not None:
        by_brand = [s for s in candidates if s.brand == brand]
        if by_brand:
            trace.append(f"Narrowed {len(candidates)} sets to {len(by_brand)} by brand {brand.value}")
            candidates = by_brand
    if len(candidates) > 1 and sport:
        by_sport = [s for s in candidates if sport.lower() in s.sports]
        if by_sport:
            trace.append(f"Narrowed {len(candidates)} sets to {len(by_sport)} by sport {sport}")
            candidates = by_sport
    return candidates


def validate_against_checklist(
    merged: MergedEvidence,
    checklist: CardChecklist = card_checklist,
    trace: Optional[List[str]] = None,
) -> CatalogMatch:
    """
    Look merged card evidence up against the checklist.

    Args:
        merged: Merged evidence
        checklist: Checklist to search
        trace: Optional list that receives resolution steps

    Returns:
        CatalogMatch describing match quality
    """
    trace = trace if trace is not None else []
    fields = merged.values
    raw_set = (fields.set_name or "").strip()

    if len(raw_set) < 2 or raw_set.lower() == "unknown set":
        trace.append("Gate 1 FAILED: no set name")
        return CatalogMatch.none("No valid set name provided - cannot validate card identity", code="NO_SET_NAME")

    set_name, set_year, set_brand = split_set_text(raw_set)
    year = fields.year or set_year
    brand = parse_brand(fields.brand) or set_brand
    trace.append(f"Gate 1 PASSED: set text '{raw_set}' -> '{set_name}' year={year}")

    candidates = checklist.find_sets(set_name, year)
    if not candidates:
        brand_sets = checklist.find_brand_sets(raw_set)
        if brand_sets:
            trace.append(f"Gate 2 FAILED: brand {brand_sets[0].brand.value} found but no specific set")
            return CatalogMatch.none(
                f"Found brand \"{brand_sets[0].brand.value}\" but specific set not identified",
                code="BRAND_ONLY",
                alternatives=len(brand_sets),
            )
        trace.append("Gate 2 FAILED: set not in checklist")
        return CatalogMatch.none("No matching set found in checklist", code="NOT_IN_CHECKLIST")

    candidates = _narrow(candidates, brand, fields.sport, trace)
    trace.append(f"Gate 2 PASSED: {len(candidates)} checklist set(s) match")

    has_number = bool(fields.card_number)
    name = merged.primary_name.lower()
    has_name = len(name) >= MIN_NAME_LENGTH and name != "unknown"

    if len(candidates) > 1:
        families = {(s.brand, s.name) for s in candidates}
        if len(families) > 1 or not (has_number or has_name):
            trace.append(f"Gate 3 FAILED: {len(candidates)} equally plausible sets")
            return CatalogMatch.none(
                f"{len(candidates)} checklist sets match '{raw_set}' - need brand or year",
                code="AMBIGUOUS_SET",
                alternatives=len(candidates) - 1,
            )
        best = candidates[0]
        parallel = best.find_parallel(fields.variant)
        trace.append(f"Gate 3 PASSED (fuzzy): {best.name} family across {len(candidates)} years")
        return CatalogMatch(
            match_type=MatchType.FUZZY,
            confidence=FUZZY_CONFIDENCE,
            alternative_candidates=len(candidates) - 1,
            reason=f"Set family {best.brand.value} {best.name} confirmed, year uncertain",
            entry=best,
            matched_variant=parallel,
        )

    best = candidates[0]
    parallel = best.find_parallel(fields.variant)

    if has_number:
        trace.append(f"Gate 3 PASSED (exact): {best.label} #{fields.card_number}")
        return CatalogMatch(
            match_type=MatchType.EXACT,
            confidence=EXACT_CONFIDENCE_WITH_VARIANT if parallel else EXACT_CONFIDENCE,
            reason=(
                f"Fully verified: {best.label} #{fields.card_number} {parallel.label}"
                if parallel
                else f"Card verified: {best.label} #{fields.card_number}"
            ),
            entry=best,
            matched_variant=parallel,
        )

    if has_name:
        trace.append(f"Gate 3 PASSED (name-only): {best.label} '{merged.primary_name}'")
        return CatalogMatch(
            match_type=MatchType.NAME_ONLY,
            confidence=NAME_ONLY_CONFIDENCE_WITH_VARIANT if parallel else NAME_ONLY_CONFIDENCE,
            reason=f"Set confirmed, card \"{merged.primary_name}\" matched (number unreadable)",
            entry=best,
            matched_variant=parallel,
        )

    trace.append(f"Gate 3 FAILED: {best.label} found but no card identifier")
    return CatalogMatch.none(
        f"Set \"{best.label}\" found but no card identifier (need name or number)",
        code="NO_CARD_IDENTIFIER",
    )


def _variant_confirmed(fields, entry: Optional[CardSet], parallel: Optional[CardParallel], print_run) -> bool:
    """A variant is unconfirmed when one was observed but not matched."""
    if parallel is not None:
        return True
    if print_run is not None and entry is not None:
        return len(entry.parallels_numbered(print_run)) == 1
    return not fields.variant


def _matched_print_run_parallel(entry: Optional[CardSet], print_run: Optional[int]) -> Optional[CardParallel]:
    if entry is None or print_run is None:
        return None
    numbered = entry.parallels_numbered(print_run)
    return numbered[0] if len(numbered) == 1 else None


def resolve_card_identity(
    evidence: Iterable[Evidence],
    checklist: CardChecklist = card_checklist,
) -> CardIdentity:
    """
    Resolve a card identity from scan evidence.

    A front scan (or a manual entry) is required; a back scan is used when
    present but not yet required.

    Args:
        evidence: Evidence records from any sources
        checklist: Card checklist to validate against

    Returns:
        CardIdentity with confidence tier and resolution path
    """
    records = list(evidence)
    merged = merge_evidence(records)
    fields = merged.values
    trace: List[str] = []

    has_front = any(
        r.source in (EvidenceSource.FRONT_SCAN, EvidenceSource.VISION, EvidenceSource.MANUAL)
        for r in records
    )
    if not has_front:
        trace.append("BLOCKED: no front scan or manual entry")
        identity = CardIdentity(
            category=Category.TRADING_CARDS,
            confidence=ConfidenceTier.BLOCKED,
            block_reason="Missing required scan data",
            block_code="MISSING_SCAN",
            resolution_path=tuple(trace),
            evidence_sources=merged.sources,
        )
        record_identity(Category.TRADING_CARDS.value, identity.confidence.value)
        return identity

    if not merged.has_back_scan:
        trace.append("Front-only evidence accepted (back scan not yet required)")

    match = validate_against_checklist(merged, checklist, trace)
    entry: Optional[CardSet] = match.entry
    print_run = parse_print_run(fields.serial)
    parallel = match.matched_variant or _matched_print_run_parallel(entry, print_run)
    variant_confirmed = _variant_confirmed(fields, entry, parallel, print_run)

    tier = match.tier
    if tier == ConfidenceTier.BLOCKED:
        trace.append(f"BLOCKED: {match.reason}")
        block_code = match.code
    else:
        trace.append(f"{tier.value}: {match.reason}")
        block_code = None
        if not variant_confirmed:
            trace.append(f"Variant '{fields.variant}' not in checklist - pricing will be conservative")

    variant_text = parallel.label if parallel else fields.variant
    identity = CardIdentity(
        category=Category.TRADING_CARDS,
        confidence=tier,
        block_reason=match.reason if tier == ConfidenceTier.BLOCKED else None,
        block_code=block_code,
        variant_confirmed=variant_confirmed,
        resolution_path=tuple(trace),
        name=merged.primary_name or "Unknown",
        set_name=entry.name if entry else fields.set_name,
        brand=entry.brand.value if entry else fields.brand,
        year=entry.year if entry else fields.year,
        card_number=fields.card_number,
        sport=fields.sport or (entry.sports[0] if entry and len(entry.sports) == 1 else None),
        variant_finish=determine_variant(variant_text, fields.grade),
        variant_label=variant_text,
        parallel_id=parallel.id if parallel else None,
        print_run=print_run or (parallel.numbered if parallel else None),
        grading_company=fields.grading_company,
        grade=fields.grade,
        cert_number=fields.cert_number,
        language=fields.language,
        is_vintage=bool(entry and entry.is_vintage),
        catalog_match=match,
        evidence_sources=merged.sources,
    )

    record_identity(Category.TRADING_CARDS.value, identity.confidence.value)
    logger.info(f"Card identity: {identity.display_name} ({identity.confidence.value})")
    return identity
