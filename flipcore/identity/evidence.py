"""Evidence records and priority-ordered merging.

Each scan source (back scan, front scan, vision extraction, manual entry)
produces an immutable Evidence record with a sparse set of extracted
fields. Merging walks the records in source priority order and, for each
field independently, keeps the first non-empty value together with the
source it came from.
"""

import logging
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class EvidenceSource(str, Enum):
    """Where an observation came from."""

    BACK_SCAN = "back_scan"
    FRONT_SCAN = "front_scan"
    VISION = "vision"
    MANUAL = "manual"


# More authoritative sources first
SOURCE_PRIORITY: tuple = (
    EvidenceSource.BACK_SCAN,
    EvidenceSource.FRONT_SCAN,
    EvidenceSource.VISION,
    EvidenceSource.MANUAL,
)


@dataclass(frozen=True)
class EvidenceFields:
    """Sparse fields extracted from a single observation."""

    name_candidates: tuple = ()
    brand: Optional[str] = None
    set_name: Optional[str] = None
    catalog_code: Optional[str] = None      # Set code, model reference, etc.
    card_number: Optional[str] = None
    model_number: Optional[str] = None
    year: Optional[int] = None
    language: Optional[str] = None
    sport: Optional[str] = None
    variant: Optional[str] = None           # Parallel / finish / colorway text
    grade: Optional[str] = None
    grading_company: Optional[str] = None
    cert_number: Optional[str] = None
    serial: Optional[str] = None            # e.g. "23/99"
    dial_color: Optional[str] = None
    bezel_type: Optional[str] = None
    materials: Optional[str] = None
    listing_text: Optional[str] = None


def _is_empty(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (tuple, list)):
        return len(value) == 0
    return False


@dataclass(frozen=True)
class Evidence:
    """One independently sourced observation about the scanned item."""

    source: EvidenceSource
    confidence: float                   # 0-100
    fields: EvidenceFields = field(default_factory=EvidenceFields)

    def __post_init__(self):
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"Evidence confidence must be within [0, 100], got {self.confidence}")


@dataclass(frozen=True)
class MergedEvidence:
    """Merged field values, each tagged with the source that won it."""

    values: EvidenceFields
    winners: Dict[str, EvidenceSource]
    sources: tuple                      # Sources that contributed any evidence

    def source_of(self, name: str) -> Optional[EvidenceSource]:
        """Return the source whose value won for `name`, if any."""
        return self.winners.get(name)

    def has(self, name: str) -> bool:
        return name in self.winners

    @property
    def has_back_scan(self) -> bool:
        return EvidenceSource.BACK_SCAN in self.sources

    @property
    def primary_name(self) -> str:
        return self.values.name_candidates[0] if self.values.name_candidates else ""


def merge_evidence(
    records: Iterable[Evidence],
    priority: tuple = SOURCE_PRIORITY,
) -> MergedEvidence:
    """
    Merge evidence records field by field in source priority order.

    Within the same source, higher-confidence records win. A field set by
    a more authoritative source is never overridden by a weaker one.

    Args:
        records: Evidence records in any order
        priority: Source order, most authoritative first

    Returns:
        MergedEvidence with per-field winning sources
    """
    rank = {source: i for i, source in enumerate(priority)}
    ordered: List[Evidence] = sorted(
        records,
        key=lambda e: (rank.get(e.source, len(priority)), -e.confidence),
    )

    merged: Dict[str, object] = {}
    winners: Dict[str, EvidenceSource] = {}
    for record in ordered:
        for f in fields(EvidenceFields):
            if f.name in winners:
                continue
            value = getattr(record.fields, f.name)
            if _is_empty(value):
                continue
            merged[f.name] = value.strip() if isinstance(value, str) else value
            winners[f.name] = record.source

    contributing = tuple(dict.fromkeys(r.source for r in ordered))
    if winners:
        logger.debug(
            "Merged evidence: "
            + ", ".join(f"{name}<-{src.value}" for name, src in winners.items())
        )
    return MergedEvidence(values=EvidenceFields(**merged), winners=winners, sources=contributing)
