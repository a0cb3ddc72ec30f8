"""Shared identity types: confidence tiers, catalog matches, identities."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from flipcore.categories import Category


class ConfidenceTier(str, Enum):
    """How much an identity or price can be trusted."""

    HIGH = "HIGH"
    ESTIMATE = "ESTIMATE"
    BLOCKED = "BLOCKED"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]


_TIER_RANK = {
    ConfidenceTier.BLOCKED: 0,
    ConfidenceTier.ESTIMATE: 1,
    ConfidenceTier.HIGH: 2,
}


def weakest_tier(*tiers: ConfidenceTier) -> ConfidenceTier:
    """Return the least confident of the given tiers."""
    return min(tiers, key=lambda t: t.rank)


class MatchType(str, Enum):
    """Quality of a catalog lookup."""

    EXACT = "exact"             # Specific model / card number confirmed
    NAME_ONLY = "name-only"     # Family confirmed, unit identified by name
    FUZZY = "fuzzy"             # Family inferred, unit uncertain
    NONE = "none"               # Nothing priceable matched


@dataclass(frozen=True)
class CatalogMatch:
    """Result of looking merged evidence up against the reference catalog."""

    match_type: MatchType
    confidence: int = 0                 # 0-100
    alternative_candidates: int = 0     # Count of ambiguous alternatives
    reason: str = ""
    code: Optional[str] = None          # Machine reason code when nothing matched
    entry: Any = None                   # Matched catalog record, if any
    matched_variant: Any = None         # Matched parallel/configuration, if any

    @property
    def tier(self) -> ConfidenceTier:
        """Map match type onto the identity confidence tier."""
        if self.match_type == MatchType.EXACT:
            return ConfidenceTier.HIGH
        if self.match_type in (MatchType.NAME_ONLY, MatchType.FUZZY):
            return ConfidenceTier.ESTIMATE
        return ConfidenceTier.BLOCKED

    @property
    def found(self) -> bool:
        return self.match_type != MatchType.NONE

    @classmethod
    def none(cls, reason: str, code: str = "NOT_IN_CATALOG", alternatives: int = 0) -> "CatalogMatch":
        return cls(
            match_type=MatchType.NONE,
            reason=reason,
            code=code,
            alternative_candidates=alternatives,
        )


@dataclass(frozen=True)
class Identity:
    """Canonical per-scan identity shared by all categories.

    Identities are never mutated after resolution; a new scan produces a
    new Identity.
    """

    category: Category
    confidence: ConfidenceTier
    block_reason: Optional[str] = None          # Human-readable reason when BLOCKED
    block_code: Optional[str] = None            # Machine reason code when BLOCKED
    variant_confirmed: bool = True              # False prices conservatively
    resolution_path: tuple = field(default_factory=tuple)

    @property
    def is_blocked(self) -> bool:
        return self.confidence == ConfidenceTier.BLOCKED

    @property
    def fingerprint(self) -> str:
        """Stable identity key used for price truth caching."""
        return "unknown"

    @property
    def price_fingerprint(self) -> str:
        """Fingerprint plus the identity facts a cached snapshot depends on.

        The confidence tier caps pricing confidence and an unconfirmed
        variant discounts the anchor, so identities that differ in either
        must not share a snapshot.
        """
        basis = self.confidence.value.lower()
        if not self.variant_confirmed:
            basis += "-unconfirmed"
        return f"{self.fingerprint}-{basis}"

    @property
    def display_name(self) -> str:
        return self.fingerprint
