"""Comparable-sale search contracts.

The marketplace client itself lives outside this package; adapters only
depend on the call/response shapes defined here.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Awaitable, List, Optional, Protocol

from flipcore.pricing.price_truth import PricingSource


class CompSource(str, Enum):
    """Kind of market data a comp search returned."""

    SOLD = "sold"
    ACTIVE = "active"
    NONE = "none"

    @property
    def pricing_source(self) -> PricingSource:
        return {
            CompSource.SOLD: PricingSource.SOLD_COMPS,
            CompSource.ACTIVE: PricingSource.ACTIVE_LISTINGS,
            CompSource.NONE: PricingSource.NONE,
        }[self]


@dataclass(frozen=True)
class CompSale:
    """A single comparable sale (or active listing)."""

    title: str
    price: float
    condition: str = ""
    sold_date: Optional[date] = None


@dataclass(frozen=True)
class CompSearchResult:
    """Response of a comp search for one query."""

    sales: List[CompSale] = field(default_factory=list)
    source: CompSource = CompSource.NONE

    @property
    def prices(self) -> List[float]:
        return [s.price for s in self.sales if s.price > 0]

    @property
    def sold_count(self) -> int:
        return len(self.sales) if self.source == CompSource.SOLD else 0


class CompSearch(Protocol):
    """Callable that searches comparable sales.

    Implementations raise ServiceError (or httpx errors) on failure; the
    adapters wrap calls in the retry policy.
    """

    def __call__(
        self,
        query: str,
        negative_keywords: List[str],
        condition: Optional[str],
    ) -> Awaitable[CompSearchResult]:
        ...
