"""Category enumeration and per-category pricing configuration.

Every category-specific constant (price ceiling, platform fee rate,
outbound shipping, cache TTL, blocked verdict) lives in one typed table
keyed by the closed Category enumeration. Unknown category names are
rejected instead of silently falling back to a default.
"""

from dataclasses import dataclass
from enum import Enum
from collections.abc import Mapping
from typing import Dict, Iterator

from flipcore.config import settings


class UnknownCategoryError(KeyError):
    """Raised when a category name is not part of the closed enumeration."""
    pass


class Category(str, Enum):
    """Resale categories the pricing tables know about."""

    SHOES = "Shoes"
    WATCHES = "Watches"
    TRADING_CARDS = "Trading Cards"
    COLLECTIBLES = "Collectibles"
    ELECTRONICS = "Electronics"
    TOYS = "Toys"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: "Category | str") -> "Category":
        """Resolve a category from its enum member or display name.

        Raises:
            UnknownCategoryError: If the name is not a known category
        """
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for member in cls:
            if text.lower() in (member.value.lower(), member.name.lower()):
                return member
        raise UnknownCategoryError(f"Unknown category: {value!r}")


class BlockedVerdict(str, Enum):
    """Verdict used when identity or pricing cannot support a decision."""

    BLOCKED = "BLOCKED"
    NOT_ENOUGH_INFO = "NOT_ENOUGH_INFO"


@dataclass(frozen=True)
class CategoryProfile:
    """Pricing configuration for a single category."""

    price_ceiling: float                # Hard ceiling for expected resale
    fee_rate: float                     # Platform fee as fraction of sell price
    outbound_shipping: float            # Typical seller shipping cost
    cache_ttl_hours: int                # Price truth validity window
    blocked_verdict: BlockedVerdict = BlockedVerdict.BLOCKED


class CategoryTable(Mapping):
    """Read-only map from Category to CategoryProfile.

    Construction fails if any key is not a Category member or if a
    category is missing, so lookups never need a silent default.
    """

    def __init__(self, profiles: Mapping):
        table: Dict[Category, CategoryProfile] = {}
        for key, profile in profiles.items():
            if not isinstance(key, Category):
                raise UnknownCategoryError(f"Category table key must be a Category, got {key!r}")
            if not isinstance(profile, CategoryProfile):
                raise TypeError(f"Profile for {key.value} must be a CategoryProfile")
            table[key] = profile

        missing = [c.value for c in Category if c not in table]
        if missing:
            raise ValueError(f"Category table is missing: {', '.join(missing)}")
        self._table = table

    def __getitem__(self, key) -> CategoryProfile:
        return self._table[Category.parse(key)]

    def __iter__(self) -> Iterator[Category]:
        return iter(self._table)

    def __len__(self) -> int:
        return len(self._table)


def _ttl(category: Category) -> int:
    return settings.cache_ttl_hours.get(category.value, settings.default_cache_ttl_hours)


CATEGORY_PROFILES = CategoryTable({
    Category.SHOES: CategoryProfile(
        price_ceiling=350.0, fee_rate=0.13, outbound_shipping=10.0,
        cache_ttl_hours=_ttl(Category.SHOES),
    ),
    Category.WATCHES: CategoryProfile(
        price_ceiling=2000.0, fee_rate=0.15, outbound_shipping=8.0,
        cache_ttl_hours=_ttl(Category.WATCHES),
        blocked_verdict=BlockedVerdict.NOT_ENOUGH_INFO,
    ),
    Category.TRADING_CARDS: CategoryProfile(
        price_ceiling=500.0, fee_rate=0.13, outbound_shipping=4.0,
        cache_ttl_hours=_ttl(Category.TRADING_CARDS),
    ),
    Category.COLLECTIBLES: CategoryProfile(
        price_ceiling=300.0, fee_rate=0.13, outbound_shipping=8.0,
        cache_ttl_hours=_ttl(Category.COLLECTIBLES),
    ),
    Category.ELECTRONICS: CategoryProfile(
        price_ceiling=300.0, fee_rate=0.13, outbound_shipping=12.0,
        cache_ttl_hours=_ttl(Category.ELECTRONICS),
    ),
    Category.TOYS: CategoryProfile(
        price_ceiling=300.0, fee_rate=0.13, outbound_shipping=8.0,
        cache_ttl_hours=_ttl(Category.TOYS),
    ),
    Category.OTHER: CategoryProfile(
        price_ceiling=500.0, fee_rate=0.13, outbound_shipping=8.0,
        cache_ttl_hours=_ttl(Category.OTHER),
    ),
})


def get_profile(category: Category | str) -> CategoryProfile:
    """Get the pricing profile for a category (raises on unknown names)."""
    return CATEGORY_PROFILES[category]
