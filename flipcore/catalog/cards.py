"""Trading card checklist reference data and lookup.

The checklist is the closed universe of sets the card resolver accepts.
Cards outside it are never priced, which keeps comps from being invented
for sets we do not recognize.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class CardBrand(str, Enum):
    """Card manufacturers covered by the checklist."""

    PANINI = "Panini"
    TOPPS = "Topps"
    BOWMAN = "Bowman"
    UPPER_DECK = "Upper Deck"
    DONRUSS = "Donruss"
    FLEER = "Fleer"
    POKEMON = "Pokemon"


class Rarity(str, Enum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    SUPER_RARE = "super-rare"


@dataclass(frozen=True)
class CardParallel:
    """A parallel / variation within a set."""

    id: str
    label: str
    rarity: Rarity = Rarity.COMMON
    numbered: Optional[int] = None      # Print run, e.g. 199 for "/199"


@dataclass(frozen=True)
class CardSet:
    """One checklist set for a given year."""

    brand: CardBrand
    name: str
    year: int
    sports: Tuple[str, ...]
    parallels: Tuple[CardParallel, ...]

    @property
    def label(self) -> str:
        return f"{self.year} {self.brand.value} {self.name}"

    @property
    def is_vintage(self) -> bool:
        return self.year < 1990

    def find_parallel(self, text: Optional[str]) -> Optional[CardParallel]:
        """Match variant text against this set's parallels."""
        if not text:
            return None
        needle = text.lower().strip()
        for parallel in self.parallels:
            label = parallel.label.lower()
            if parallel.id == needle or label == needle:
                return parallel
        for parallel in self.parallels:
            if parallel.id == "base":
                continue
            label = parallel.label.lower()
            if label in needle or needle in label:
                return parallel
        return None

    def parallels_numbered(self, print_run: int) -> List[CardParallel]:
        return [p for p in self.parallels if p.numbered == print_run]


def _p(id: str, label: str, rarity: Rarity = Rarity.COMMON, numbered: Optional[int] = None) -> CardParallel:
    return CardParallel(id=id, label=label, rarity=rarity, numbered=numbered)


PRIZM_STANDARD = (
    _p("base", "Base"),
    _p("silver", "Silver Prizm", Rarity.UNCOMMON),
    _p("red-white-blue", "Red White & Blue", Rarity.UNCOMMON),
    _p("blue", "Blue", Rarity.UNCOMMON, 199),
    _p("green", "Green", Rarity.UNCOMMON, 275),
    _p("hyper", "Hyper", Rarity.RARE),
    _p("orange", "Orange", Rarity.RARE, 249),
    _p("purple", "Purple", Rarity.RARE, 100),
    _p("red", "Red", Rarity.RARE, 299),
    _p("red-ice", "Red Ice", Rarity.RARE, 99),
    _p("camo", "Camo", Rarity.RARE, 25),
    _p("mojo", "Mojo", Rarity.RARE, 25),
    _p("gold", "Gold", Rarity.SUPER_RARE, 10),
    _p("black", "Black", Rarity.SUPER_RARE, 1),
)

PRIZM_LEGACY = (
    _p("base", "Base"),
    _p("silver", "Silver Prizm", Rarity.UNCOMMON),
    _p("red-white-blue", "Red White & Blue", Rarity.UNCOMMON),
    _p("blue", "Blue", Rarity.UNCOMMON, 199),
    _p("orange", "Orange", Rarity.RARE, 249),
    _p("purple", "Purple", Rarity.RARE, 99),
    _p("gold", "Gold", Rarity.SUPER_RARE, 10),
    _p("black", "Black", Rarity.SUPER_RARE, 1),
)

MOSAIC_PARALLELS = (
    _p("base", "Base"),
    _p("silver", "Silver Mosaic", Rarity.UNCOMMON),
    _p("green", "Green Mosaic", Rarity.UNCOMMON),
    _p("reactive-blue", "Reactive Blue", Rarity.UNCOMMON),
    _p("blue", "Blue", Rarity.RARE, 99),
    _p("gold", "Gold", Rarity.SUPER_RARE, 10),
    _p("black", "Black", Rarity.SUPER_RARE, 1),
)

OPTIC_PARALLELS = (
    _p("base", "Base"),
    _p("holo", "Holo", Rarity.UNCOMMON),
    _p("purple", "Purple", Rarity.RARE, 99),
    _p("pink-velocity", "Pink Velocity", Rarity.RARE),
    _p("gold", "Gold", Rarity.SUPER_RARE, 10),
    _p("black", "Black", Rarity.SUPER_RARE, 1),
)

CHROME_PARALLELS = (
    _p("base", "Base"),
    _p("refractor", "Refractor", Rarity.UNCOMMON),
    _p("prism-refractor", "Prism Refractor", Rarity.UNCOMMON),
    _p("x-fractor", "X-Fractor", Rarity.RARE),
    _p("blue-refractor", "Blue Refractor", Rarity.RARE, 150),
    _p("green-refractor", "Green Refractor", Rarity.RARE, 99),
    _p("gold-refractor", "Gold Refractor", Rarity.RARE, 50),
    _p("orange-refractor", "Orange Refractor", Rarity.SUPER_RARE, 25),
    _p("red-refractor", "Red Refractor", Rarity.SUPER_RARE, 5),
    _p("superfractor", "Superfractor", Rarity.SUPER_RARE, 1),
)

FLAGSHIP_PARALLELS = (
    _p("base", "Base"),
    _p("gold", "Gold", Rarity.UNCOMMON, 2020),
    _p("rainbow-foil", "Rainbow Foil", Rarity.UNCOMMON),
    _p("vintage-stock", "Vintage Stock", Rarity.RARE, 99),
    _p("black", "Black", Rarity.RARE, 69),
    _p("platinum", "Platinum", Rarity.SUPER_RARE, 1),
)

UPPER_DECK_PARALLELS = (
    _p("base", "Base"),
    _p("young-guns", "Young Guns", Rarity.UNCOMMON),
    _p("exclusives", "Exclusives", Rarity.RARE, 100),
    _p("high-gloss", "High Gloss", Rarity.SUPER_RARE, 10),
)

VINTAGE_PARALLELS = (
    _p("base", "Base"),
)

POKEMON_WOTC_PARALLELS = (
    _p("base", "Base"),
    _p("holo", "Holo", Rarity.RARE),
    _p("first-edition", "1st Edition", Rarity.SUPER_RARE),
    _p("shadowless", "Shadowless", Rarity.SUPER_RARE),
)

POKEMON_MODERN_PARALLELS = (
    _p("base", "Base"),
    _p("holo", "Holo", Rarity.UNCOMMON),
    _p("reverse-holo", "Reverse Holo", Rarity.UNCOMMON),
    _p("full-art", "Full Art", Rarity.RARE),
    _p("alt-art", "Alternate Art", Rarity.SUPER_RARE),
    _p("secret-rare", "Secret Rare", Rarity.SUPER_RARE),
)

BIG_FOUR = ("football", "basketball", "baseball")


def _sets(brand: CardBrand, name: str, years: Iterable[int], sports, parallels) -> List[CardSet]:
    return [CardSet(brand, name, year, tuple(sports), parallels) for year in years]


CARD_SETS: Tuple[CardSet, ...] = tuple(
    _sets(CardBrand.PANINI, "Prizm", range(2020, 2025), BIG_FOUR, PRIZM_STANDARD)
    + _sets(CardBrand.PANINI, "Prizm", range(2015, 2020), ("football", "basketball"), PRIZM_LEGACY)
    + _sets(CardBrand.PANINI, "Mosaic", range(2020, 2025), ("football", "basketball"), MOSAIC_PARALLELS)
    + _sets(CardBrand.DONRUSS, "Optic", range(2020, 2025), ("football", "basketball", "baseball"), OPTIC_PARALLELS)
    + _sets(CardBrand.TOPPS, "Chrome", range(2018, 2025), ("baseball",), CHROME_PARALLELS)
    + _sets(CardBrand.BOWMAN, "Chrome", range(2018, 2025), ("baseball",), CHROME_PARALLELS)
    + _sets(CardBrand.TOPPS, "Series 1", range(2018, 2025), ("baseball",), FLAGSHIP_PARALLELS)
    + _sets(CardBrand.UPPER_DECK, "Series 1", range(2018, 2025), ("hockey",), UPPER_DECK_PARALLELS)
    + _sets(CardBrand.FLEER, "Fleer", (1986, 1987, 1988), ("basketball",), VINTAGE_PARALLELS)
    + _sets(CardBrand.TOPPS, "Topps", (1952, 1955, 1975, 1989), ("baseball",), VINTAGE_PARALLELS)
    + _sets(CardBrand.POKEMON, "Base Set", (1999,), ("pokemon",), POKEMON_WOTC_PARALLELS)
    + _sets(CardBrand.POKEMON, "Jungle", (1999,), ("pokemon",), POKEMON_WOTC_PARALLELS)
    + _sets(CardBrand.POKEMON, "Fossil", (1999,), ("pokemon",), POKEMON_WOTC_PARALLELS)
    + _sets(CardBrand.POKEMON, "Evolving Skies", (2021,), ("pokemon",), POKEMON_MODERN_PARALLELS)
    + _sets(CardBrand.POKEMON, "Obsidian Flames", (2023,), ("pokemon",), POKEMON_MODERN_PARALLELS)
    + _sets(CardBrand.POKEMON, "151", (2023,), ("pokemon",), POKEMON_MODERN_PARALLELS)
)

_YEAR_RE = re.compile(r"\b(19[5-9]\d|20[0-4]\d)\b")


def parse_brand(text: Optional[str]) -> Optional[CardBrand]:
    """Find a checklist brand mentioned in free text."""
    if not text:
        return None
    lower = text.lower()
    for brand in CardBrand:
        if brand.value.lower() in lower:
            return brand
    if "pokémon" in lower:
        return CardBrand.POKEMON
    return None


def split_set_text(text: str) -> Tuple[str, Optional[int], Optional[CardBrand]]:
    """Split raw set text like "2020 Panini Prizm" into (set name, year, brand).

    Brand words are removed from the name only when something else remains,
    so "Topps" stays a set name for the vintage flagship sets.
    """
    year_match = _YEAR_RE.search(text)
    year = int(year_match.group(1)) if year_match else None
    name = _YEAR_RE.sub(" ", text)
    brand = parse_brand(name)
    if brand:
        stripped = re.sub(re.escape(brand.value), " ", name, flags=re.I)
        if stripped.strip():
            name = stripped
    return " ".join(name.split()).lower(), year, brand


class CardChecklist:
    """Lookup over the closed card checklist."""

    def __init__(self, sets: Iterable[CardSet] = CARD_SETS):
        self.sets: Tuple[CardSet, ...] = tuple(sets)

    def find_sets(self, set_name: str, year: Optional[int] = None) -> List[CardSet]:
        """
        Find checklist sets whose name matches `set_name`.

        Exact-year matches are preferred; sets within one year are only
        returned when no exact year exists.
        """
        needle = set_name.lower().strip()
        if not needle:
            return []

        by_name = [
            s for s in self.sets
            if needle in s.name.lower() or s.name.lower() in needle
        ]
        if year is None:
            return by_name

        exact = [s for s in by_name if s.year == year]
        if exact:
            return exact
        return [s for s in by_name if abs(s.year - year) <= 1]

    def find_brand_sets(self, text: str) -> List[CardSet]:
        """Sets whose brand (not set name) is mentioned in `text`."""
        brand = parse_brand(text)
        if brand is None:
            return []
        return [s for s in self.sets if s.brand == brand]


card_checklist = CardChecklist()
