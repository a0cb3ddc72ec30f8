"""Watch recognition library: brands, style families and text scoring.

Families are organized Brand -> Collection -> Configuration group. The
library is the closed universe of watches the resolver can price; a brand
alone is never enough.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class WatchBrand(str, Enum):
    """Brands covered by the recognition library."""

    INVICTA = "Invicta"
    SEIKO = "Seiko"
    CITIZEN = "Citizen"
    CASIO = "Casio"
    TIMEX = "Timex"
    BULOVA = "Bulova"
    ORIENT = "Orient"
    FOSSIL = "Fossil"
    TISSOT = "Tissot"
    HAMILTON = "Hamilton"
    TAG_HEUER = "TAG Heuer"
    OMEGA = "Omega"
    ROLEX = "Rolex"
    MOVADO = "Movado"
    MICHAEL_KORS = "Michael Kors"


class ConfigurationGroup(str, Enum):
    """Visual configuration shared across brands."""

    ROTATING_BEZEL_DIVER = "rotating_bezel_diver"
    FIXED_BEZEL_DIVER = "fixed_bezel_diver"
    CHRONO_SUBDIALS = "chrono_subdials"
    CHRONO_TACHYMETER = "chrono_tachymeter"
    SKELETON_DIAL = "skeleton_dial"
    OPEN_HEART = "open_heart"
    DRESS_SIMPLE = "dress_simple"
    SPORT_DIGITAL = "sport_digital"
    GMT_BEZEL = "gmt_bezel"
    UNCLASSIFIED = "unclassified"


BRAND_ALIASES: Dict[WatchBrand, Tuple[str, ...]] = {
    WatchBrand.INVICTA: ("invicta",),
    WatchBrand.SEIKO: ("seiko",),
    WatchBrand.CITIZEN: ("citizen", "eco-drive"),
    WatchBrand.CASIO: ("casio", "g-shock", "gshock", "baby-g"),
    WatchBrand.TIMEX: ("timex",),
    WatchBrand.BULOVA: ("bulova", "accutron"),
    WatchBrand.ORIENT: ("orient",),
    WatchBrand.FOSSIL: ("fossil",),
    WatchBrand.TISSOT: ("tissot",),
    WatchBrand.HAMILTON: ("hamilton",),
    WatchBrand.TAG_HEUER: ("tag heuer", "tag-heuer", "heuer"),
    WatchBrand.OMEGA: ("omega",),
    WatchBrand.ROLEX: ("rolex",),
    WatchBrand.MOVADO: ("movado",),
    WatchBrand.MICHAEL_KORS: ("michael kors", "mk"),
}


@dataclass(frozen=True)
class WatchFamily:
    """A style family within a brand."""

    id: str
    brand: WatchBrand
    name: str
    collection: Optional[str] = None
    configuration_group: ConfigurationGroup = ConfigurationGroup.UNCLASSIFIED
    aliases: Tuple[str, ...] = ()
    model_prefixes: Tuple[str, ...] = ()   # Reference number prefixes, lowercase

    @property
    def display_name(self) -> str:
        return f"{self.brand.value} {self.name}"

    @property
    def match_terms(self) -> Tuple[str, ...]:
        return (self.name.lower(),) + tuple(a.lower() for a in self.aliases)


@dataclass(frozen=True)
class LibraryCandidate:
    """A scored family match (from text scoring or a visual matcher)."""

    family: WatchFamily
    score: float                        # 0.0-1.0
    matched_by: str = "text"            # text, model_number, visual, user


def _f(brand, id, name, collection=None, group=ConfigurationGroup.UNCLASSIFIED, aliases=(), prefixes=()):
    return WatchFamily(
        id=id, brand=brand, name=name, collection=collection,
        configuration_group=group, aliases=tuple(aliases), model_prefixes=tuple(prefixes),
    )


G = ConfigurationGroup

WATCH_FAMILIES: Tuple[WatchFamily, ...] = (
    _f(WatchBrand.INVICTA, "pro_diver", "Pro Diver", "Pro Diver", G.ROTATING_BEZEL_DIVER, ("prodiver",), ("8926", "9937", "9094")),
    _f(WatchBrand.INVICTA, "grand_diver", "Grand Diver", "Pro Diver", G.ROTATING_BEZEL_DIVER, (), ("3044", "3045")),
    _f(WatchBrand.INVICTA, "speedway", "Speedway", "Speedway", G.CHRONO_TACHYMETER, (), ("9223", "9211")),
    _f(WatchBrand.INVICTA, "reserve", "Reserve", "Reserve", G.UNCLASSIFIED),
    _f(WatchBrand.INVICTA, "bolt", "Bolt", "Bolt", G.CHRONO_SUBDIALS),
    _f(WatchBrand.INVICTA, "sea_hunter", "Sea Hunter", "Subaqua", G.ROTATING_BEZEL_DIVER, ("subaqua",)),
    _f(WatchBrand.SEIKO, "seiko_5", "Seiko 5 Sports", "Seiko 5", G.ROTATING_BEZEL_DIVER, ("seiko 5", "5 sports"), ("snk", "srpd")),
    _f(WatchBrand.SEIKO, "prospex_diver", "Prospex Diver", "Prospex", G.ROTATING_BEZEL_DIVER, ("prospex", "turtle", "samurai"), ("srp", "spb", "sbdc")),
    _f(WatchBrand.SEIKO, "presage", "Presage Cocktail Time", "Presage", G.DRESS_SIMPLE, ("presage", "cocktail time"), ("srpb", "sary")),
    _f(WatchBrand.SEIKO, "seiko_gmt", "GMT", "Seiko 5", G.GMT_BEZEL, (), ("ssk",)),
    _f(WatchBrand.CITIZEN, "eco_drive_diver", "Eco-Drive Diver", "Promaster", G.ROTATING_BEZEL_DIVER, ("promaster diver",), ("bn0150", "bn0151")),
    _f(WatchBrand.CITIZEN, "eco_drive_chrono", "Eco-Drive Chronograph", None, G.CHRONO_SUBDIALS, ("eco-drive chronograph",), ("ca0",)),
    _f(WatchBrand.CITIZEN, "promaster", "Promaster", "Promaster", G.UNCLASSIFIED, ("promaster",), ("bj", "jy")),
    _f(WatchBrand.CASIO, "gshock_digital", "G-Shock Classic Digital", "G-Shock", G.SPORT_DIGITAL, ("dw5600", "square g-shock"), ("dw-5600", "gw-m5610", "dw5600")),
    _f(WatchBrand.CASIO, "gshock_analog", "G-Shock Analog-Digital", "G-Shock", G.SPORT_DIGITAL, ("ga-2100", "casioak"), ("ga-", "ga2100")),
    _f(WatchBrand.CASIO, "duro", "Duro", None, G.ROTATING_BEZEL_DIVER, ("mdv106", "marlin"), ("mdv",)),
    _f(WatchBrand.CASIO, "vintage_digital", "Vintage Digital", None, G.SPORT_DIGITAL, ("f91w", "a168"), ("f-91", "a168")),
    _f(WatchBrand.TIMEX, "expedition", "Expedition", None, G.UNCLASSIFIED, ("expedition scout",), ("tw4b",)),
    _f(WatchBrand.TIMEX, "marlin", "Marlin", None, G.DRESS_SIMPLE, (), ("tw2r",)),
    _f(WatchBrand.TIMEX, "q_timex", "Q Timex", None, G.FIXED_BEZEL_DIVER, ("q reissue",), ("tw2t", "tw2v")),
    _f(WatchBrand.BULOVA, "precisionist", "Precisionist", None, G.CHRONO_SUBDIALS, (), ("96b", "98b")),
    _f(WatchBrand.BULOVA, "lunar_pilot", "Lunar Pilot", None, G.CHRONO_TACHYMETER, ("moon watch",), ("96b251", "96b258")),
    _f(WatchBrand.BULOVA, "marine_star", "Marine Star", None, G.ROTATING_BEZEL_DIVER, (), ("98a", "96b")),
    _f(WatchBrand.ORIENT, "bambino", "Bambino", None, G.DRESS_SIMPLE, (), ("fac00", "ra-ac")),
    _f(WatchBrand.ORIENT, "mako", "Mako", None, G.ROTATING_BEZEL_DIVER, ("kamasu",), ("faa02", "ra-aa")),
    _f(WatchBrand.ORIENT, "open_heart", "Open Heart", None, G.OPEN_HEART, ("open heart",), ("ra-ag",)),
    _f(WatchBrand.FOSSIL, "grant", "Grant", None, G.CHRONO_SUBDIALS, (), ("fs4",)),
    _f(WatchBrand.FOSSIL, "machine", "Machine", None, G.CHRONO_SUBDIALS, (), ("fs5",)),
    _f(WatchBrand.FOSSIL, "townsman", "Townsman", None, G.SKELETON_DIAL, (), ("me3",)),
    _f(WatchBrand.TISSOT, "prx", "PRX", None, G.DRESS_SIMPLE, ("prx powermatic",), ("t137",)),
    _f(WatchBrand.TISSOT, "le_locle", "Le Locle", None, G.DRESS_SIMPLE, (), ("t006",)),
    _f(WatchBrand.TISSOT, "seastar", "Seastar", None, G.ROTATING_BEZEL_DIVER, ("seastar 1000",), ("t120",)),
    _f(WatchBrand.HAMILTON, "khaki_field", "Khaki Field", "Khaki", G.DRESS_SIMPLE, ("khaki field mechanical",), ("h694", "h705")),
    _f(WatchBrand.HAMILTON, "khaki_aviation", "Khaki Aviation", "Khaki", G.UNCLASSIFIED, ("khaki pilot",), ("h765", "h644")),
    _f(WatchBrand.HAMILTON, "jazzmaster", "Jazzmaster", None, G.OPEN_HEART, (), ("h325", "h424")),
    _f(WatchBrand.TAG_HEUER, "formula_1", "Formula 1", None, G.ROTATING_BEZEL_DIVER, ("formula one",), ("caz", "waz")),
    _f(WatchBrand.TAG_HEUER, "aquaracer", "Aquaracer", None, G.ROTATING_BEZEL_DIVER, (), ("way", "wbd")),
    _f(WatchBrand.TAG_HEUER, "carrera", "Carrera", None, G.CHRONO_TACHYMETER, (), ("cbn", "cv2", "war")),
    _f(WatchBrand.OMEGA, "seamaster_300", "Seamaster Diver 300M", "Seamaster", G.ROTATING_BEZEL_DIVER, ("seamaster 300", "diver 300m"), ("2531", "2254", "210.30")),
    _f(WatchBrand.OMEGA, "aqua_terra", "Seamaster Aqua Terra", "Seamaster", G.DRESS_SIMPLE, ("aqua terra",), ("220.10", "231.10")),
    _f(WatchBrand.OMEGA, "speedmaster_pro", "Speedmaster Professional", "Speedmaster", G.CHRONO_TACHYMETER, ("moonwatch", "speedmaster"), ("3570.50", "310.30", "311.30")),
    _f(WatchBrand.ROLEX, "submariner", "Submariner", "Oyster Professional", G.ROTATING_BEZEL_DIVER, ("sub",), ("16610", "114060", "116610", "124060", "126610")),
    _f(WatchBrand.ROLEX, "gmt_master", "GMT-Master II", "Oyster Professional", G.GMT_BEZEL, ("gmt master", "pepsi", "batman"), ("16710", "116710", "126710")),
    _f(WatchBrand.ROLEX, "datejust", "Datejust", "Oyster Perpetual", G.DRESS_SIMPLE, (), ("16233", "116234", "126334", "126300")),
    _f(WatchBrand.ROLEX, "daytona", "Daytona", "Oyster Professional", G.CHRONO_TACHYMETER, ("cosmograph",), ("116500", "116520", "126500")),
    _f(WatchBrand.MOVADO, "museum_classic", "Museum Classic", "Museum", G.DRESS_SIMPLE, ("museum",), ("0606", "0607")),
    _f(WatchBrand.MOVADO, "bold", "Bold", None, G.DRESS_SIMPLE, (), ("3600",)),
    _f(WatchBrand.MICHAEL_KORS, "runway", "Runway", None, G.DRESS_SIMPLE, (), ("mk3", "mk8")),
    _f(WatchBrand.MICHAEL_KORS, "bradshaw", "Bradshaw", None, G.CHRONO_SUBDIALS, (), ("mk5", "mk6")),
)

_TOKEN_RE = re.compile(r"[a-z0-9][a-z0-9.\-]*")


def _normalize(text: str) -> str:
    return " ".join(_TOKEN_RE.findall(text.lower()))


def _term_in_text(term: str, text: str) -> bool:
    return re.search(r"(?<![a-z0-9])" + re.escape(term) + r"(?![a-z0-9])", text) is not None


class WatchLibrary:
    """Lookup and scoring over watch families."""

    def __init__(self, families: Tuple[WatchFamily, ...] = WATCH_FAMILIES):
        self.families = families
        self._by_id = {f"{f.brand.name.lower()}:{f.id}": f for f in families}

    def detect_brand(self, text: Optional[str]) -> Optional[WatchBrand]:
        """Find a library brand mentioned in free text."""
        if not text:
            return None
        normalized = _normalize(text)
        for brand, aliases in BRAND_ALIASES.items():
            if any(_term_in_text(alias, normalized) for alias in aliases):
                return brand
        return None

    def families_for(self, brand: WatchBrand) -> List[WatchFamily]:
        return [f for f in self.families if f.brand == brand]

    def get(self, family_key: str) -> Optional[WatchFamily]:
        """Look a family up by "brand:id" key (e.g. "rolex:submariner")."""
        return self._by_id.get(family_key.lower())

    def match_model_number(self, brand: WatchBrand, model_number: Optional[str]) -> Optional[WatchFamily]:
        """Return the single family whose reference prefix matches, if any."""
        if not model_number:
            return None
        ref = model_number.lower().replace(" ", "")
        matches = [
            f for f in self.families_for(brand)
            if any(ref.startswith(p.replace(" ", "")) for p in f.model_prefixes)
        ]
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            # Longest prefix wins
            matches.sort(
                key=lambda f: max(len(p) for p in f.model_prefixes if ref.startswith(p.replace(" ", ""))),
                reverse=True,
            )
            return matches[0]
        return None

    def score_families(self, brand: WatchBrand, text: str) -> List[LibraryCandidate]:
        """
        Score every family of `brand` against free text.

        A full family name or alias scores 1.0; otherwise the score is the
        fraction of family-name words present in the text.
        """
        normalized = _normalize(text)
        words = set(normalized.split())
        candidates: List[LibraryCandidate] = []
        for family in self.families_for(brand):
            if any(_term_in_text(term, normalized) for term in family.match_terms):
                score = 1.0
            else:
                name_words = [w for w in _normalize(family.name).split() if len(w) > 1]
                if not name_words:
                    continue
                score = sum(1 for w in name_words if w in words) / len(name_words)
            if score > 0:
                candidates.append(LibraryCandidate(family=family, score=round(score, 3)))
        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates


watch_library = WatchLibrary()
