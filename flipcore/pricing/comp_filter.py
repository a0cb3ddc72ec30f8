"""Relevance filtering for comparable sales.

Only keeps comps that closely match the identified item:
1. Exclude parts, repairs, bundles, lots and fakes
2. Exclude category-specific accessories (bands, sleeves, chargers...)
3. Optionally keep new and used comps apart
4. Require a minimum title keyword match
5. Drop extreme prices relative to the median before statistical filtering
"""

import logging
import re
import statistics
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from flipcore.categories import Category
from flipcore.services.comps import CompSale

logger = logging.getLogger(__name__)

MIN_MATCH_SCORE = 0.3
MAX_PRICE_MULTIPLIER = 5.0
MIN_PRICE_MULTIPLIER = 0.1

UNIVERSAL_EXCLUSIONS = [
    re.compile(r"\b(parts?|repair|for parts|broken|not working|needs work|non.?working|damaged|as.?is)\b", re.I),
    re.compile(r"\b(bundle|lot of \d+|set of \d+|collection of|bulk|wholesale)\b", re.I),
    re.compile(r"\b(box only|papers only|certificate only|manual only)\b", re.I),
    re.compile(r"\b(display|dummy|replica|fake|counterfeit|knock.?off)\b", re.I),
    re.compile(r"\b(empty box|box and papers|no watch|no item)\b", re.I),
]

CATEGORY_EXCLUSIONS: Dict[Category, List[re.Pattern]] = {
    Category.WATCHES: [
        re.compile(r"\b(band only|strap only|case only|dial only|movement only|bezel only|crown only)\b", re.I),
        re.compile(r"\b(replacement band|spare strap|extra band|bezel insert)\b", re.I),
        re.compile(r"\b(charger|charging cable|dock|stand)\b", re.I),
        re.compile(r"\b(screen protector|tempered glass|film)\b", re.I),
    ],
    Category.SHOES: [
        re.compile(r"\b(insole|sole only|laces only|box only)\b", re.I),
        re.compile(r"\b(cleaning kit|shoe tree|shoe horn)\b", re.I),
        re.compile(r"\b(left shoe only|right shoe only|single shoe)\b", re.I),
        re.compile(r"\b(sample|factory second|defect)\b", re.I),
    ],
    Category.TRADING_CARDS: [
        re.compile(r"\b(empty binder|binder only|sleeves?|top ?loaders?)\b", re.I),
        re.compile(r"\b(repack|mystery pack|grab bag)\b", re.I),
        re.compile(r"\b(creased|corner ding|whitening)\b", re.I),
        re.compile(r"\b(custom|reprint|digital|bulk commons|base lot)\b", re.I),
    ],
    Category.COLLECTIBLES: [
        re.compile(r"\b(no figure|damaged box)\b", re.I),
        re.compile(r"\b(custom|repaint|kitbash|bootleg)\b", re.I),
    ],
    Category.TOYS: [
        re.compile(r"\b(no figure|damaged box|instructions only|minifigs? only)\b", re.I),
        re.compile(r"\b(custom|repaint|kitbash|bootleg|moc)\b", re.I),
    ],
    Category.ELECTRONICS: [
        re.compile(r"\b(charger only|cable only|adapter only|power supply)\b", re.I),
        re.compile(r"\b(case|cover|screen protector|film)\b", re.I),
        re.compile(r"\b(broken screen|cracked)\b", re.I),
        re.compile(r"\b(locked|icloud locked|blacklisted|bad esn)\b", re.I),
    ],
    Category.OTHER: [],
}

CONDITION_KEYWORDS: Dict[str, List[str]] = {
    "parts": ["for parts", "not working", "parts only"],
    "refurbished": ["refurbished", "renewed", "certified refurbished", "manufacturer refurbished"],
    "new": ["brand new", "new", "sealed", "factory sealed", "unopened", "bnib", "nib", "mint"],
    "used": ["used", "pre-owned", "preowned", "pre owned", "excellent", "good", "fair", "worn"],
}

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
    "by", "from", "is", "are", "was", "were", "be", "been", "being", "have", "has",
    "had", "do", "does", "did", "will", "would", "could", "should", "may", "might",
    "must", "shall", "can", "this", "that", "these", "those", "it", "its", "they",
    "their", "them", "he", "she", "his", "her", "we", "our", "you", "your",
    "free", "shipping", "fast", "ship", "ships", "shipped", "usa", "us", "new",
    "authentic", "genuine", "original", "official", "100%", "w/", "w/o",
})


@dataclass
class CompFilterResult:
    """Result of relevance filtering."""

    kept: List[CompSale] = field(default_factory=list)
    excluded_count: int = 0
    exclusion_reasons: Dict[str, int] = field(default_factory=dict)
    average_match_score: float = 0.0

    @property
    def prices(self) -> List[float]:
        return [c.price for c in self.kept]


def normalize_condition(text: Optional[str]) -> str:
    """Map free-text condition onto new / used / refurbished / parts / unknown."""
    lower = (text or "").lower()
    for bucket, keywords in CONDITION_KEYWORDS.items():
        if any(k in lower for k in keywords):
            return bucket
    return "unknown"


def extract_keywords(title: str) -> List[str]:
    """Lowercase title words without punctuation or stop words."""
    cleaned = re.sub(r"[^\w\s#-]", " ", title.lower())
    return [w for w in cleaned.split() if len(w) > 1 and w not in STOP_WORDS]


def keyword_match_score(target_title: str, comp_title: str) -> float:
    """Fraction of target keywords present in the comp title."""
    target = extract_keywords(target_title)
    if not target:
        return 0.0
    comp = set(extract_keywords(comp_title))
    return sum(1 for k in target if k in comp) / len(target)


def exclusion_match(title: str, category: Optional[Category]) -> Optional[str]:
    """Return the matched exclusion phrase, or None if the title is clean."""
    patterns = list(UNIVERSAL_EXCLUSIONS)
    if category is not None:
        patterns.extend(CATEGORY_EXCLUSIONS.get(category, []))
    for pattern in patterns:
        match = pattern.search(title)
        if match:
            return match.group(0).lower()
    return None


def filter_comps(
    sales: List[CompSale],
    query: str,
    category: Optional[Category | str] = None,
    target_condition: Optional[str] = None,
    min_match_score: float = MIN_MATCH_SCORE,
    strict_condition: bool = False,
) -> CompFilterResult:
    """
    Keep only comps relevant to the identified item.

    Args:
        sales: Raw comparable sales
        query: Search query / target title used for keyword matching
        category: Category for accessory exclusions
        target_condition: Condition of the item being priced
        min_match_score: Minimum keyword match fraction
        strict_condition: Drop comps whose condition differs from the target

    Returns:
        CompFilterResult with kept comps and a per-reason tally
    """
    cat = Category.parse(category) if category is not None else None
    reasons: Counter = Counter()
    kept: List[CompSale] = []
    scores: List[float] = []

    valid_prices = [s.price for s in sales if s.price > 0]
    median_price = statistics.median(valid_prices) if valid_prices else 0.0
    wanted_condition = normalize_condition(target_condition) if target_condition else None

    for sale in sales:
        if sale.price <= 0:
            reasons["excluded:no_price"] += 1
            continue

        phrase = exclusion_match(sale.title or "", cat)
        if phrase:
            reasons[f"excluded:pattern:{phrase[:20]}"] += 1
            continue

        if strict_condition and wanted_condition and wanted_condition != "unknown":
            condition = normalize_condition(sale.condition)
            if condition != "unknown" and condition != wanted_condition:
                reasons[f"excluded:condition:{condition}"] += 1
                continue

        score = keyword_match_score(query, sale.title or "")
        if score < min_match_score:
            reasons["excluded:low_match"] += 1
            continue

        if median_price > 0:
            if sale.price > median_price * MAX_PRICE_MULTIPLIER:
                reasons["excluded:price_too_high"] += 1
                continue
            if sale.price < median_price * MIN_PRICE_MULTIPLIER:
                reasons["excluded:price_too_low"] += 1
                continue

        kept.append(sale)
        scores.append(score)

    result = CompFilterResult(
        kept=kept,
        excluded_count=len(sales) - len(kept),
        exclusion_reasons=dict(reasons),
        average_match_score=sum(scores) / len(scores) if scores else 0.0,
    )
    if result.excluded_count:
        logger.debug(
            f"Comp filter kept {len(kept)}/{len(sales)} for '{query}': {result.exclusion_reasons}"
        )
    return result


def build_optimized_query(parts: List[Optional[str]], max_words: int = 12) -> str:
    """Join query parts, dropping blanks and repeated words."""
    seen = set()
    words: List[str] = []
    for part in parts:
        if not part:
            continue
        for word in str(part).split():
            key = word.lower()
            if key in seen:
                continue
            seen.add(key)
            words.append(word)
    return " ".join(words[:max_words])
