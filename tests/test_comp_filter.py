"""Tests for comp relevance filtering and search query building."""

from flipcore.categories import Category
from flipcore.identity.base import ConfidenceTier
from flipcore.identity.cards import CardIdentity, VariantFinish
from flipcore.identity.watches import WatchCondition, WatchIdentity
from flipcore.pricing.comp_filter import (
    build_optimized_query,
    extract_keywords,
    filter_comps,
    keyword_match_score,
    normalize_condition,
)
from flipcore.pricing.queries import (
    CARD_NEGATIVE_KEYWORDS,
    build_card_query,
    build_negative_keywords,
    build_watch_query,
)
from flipcore.services.comps import CompSale

QUERY = "Rolex Submariner 116610LN"


def sale(title, price, condition=""):
    return CompSale(title=title, price=price, condition=condition)


def test_parts_and_lots_excluded():
    result = filter_comps(
        [
            sale("Rolex Submariner 116610LN black dial", 9500),
            sale("Rolex Submariner 116610LN for parts", 3000),
            sale("Lot of 3 Rolex Submariner 116610LN", 9000),
        ],
        QUERY,
        Category.WATCHES,
    )

    assert len(result.kept) == 1
    assert result.excluded_count == 2
    assert all(key.startswith("excluded:pattern:") for key in result.exclusion_reasons)


def test_category_accessories_excluded_only_for_category():
    sales = [sale("Rolex Submariner 116610LN band only", 1500), sale("Rolex Submariner 116610LN", 9500)]

    assert len(filter_comps(sales, QUERY, Category.WATCHES).kept) == 1
    assert len(filter_comps(sales, QUERY).kept) == 2


def test_low_keyword_match_excluded():
    result = filter_comps([sale("Casio G-Shock DW5600", 60), sale("Rolex Submariner", 9000)], QUERY)

    assert [c.title for c in result.kept] == ["Rolex Submariner"]
    assert result.exclusion_reasons == {"excluded:low_match": 1}


def test_price_extremes_relative_to_median():
    prices = [100, 110, 120, 130, 2000, 5]
    result = filter_comps([sale("Seiko SRPD55", p) for p in prices], "Seiko SRPD55")

    assert sorted(result.prices) == [100, 110, 120, 130]
    assert result.exclusion_reasons["excluded:price_too_high"] == 1
    assert result.exclusion_reasons["excluded:price_too_low"] == 1


def test_zero_prices_dropped():
    result = filter_comps([sale("Seiko SRPD55", 0), sale("Seiko SRPD55", 150)], "Seiko SRPD55")

    assert result.prices == [150]
    assert result.exclusion_reasons["excluded:no_price"] == 1


def test_strict_condition_separates_new_and_used():
    sales = [
        sale("Seiko SRPD55", 150, "Pre-owned"),
        sale("Seiko SRPD55", 260, "Brand New"),
        sale("Seiko SRPD55", 170, ""),
    ]

    strict = filter_comps(sales, "Seiko SRPD55", target_condition="used", strict_condition=True)
    loose = filter_comps(sales, "Seiko SRPD55", target_condition="used")

    assert sorted(strict.prices) == [150, 170]
    assert strict.exclusion_reasons == {"excluded:condition:new": 1}
    assert len(loose.kept) == 3


def test_card_exclusions():
    result = filter_comps(
        [
            sale("2020 Prizm Joe Burrow #325 custom card", 40),
            sale("2020 Prizm Joe Burrow #325 reprint", 42),
            sale("2020 Prizm Joe Burrow #325", 45),
        ],
        "2020 Panini Prizm Joe Burrow #325",
        "Trading Cards",
    )

    assert result.prices == [45]


def test_condition_normalization():
    assert normalize_condition("Pre-owned") == "used"
    assert normalize_condition("For parts or not working") == "parts"
    assert normalize_condition("Certified Refurbished") == "refurbished"
    assert normalize_condition("New with tags") == "new"
    assert normalize_condition(None) == "unknown"


def test_keywords_and_match_score():
    assert extract_keywords("The Rolex, Submariner w/ box!") == ["rolex", "submariner", "box"]
    assert keyword_match_score("Rolex Submariner", "Rolex Submariner Date 116610LN") == 1.0
    assert keyword_match_score("Rolex Submariner", "Rolex Datejust") == 0.5
    assert keyword_match_score("", "anything") == 0.0


def test_optimized_query_dedupes_words():
    assert build_optimized_query(["2020 Panini", None, "Panini Prizm", ""]) == "2020 Panini Prizm"
    assert build_optimized_query(["a1 a2 a3 a4"], max_words=2) == "a1 a2"


def test_negative_keywords_by_condition():
    used = build_negative_keywords(WatchCondition.USED)
    new = build_negative_keywords("new")

    assert "parts" in used and "new" in used
    assert "used" in new and "new" not in new
    assert build_negative_keywords("PARTS") == []
    assert "lot" in CARD_NEGATIVE_KEYWORDS


def test_watch_query():
    identity = WatchIdentity(
        category=Category.WATCHES,
        confidence=ConfidenceTier.HIGH,
        brand="Seiko",
        model_name="Seiko 5 Sports",
        model_number="SRPD55",
        collection="Seiko 5",
        dial_color="black",
        bezel_type="diver bezel",
        materials="stainless steel",
    )

    assert build_watch_query(identity) == "Seiko SRPD55 Seiko 5 black dial diver bezel stainless steel"


def test_watch_query_falls_back_to_model_name():
    identity = WatchIdentity(
        category=Category.WATCHES,
        confidence=ConfidenceTier.ESTIMATE,
        brand="Tissot",
        model_name="PRX",
        materials="unknown",
    )

    assert build_watch_query(identity) == "Tissot PRX"


def burrow(**overrides):
    values = dict(
        category=Category.TRADING_CARDS,
        confidence=ConfidenceTier.HIGH,
        name="Joe Burrow",
        set_name="Prizm",
        brand="Panini",
        year=2020,
        card_number="325",
        variant_finish=VariantFinish.BASE,
    )
    values.update(overrides)
    return CardIdentity(**values)


def test_card_query_base():
    assert build_card_query(burrow()) == "2020 Panini Prizm Joe Burrow #325"


def test_card_query_parallel_and_grade():
    identity = burrow(
        variant_finish=VariantFinish.REFRACTOR,
        variant_label="Silver Prizm",
        grading_company="PSA",
        grade="10",
    )

    assert build_card_query(identity) == "2020 Panini Prizm Joe Burrow #325 Silver PSA 10"


def test_card_query_skips_unconfirmed_variant():
    identity = burrow(
        variant_finish=VariantFinish.REFRACTOR,
        variant_label="Tie-Dye",
        variant_confirmed=False,
        print_run=25,
    )

    assert build_card_query(identity) == "2020 Panini Prizm Joe Burrow #325 /25"
