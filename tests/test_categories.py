"""Tests for the category table."""

import pytest

from flipcore.categories import (
    CATEGORY_PROFILES,
    BlockedVerdict,
    Category,
    CategoryProfile,
    CategoryTable,
    UnknownCategoryError,
    get_profile,
)


def test_parse_by_value_and_name():
    assert Category.parse("Trading Cards") == Category.TRADING_CARDS
    assert Category.parse("trading_cards") == Category.TRADING_CARDS
    assert Category.parse(" watches ") == Category.WATCHES
    assert Category.parse(Category.TOYS) is Category.TOYS


def test_unknown_category_rejected():
    with pytest.raises(UnknownCategoryError):
        Category.parse("Beanie Babies")
    with pytest.raises(UnknownCategoryError):
        get_profile("Sneakers")


def test_profiles():
    assert get_profile(Category.TRADING_CARDS).price_ceiling == 500
    assert get_profile(Category.TRADING_CARDS).outbound_shipping == 4
    assert get_profile("Watches").fee_rate == pytest.approx(0.15)
    assert get_profile("Watches").blocked_verdict == BlockedVerdict.NOT_ENOUGH_INFO
    assert get_profile("Shoes").blocked_verdict == BlockedVerdict.BLOCKED
    assert get_profile("Trading Cards").cache_ttl_hours == 24
    assert get_profile("Watches").cache_ttl_hours == 504


def test_table_covers_every_category():
    assert set(CATEGORY_PROFILES) == set(Category)
    assert len(CATEGORY_PROFILES) == len(Category)


def test_table_rejects_string_keys():
    profile = CategoryProfile(price_ceiling=100, fee_rate=0.1, outbound_shipping=5, cache_ttl_hours=24)
    with pytest.raises(UnknownCategoryError):
        CategoryTable({"Shoes": profile})


def test_table_rejects_missing_categories():
    profile = CategoryProfile(price_ceiling=100, fee_rate=0.1, outbound_shipping=5, cache_ttl_hours=24)
    with pytest.raises(ValueError):
        CategoryTable({Category.SHOES: profile})
