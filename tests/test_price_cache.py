"""Tests for the price truth cache."""

from dataclasses import replace

import pytest
import redis.asyncio as redis

from flipcore.categories import Category
from flipcore.identity.base import ConfidenceTier
from flipcore.pricing.cache import (
    KEY_PREFIX,
    CacheEntry,
    PriceTruthCache,
    RedisCacheBackend,
    create_price_cache,
)
from flipcore.pricing.price_truth import PriceTruth, PricingSource, blocked_price_truth, price_truth_cache_key

HOUR = 3600
KEY = price_truth_cache_key(Category.TRADING_CARDS, "2020-panini-prizm-325-base", "raw")


def snapshot(anchor=43.5, category=Category.TRADING_CARDS):
    return PriceTruth(
        source_used=PricingSource.SOLD_COMPS,
        anchor_price=anchor,
        pricing_confidence=ConfidenceTier.HIGH,
        category=category,
        comp_count=5,
        spread_ratio=float("inf"),
        cache_key=KEY,
        warnings=("note",),
    )


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.expiry = {}
        self.closed = False

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        self.expiry[key] = ex

    async def delete(self, key):
        self.store.pop(key, None)

    async def aclose(self):
        self.closed = True


class BrokenBackend:
    async def get_entry(self, key):
        raise OSError("connection refused")

    async def set_entry(self, key, entry, retain_seconds):
        raise OSError("connection refused")

    async def delete(self, key):
        raise OSError("connection refused")

    async def close(self):
        pass


def test_cache_key_format():
    assert KEY == "trading_cards:2020-panini-prizm-325-base:raw"
    assert price_truth_cache_key("Watches", "Rolex_116610LN_FULL_SET", None) == "watches:rolex_116610ln_full_set:any"


def test_ttl_per_category():
    assert PriceTruthCache.ttl_seconds(Category.TRADING_CARDS) == 24 * HOUR
    assert PriceTruthCache.ttl_seconds("Watches") == 504 * HOUR
    assert PriceTruthCache.ttl_seconds(None) == 168 * HOUR


@pytest.mark.asyncio
async def test_fresh_hit_then_expiry(memory_cache, clock):
    assert await memory_cache.set(snapshot())

    hit = await memory_cache.get(KEY)
    assert hit.anchor_price == 43.5

    clock.advance(24 * HOUR)
    assert await memory_cache.get(KEY) is None


@pytest.mark.asyncio
async def test_stale_served_within_grace(memory_cache, clock):
    await memory_cache.set(snapshot())

    clock.advance(25 * HOUR)
    stale = await memory_cache.get_stale(KEY)
    assert stale is not None
    assert stale.anchor_price == 43.5

    clock.advance(8 * 24 * HOUR)
    assert await memory_cache.get_stale(KEY) is None


@pytest.mark.asyncio
async def test_snapshot_replaced_whole(memory_cache):
    await memory_cache.set(snapshot(40.0))
    await memory_cache.set(snapshot(50.0))

    assert (await memory_cache.get(KEY)).anchor_price == 50.0


@pytest.mark.asyncio
async def test_blocked_snapshots_not_cached(memory_cache):
    blocked = blocked_price_truth("NO_COMPS", Category.TRADING_CARDS, cache_key=KEY)

    assert not await memory_cache.set(blocked)
    assert not await memory_cache.set(replace(snapshot(), cache_key=None))
    assert await memory_cache.get(KEY) is None


@pytest.mark.asyncio
async def test_invalidate(memory_cache):
    await memory_cache.set(snapshot())
    await memory_cache.invalidate(KEY)

    assert await memory_cache.get(KEY) is None
    assert await memory_cache.get_stale(KEY) is None


@pytest.mark.asyncio
async def test_backend_failures_are_misses():
    cache = PriceTruthCache(BrokenBackend())

    assert await cache.get(KEY) is None
    assert await cache.get_stale(KEY) is None
    assert not await cache.set(snapshot())
    await cache.invalidate(KEY)


def test_entry_json_roundtrip():
    entry = CacheEntry(truth=snapshot(), stored_at=100.0, expires_at=200.0)

    restored = CacheEntry.from_json(entry.to_json())

    assert restored.truth.anchor_price == 43.5
    assert restored.truth.category == Category.TRADING_CARDS
    assert restored.truth.pricing_confidence == ConfidenceTier.HIGH
    assert restored.truth.spread_ratio is None
    assert restored.truth.warnings == ("note",)
    assert restored.expires_at == 200.0


@pytest.mark.asyncio
async def test_redis_backend_prefixes_and_retains(clock):
    backend = RedisCacheBackend("redis://localhost:6379/0")
    fake = FakeRedis()
    backend._redis = fake
    cache = PriceTruthCache(backend, clock=clock)

    await cache.set(snapshot())

    stored_key = KEY_PREFIX + KEY
    assert stored_key in fake.store
    assert fake.expiry[stored_key] == 24 * HOUR + cache.stale_grace_seconds
    assert (await cache.get(KEY)).anchor_price == 43.5

    await cache.close()
    assert fake.closed
    assert backend._redis is None


def test_create_price_cache():
    assert isinstance(create_price_cache("redis").backend, RedisCacheBackend)
    with pytest.raises(ValueError):
        create_price_cache("memcached")


@pytest.mark.asyncio
async def test_redis_backend_live():
    backend = RedisCacheBackend()
    try:
        client = await backend._get_redis()
        await client.ping()
    except (redis.RedisError, OSError):
        await backend.close()
        pytest.skip("Redis not available")

    cache = PriceTruthCache(backend)
    key = "trading_cards:live-test-fingerprint:raw"
    try:
        assert await cache.set(snapshot(), key=key)
        assert (await cache.get(key)).anchor_price == 43.5
        await cache.invalidate(key)
        assert await cache.get(key) is None
    finally:
        await cache.close()
