"""Price truth cache.

Snapshots are keyed by category + identity fingerprint + condition bucket
and expire after a per-category TTL. Expired entries are kept for a grace
window so a failed comp search can fall back to the last known snapshot
(stale-on-error). Entries are always replaced whole.

Backends:
- memory: in-process dict (default, also used in tests)
- redis: shared cache via redis.asyncio, JSON payloads
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis.asyncio as redis

from flipcore.categories import Category, get_profile
from flipcore.config import settings
from flipcore.metrics import record_cache_lookup
from flipcore.pricing.price_truth import PriceTruth

logger = logging.getLogger(__name__)

STALE_GRACE_SECONDS = 7 * 24 * 3600
KEY_PREFIX = "price_truth:"


@dataclass(frozen=True)
class CacheEntry:
    truth: PriceTruth
    stored_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_json(self) -> str:
        return json.dumps({
            "truth": self.truth.to_dict(),
            "stored_at": self.stored_at,
            "expires_at": self.expires_at,
        })

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        data = json.loads(raw)
        return cls(
            truth=PriceTruth.from_dict(data["truth"]),
            stored_at=float(data["stored_at"]),
            expires_at=float(data["expires_at"]),
        )


class MemoryCacheBackend:
    """In-process cache backend."""

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}

    async def get_entry(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    async def set_entry(self, key: str, entry: CacheEntry, retain_seconds: int):
        self._entries[key] = entry

    async def delete(self, key: str):
        self._entries.pop(key, None)

    async def close(self):
        self._entries.clear()


class RedisCacheBackend:
    """Redis cache backend. Keys outlive their TTL by the stale grace window."""

    def __init__(self, redis_url: Optional[str] = None):
        self.redis_url = redis_url or settings.redis_url
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def get_entry(self, key: str) -> Optional[CacheEntry]:
        client = await self._get_redis()
        raw = await client.get(KEY_PREFIX + key)
        if not raw:
            return None
        return CacheEntry.from_json(raw)

    async def set_entry(self, key: str, entry: CacheEntry, retain_seconds: int):
        client = await self._get_redis()
        # Single SET replaces the whole snapshot
        await client.set(KEY_PREFIX + key, entry.to_json(), ex=max(1, int(retain_seconds)))

    async def delete(self, key: str):
        client = await self._get_redis()
        await client.delete(KEY_PREFIX + key)

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None


class PriceTruthCache:
    """TTL cache of price truth snapshots with stale-on-error fallback."""

    def __init__(
        self,
        backend=None,
        clock: Callable[[], float] = time.time,
        stale_grace_seconds: int = STALE_GRACE_SECONDS,
    ):
        self.backend = backend or MemoryCacheBackend()
        self.clock = clock
        self.stale_grace_seconds = stale_grace_seconds

    @staticmethod
    def ttl_seconds(category: Optional[Category | str]) -> int:
        """Validity window for a category (default TTL when unknown)."""
        if category is None:
            return settings.default_cache_ttl_hours * 3600
        return get_profile(category).cache_ttl_hours * 3600

    async def _read(self, key: str) -> Optional[CacheEntry]:
        try:
            return await self.backend.get_entry(key)
        except (redis.RedisError, OSError, ValueError, KeyError) as e:
            logger.warning(f"Price cache read failed for {key}: {e}")
            return None

    async def get(self, key: str) -> Optional[PriceTruth]:
        """Return a fresh snapshot, or None on miss/expiry."""
        entry = await self._read(key)
        if entry is None or entry.is_expired(self.clock()):
            record_cache_lookup("miss")
            return None
        record_cache_lookup("hit")
        logger.debug(f"Price cache hit: {key}")
        return entry.truth

    async def get_stale(self, key: str) -> Optional[PriceTruth]:
        """Return the stored snapshot even if expired (for stale-on-error)."""
        entry = await self._read(key)
        if entry is None:
            return None
        if entry.is_expired(self.clock()):
            if self.clock() - entry.expires_at > self.stale_grace_seconds:
                return None
            record_cache_lookup("stale")
            logger.info(f"Serving stale price truth: {key}")
        return entry.truth

    async def set(self, truth: PriceTruth, key: Optional[str] = None) -> bool:
        """
        Store a snapshot, replacing any previous one.

        Snapshots without a usable anchor are not cached so the next scan
        retries the comp search.

        Returns:
            True if stored
        """
        key = key or truth.cache_key
        if not key or not truth.has_anchor:
            return False
        now = self.clock()
        ttl = self.ttl_seconds(truth.category)
        entry = CacheEntry(truth=truth, stored_at=now, expires_at=now + ttl)
        try:
            await self.backend.set_entry(key, entry, ttl + self.stale_grace_seconds)
        except (redis.RedisError, OSError) as e:
            logger.warning(f"Price cache write failed for {key}: {e}")
            return False
        return True

    async def invalidate(self, key: str):
        try:
            await self.backend.delete(key)
        except (redis.RedisError, OSError) as e:
            logger.warning(f"Price cache invalidate failed for {key}: {e}")

    async def close(self):
        await self.backend.close()


def create_price_cache(backend_name: Optional[str] = None) -> PriceTruthCache:
    """Build a cache for the configured backend ("memory" or "redis")."""
    name = (backend_name or settings.price_cache_backend).lower()
    if name == "redis":
        return PriceTruthCache(RedisCacheBackend())
    if name == "memory":
        return PriceTruthCache(MemoryCacheBackend())
    raise ValueError(f"Unknown price cache backend: {name!r}")


# Global cache instance
price_cache = create_price_cache()
