"""
TTL cache shared by the normalizer, interaction checker and provider layer.

Entries live in an in-process ``key -> {value, timestamp}`` map. Expired
entries are dropped lazily on read and swept in bulk whenever the map grows
past the high-water mark. When ``REDIS_URL`` is configured, writes are
mirrored to Redis and local misses fall through to it.
"""

import json
import hashlib
import time
from typing import Any, Optional

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from medguard.config import get_settings
from medguard.core.logging import get_logger
from medguard.core.metrics import CACHE_LOOKUPS

logger = get_logger(__name__)

KEY_NAMESPACE = "medguard"


class CacheService:
    """In-memory TTL cache with an optional Redis mirror."""

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        max_entries: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.CACHE_TTL
        self.max_entries = max_entries if max_entries is not None else settings.CACHE_MAX_ENTRIES
        self._store: dict[str, dict[str, Any]] = {}
        self._hits = 0
        self._misses = 0
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None

    async def connect(self, url: Optional[str] = None) -> None:
        """Attach the Redis mirror. Caching stays in-memory if this fails."""
        url = url or get_settings().REDIS_URL
        if not url:
            return
        try:
            self._pool = ConnectionPool.from_url(
                url,
                max_connections=20,
                decode_responses=True
            )
            self._client = redis.Redis(connection_pool=self._pool)
            await self._client.ping()
            logger.info("Connected to Redis", extra={"url": url})
        except Exception as e:
            logger.warning(f"Redis connection failed: {e}. Using in-memory cache only.")
            self._client = None

    async def disconnect(self) -> None:
        """Close the Redis mirror, if any."""
        if self._client:
            await self._client.close()
            self._client = None
        if self._pool:
            await self._pool.disconnect()
            self._pool = None

    @property
    def redis_connected(self) -> bool:
        return self._client is not None

    @staticmethod
    def make_key(prefix: str, *parts: Any) -> str:
        """
        Build a cache key from a prefix and arguments.

        Plain string parts are kept readable; anything else is hashed.
        """
        if all(isinstance(p, str) for p in parts):
            return f"{prefix}:{'|'.join(p.lower() for p in parts)}"
        key_data = json.dumps(parts, sort_keys=True, default=str)
        return f"{prefix}:{hashlib.md5(key_data.encode()).hexdigest()[:16]}"

    def _is_expired(self, entry: dict[str, Any], now: float) -> bool:
        return now - entry["timestamp"] > self.ttl_seconds

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when missing or expired."""
        prefix = key.split(":", 1)[0]
        now = time.time()
        entry = self._store.get(key)

        if entry is not None and self._is_expired(entry, now):
            del self._store[key]
            entry = None

        if entry is None and self._client is not None:
            entry = await self._get_remote(key)
            if entry is not None:
                self._store[key] = entry

        if entry is None:
            self._misses += 1
            CACHE_LOOKUPS.labels(prefix=prefix, outcome="miss").inc()
            return None

        self._hits += 1
        CACHE_LOOKUPS.labels(prefix=prefix, outcome="hit").inc()
        return entry["value"]

    async def set(self, key: str, value: Any) -> None:
        """Store a value and sweep expired entries past the high-water mark."""
        entry = {"value": value, "timestamp": time.time()}
        self._store[key] = entry

        if len(self._store) > self.max_entries:
            self.sweep()

        if self._client is not None:
            await self._set_remote(key, entry)

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)
        if self._client is not None:
            try:
                await self._client.delete(f"{KEY_NAMESPACE}:{key}")
            except Exception as e:
                logger.error(f"Cache delete error: {e}", extra={"key": key})

    def sweep(self) -> int:
        """Evict every expired entry. Returns the number removed."""
        now = time.time()
        expired = [k for k, entry in self._store.items() if self._is_expired(entry, now)]
        for key in expired:
            del self._store[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")
        return len(expired)

    def clear(self) -> None:
        self._store.clear()
        self._hits = 0
        self._misses = 0

    def count(self, prefix: str) -> int:
        return sum(1 for key in self._store if key.startswith(f"{prefix}:"))

    def stats(self) -> dict[str, Any]:
        """Entry counts and hit ratio for the stats endpoint."""
        return {
            "total_entries": len(self._store),
            "drugs": self.count("drug"),
            "interactions": self.count("interaction"),
            "provider": self.count("provider"),
            "hits": self._hits,
            "misses": self._misses,
            "redis": self.redis_connected,
        }

    async def _get_remote(self, key: str) -> Optional[dict[str, Any]]:
        try:
            raw = await self._client.get(f"{KEY_NAMESPACE}:{key}")
            if not raw:
                return None
            entry = json.loads(raw)
            if self._is_expired(entry, time.time()):
                return None
            return entry
        except Exception as e:
            logger.error(f"Cache get error: {e}", extra={"key": key})
            return None

    async def _set_remote(self, key: str, entry: dict[str, Any]) -> None:
        try:
            await self._client.setex(
                f"{KEY_NAMESPACE}:{key}",
                self.ttl_seconds,
                json.dumps(entry, default=str),
            )
        except Exception as e:
            logger.error(f"Cache set error: {e}", extra={"key": key})


# Singleton instance
_cache_service: Optional[CacheService] = None


async def get_cache_service() -> CacheService:
    """Get the global cache service instance."""
    global _cache_service
    if _cache_service is None:
        _cache_service = CacheService()
        await _cache_service.connect()
    return _cache_service


async def close_cache_service() -> None:
    """Close the global cache service."""
    global _cache_service
    if _cache_service is not None:
        await _cache_service.disconnect()
        _cache_service = None
