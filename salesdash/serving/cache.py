"""
TTL Cache Module

Two process-wide caches back the upstream integrations:
- the analytics query cache (ShopifyQL results keyed by api version + query)
- the access-scope cache (granted Shopify scopes)

Both are created in the application lifespan and passed to the clients that
use them. Entries expire lazily on read. The in-memory backend is the
default; ``ANALYTICS_CACHE_BACKEND=redis`` stores JSON payloads in Redis so
several workers share one cache.
"""

import json
import time
from typing import Any, Callable, Dict, Optional, Tuple

import structlog
from redis.asyncio import ConnectionPool, Redis

logger = structlog.get_logger(__name__)

Clock = Callable[[], float]


class TTLCache:
    """
    In-memory cache with a fixed time-to-live per entry.

    Usage:
        cache = TTLCache(ttl_seconds=60, name="shopifyql")
        await cache.set("2025-10:FROM sales ...", payload)
        hit = await cache.get("2025-10:FROM sales ...")
    """

    def __init__(self, ttl_seconds: float, name: str = "cache", clock: Optional[Clock] = None):
        self.ttl_seconds = float(ttl_seconds)
        self.name = name
        self._clock = clock or time.monotonic
        self._entries: Dict[str, Tuple[float, Any]] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        cached_at, value = entry
        if self._clock() - cached_at > self.ttl_seconds:
            del self._entries[key]
            logger.debug("Cache entry expired", cache=self.name, key=key[:80])
            return None
        return value

    async def set(self, key: str, value: Any) -> None:
        self._entries[key] = (self._clock(), value)

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisTTLCache:
    """
    Redis-backed cache with the same interface as TTLCache.

    Values are stored as JSON under ``{prefix}:{key}`` with SETEX so Redis
    handles expiry.
    """

    def __init__(self, client: Redis, ttl_seconds: float, name: str = "cache", prefix: str = "salesdash"):
        self.client = client
        self.ttl_seconds = float(ttl_seconds)
        self.name = name
        self.prefix = f"{prefix}:{name}"

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        value = await self.client.get(self._key(key))
        if value is None:
            return None
        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Discarding undecodable cache entry", cache=self.name)
            return None

    async def set(self, key: str, value: Any) -> None:
        try:
            serialized = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.warning("Failed to serialize value for cache", cache=self.name, error=str(e))
            return
        await self.client.setex(self._key(key), max(1, int(self.ttl_seconds)), serialized)

    async def delete(self, key: str) -> bool:
        return (await self.client.delete(self._key(key))) > 0

    async def clear(self) -> None:
        keys = await self.client.keys(f"{self.prefix}:*")
        if keys:
            await self.client.delete(*keys)


async def connect_redis(url: str, socket_timeout: int = 5) -> Redis:
    """Open a Redis client and verify it answers PING."""
    pool = ConnectionPool.from_url(url, socket_timeout=socket_timeout, decode_responses=True)
    client = Redis(connection_pool=pool)
    try:
        await client.ping()
        logger.info("Redis connection established")
    except Exception as e:
        logger.error("Redis connection failed", error=str(e))
        await client.aclose()
        raise
    return client


def build_caches(settings, redis_client: Optional[Redis] = None) -> Dict[str, Any]:
    """
    Create the analytics query cache and the access-scope cache.

    Returns:
        {"analytics": cache, "access_scopes": cache}
    """
    query_ttl = settings.shopify.query_cache_ttl_seconds
    scopes_ttl = settings.shopify.access_scopes_cache_ttl_seconds

    if settings.reporting.analytics_cache_backend == "redis" and redis_client is not None:
        logger.info("Using Redis analytics cache", query_ttl=query_ttl, scopes_ttl=scopes_ttl)
        return {
            "analytics": RedisTTLCache(redis_client, query_ttl, name="shopifyql"),
            "access_scopes": RedisTTLCache(redis_client, scopes_ttl, name="access_scopes"),
        }

    return {
        "analytics": TTLCache(query_ttl, name="shopifyql"),
        "access_scopes": TTLCache(scopes_ttl, name="access_scopes"),
    }
