"""
Redis caching for the published-event catalog.

CACHING STRATEGY
================

What we cache:
  - Catalog list responses (paginated, JSON-serialized)
  - Key pattern: "catalog:list:page={page}&size={size}&upcoming={upcoming}&city={city}"

Invalidation:
  - Event created, published, cancelled or deleted
  - Ticket type added, re-capacitied or (de)activated
  - Inventory movement (order created, cancelled, expired, paid; courtesy
    tickets issued), since the catalog shows remaining counts
  - TTL as safety net (REDIS_CACHE_TTL)

  All catalog keys share the "catalog:list:" prefix, invalidation SCANs and
  deletes them.

Never cached:
  - Single event reads and anything the ledger decides on. The catalog is a
    display of availability; purchasability is always re-checked against
    the database at order time.

Redis is optional: with REDIS_ENABLED=false or an unreachable server every
call degrades to a no-op / cache miss.
"""

import json
from typing import Optional

import redis.asyncio as redis

from boxoffice.core.config import get_settings
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)

KEY_PREFIX = "catalog:list:"

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create the Redis connection. Returns None if Redis is disabled or down."""
    global _redis_client
    settings = get_settings()

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )
        try:
            await client.ping()
        except redis.RedisError as e:
            logger.error("redis_connection_failed", error=str(e))
            await client.aclose()
            return None
        _redis_client = client
        logger.info("redis_connected", url=settings.REDIS_URL)

    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


def make_catalog_key(page: int, page_size: int, upcoming_only: bool, city: Optional[str] = None) -> str:
    return f"{KEY_PREFIX}page={page}&size={page_size}&upcoming={upcoming_only}&city={(city or '').lower()}"


async def get_cached_catalog(
    page: int,
    page_size: int,
    upcoming_only: bool,
    city: Optional[str] = None,
) -> Optional[dict]:
    client = await get_redis()
    if client is None:
        return None

    key = make_catalog_key(page, page_size, upcoming_only, city)
    try:
        data = await client.get(key)
    except redis.RedisError as e:
        logger.error("cache_get_error", key=key, error=str(e))
        return None

    if data:
        logger.debug("cache_hit", key=key)
        return json.loads(data)
    logger.debug("cache_miss", key=key)
    return None


async def set_cached_catalog(
    page: int,
    page_size: int,
    upcoming_only: bool,
    city: Optional[str],
    data: dict,
) -> None:
    client = await get_redis()
    if client is None:
        return

    settings = get_settings()
    key = make_catalog_key(page, page_size, upcoming_only, city)
    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        logger.debug("cache_set", key=key, ttl=settings.REDIS_CACHE_TTL)
    except redis.RedisError as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_catalog() -> None:
    client = await get_redis()
    if client is None:
        return

    try:
        deleted = 0
        async for key in client.scan_iter(match=f"{KEY_PREFIX}*", count=100):
            await client.delete(key)
            deleted += 1
        logger.info("cache_invalidated", keys_deleted=deleted)
    except redis.RedisError as e:
        logger.error("cache_invalidation_error", error=str(e))


async def get_cache_stats() -> dict:
    """Redis cache statistics for the health endpoint."""
    client = await get_redis()
    if client is None:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
    except redis.RedisError as e:
        return {"status": "error", "error": str(e)}

    hits = info.get("keyspace_hits", 0)
    misses = info.get("keyspace_misses", 0)
    return {
        "status": "connected",
        "hits": hits,
        "misses": misses,
        "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
    }
