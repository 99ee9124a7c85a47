"""
Redis cache for the public match listing ("matches:list:*" keys).

Reservation and settlement paths never read from here. A disabled or
unreachable Redis turns every lookup into a miss.
"""

import json
import time
from typing import Optional

import redis.asyncio as redis
from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.metrics import record_cache_lookup

logger = get_logger(__name__)
settings = get_settings()

LIST_PREFIX = "matches:list:"
RECONNECT_COOLDOWN_SECONDS = 30

_redis_client: Optional[redis.Redis] = None
_unavailable_until = 0.0


async def get_redis() -> Optional[redis.Redis]:
    global _redis_client, _unavailable_until

    if not settings.REDIS_ENABLED:
        return None
    if _redis_client is not None:
        return _redis_client
    if time.monotonic() < _unavailable_until:
        return None

    client = redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2,
    )
    try:
        await client.ping()
    except redis.RedisError as e:
        # Listing requests skip the cache until the cooldown passes
        _unavailable_until = time.monotonic() + RECONNECT_COOLDOWN_SECONDS
        logger.error("redis_connection_failed", error=str(e), retry_in=RECONNECT_COOLDOWN_SECONDS)
        return None

    logger.info("redis_connected", url=settings.REDIS_URL)
    _redis_client = client
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def listing_key(page: int, page_size: int) -> str:
    return f"{LIST_PREFIX}page={page}&size={page_size}"


async def get_cached_matches(page: int, page_size: int) -> Optional[dict]:
    client = await get_redis()
    if not client:
        return None

    key = listing_key(page, page_size)
    try:
        data = await client.get(key)
    except redis.RedisError as e:
        record_cache_lookup("error")
        logger.error("cache_get_error", key=key, error=str(e))
        return None

    record_cache_lookup("hit" if data else "miss")
    return json.loads(data) if data else None


async def set_cached_matches(page: int, page_size: int, data: dict) -> None:
    client = await get_redis()
    if not client:
        return

    key = listing_key(page, page_size)
    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
    except redis.RedisError as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_match_cache() -> None:
    """Drop every cached listing page after a write that changes availability."""
    client = await get_redis()
    if not client:
        return

    try:
        keys = [key async for key in client.scan_iter(match=f"{LIST_PREFIX}*", count=100)]
        if keys:
            await client.unlink(*keys)
        logger.info("cache_invalidated", keys_deleted=len(keys))
    except redis.RedisError as e:
        logger.error("cache_invalidation_error", error=str(e))


async def get_cache_stats() -> dict:
    client = await get_redis()
    if not client:
        return {"status": "disabled" if not settings.REDIS_ENABLED else "unavailable"}

    try:
        listing_pages = 0
        async for _ in client.scan_iter(match=f"{LIST_PREFIX}*", count=100):
            listing_pages += 1
    except redis.RedisError as e:
        return {"status": "error", "error": str(e)}
    return {"status": "connected", "listing_pages": listing_pages}
