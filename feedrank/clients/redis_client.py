"""
Redis client wrapper.

Responsibilities:
  • Feed cache snapshots — STRING (JSON list of post_ids) keyed by
                           fc:{user_id}:{feed_type}:{page}, expiring via TTL

Only connected when `feed_cache_backend = "redis"`; the default backend
keeps snapshots in the `feed_cache` table instead.
"""
import logging
from typing import Optional

import redis.asyncio as aioredis

from feedrank.config import settings

logger = logging.getLogger(__name__)

_redis: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    global _redis
    _redis = aioredis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        decode_responses=True,
    )
    await _redis.ping()
    logger.info("Redis connected at %s:%s", settings.redis_host, settings.redis_port)


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    if _redis is None:
        raise RuntimeError("Redis not initialised — call init_redis() at startup")
    return _redis


def feed_cache_key(user_id: str, feed_type: str, page: int) -> str:
    return f"fc:{user_id}:{feed_type}:{page}"
