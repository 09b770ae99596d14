"""
Feed cache — (user, feed_type, page) → ranked post_id snapshot.

A snapshot is the ranking as of write time; it is never re-ordered on read.
Entries live `ttl_minutes` (5 by default). Writers that change a user's feed
composition call `invalidate`; feeds nobody invalidates (global trending)
fall back on the TTL.

Two backends share one interface:

  SqlFeedCache    — rows in `feed_cache`, upserted by key; expired rows are
                    ignored by reads and removed by the `clear_expired` sweep
  RedisFeedCache  — one JSON string per key with a native TTL
"""
import json
import logging
from datetime import timedelta
from typing import Optional, Protocol

import redis.asyncio as aioredis
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from feedrank.clients.redis_client import feed_cache_key, get_redis
from feedrank.config import settings
from feedrank.database import upsert, utcnow
from feedrank.models import FeedCacheEntry, FeedType

logger = logging.getLogger(__name__)

CACHE_DURATION_MINUTES = 5


class FeedCache(Protocol):
    async def get(
        self, user_id: str, feed_type: FeedType, page: int = 1
    ) -> Optional[list[str]]: ...

    async def put(
        self,
        user_id: str,
        feed_type: FeedType,
        post_ids: list[str],
        page: int = 1,
        ttl_minutes: Optional[int] = None,
    ) -> None: ...

    async def invalidate(self, user_id: str, feed_type: Optional[FeedType] = None) -> int: ...

    async def clear_expired(self) -> int: ...


class SqlFeedCache:
    """Feed cache stored in the `feed_cache` table of the request's session."""

    def __init__(
        self,
        session: AsyncSession,
        ttl_minutes: int = CACHE_DURATION_MINUTES,
        clock=utcnow,
    ) -> None:
        self._session = session
        self._ttl_minutes = ttl_minutes
        self._clock = clock

    async def get(
        self, user_id: str, feed_type: FeedType, page: int = 1
    ) -> Optional[list[str]]:
        async with self._session.begin_nested():
            result = await self._session.execute(
                select(FeedCacheEntry.post_ids).where(
                    FeedCacheEntry.user_id == user_id,
                    FeedCacheEntry.feed_type == feed_type,
                    FeedCacheEntry.page == page,
                    FeedCacheEntry.expires_at > self._clock(),
                )
            )
            post_ids = result.scalar_one_or_none()
        return list(post_ids) if post_ids is not None else None

    async def put(
        self,
        user_id: str,
        feed_type: FeedType,
        post_ids: list[str],
        page: int = 1,
        ttl_minutes: Optional[int] = None,
    ) -> None:
        ttl = ttl_minutes if ttl_minutes is not None else self._ttl_minutes
        async with self._session.begin_nested():
            await upsert(
                self._session,
                FeedCacheEntry,
                {
                    "user_id": user_id,
                    "feed_type": feed_type,
                    "page": page,
                    "post_ids": list(post_ids),
                    "expires_at": self._clock() + timedelta(minutes=ttl),
                },
                key_columns=["user_id", "feed_type", "page"],
                update_columns=["post_ids", "expires_at"],
            )

    async def invalidate(self, user_id: str, feed_type: Optional[FeedType] = None) -> int:
        stmt = delete(FeedCacheEntry).where(FeedCacheEntry.user_id == user_id)
        if feed_type is not None:
            stmt = stmt.where(FeedCacheEntry.feed_type == feed_type)
        result = await self._session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def clear_expired(self) -> int:
        result = await self._session.execute(
            delete(FeedCacheEntry)
            .where(FeedCacheEntry.expires_at <= self._clock())
            .execution_options(synchronize_session=False)
        )
        logger.info("Cleared %d expired feed cache rows", result.rowcount)
        return result.rowcount


class RedisFeedCache:
    """Feed cache in Redis; expiry is delegated to key TTLs."""

    def __init__(
        self, redis: aioredis.Redis, ttl_minutes: int = CACHE_DURATION_MINUTES
    ) -> None:
        self._redis = redis
        self._ttl_minutes = ttl_minutes

    async def get(
        self, user_id: str, feed_type: FeedType, page: int = 1
    ) -> Optional[list[str]]:
        raw = await self._redis.get(feed_cache_key(user_id, feed_type.value, page))
        if raw is None:
            return None
        return json.loads(raw)

    async def put(
        self,
        user_id: str,
        feed_type: FeedType,
        post_ids: list[str],
        page: int = 1,
        ttl_minutes: Optional[int] = None,
    ) -> None:
        ttl = ttl_minutes if ttl_minutes is not None else self._ttl_minutes
        await self._redis.set(
            feed_cache_key(user_id, feed_type.value, page),
            json.dumps(list(post_ids)),
            ex=ttl * 60,
        )

    async def invalidate(self, user_id: str, feed_type: Optional[FeedType] = None) -> int:
        pattern = feed_cache_key(user_id, feed_type.value if feed_type else "*", "*")
        keys = [key async for key in self._redis.scan_iter(match=pattern)]
        if not keys:
            return 0
        return await self._redis.delete(*keys)

    async def clear_expired(self) -> int:
        return 0


def build_feed_cache(session: AsyncSession) -> FeedCache:
    """Return the configured feed cache backend for this request."""
    ttl = settings.feed_cache_ttl_minutes
    if settings.feed_cache_backend == "redis":
        return RedisFeedCache(get_redis(), ttl_minutes=ttl)
    return SqlFeedCache(session, ttl_minutes=ttl)
