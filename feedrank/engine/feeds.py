"""
Feed assembly — persisted scores → ranked, paginated post_id lists.

  Feed       │ Candidates                                 │ Order
  ───────────┼────────────────────────────────────────────┼──────────────────────────────
  for_you    │ public, not the requester's own posts      │ 0.4·trending + 0.6·engagement
  following  │ authors the requester follows,             │ created_at (chronological)
             │ public or friends-only                     │
  shorts     │ public short-form video                    │ 0.5·trending + 0.5·engagement
  trending   │ public, created in the trailing 7 days     │ trending_score
  discover   │ public, not the requester nor anyone they  │ 0.3·trending + 0.7·engagement
             │ follow                                     │

Every feed only sees published, non-deleted posts. Score-ordered feeds break
ties on created_at desc, then post_id desc, so repeated pages are stable.

Each feed is read-through cached per (user, feed_type, page) when the request
uses the configured page size and the offset falls on a page boundary
(page = offset // limit + 1). Global trending is
cached under a sentinel user and only expires through the TTL.
"""
import logging
import time
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from opentelemetry import trace
from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from feedrank.config import settings
from feedrank.database import utcnow
from feedrank.engine.feed_cache import FeedCache
from feedrank.engine.interests import top_interests
from feedrank.engine.social_graph import SocialGraph
from feedrank.models import FeedType, Post, PostStatus, PostType, Privacy
from feedrank.telemetry import FEED_CACHE_LOOKUPS_TOTAL, FEED_ERRORS_TOTAL, FEED_LATENCY

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

GLOBAL_USER = "__global__"

FOR_YOU_WEIGHTS = (0.4, 0.6)     # (trending, engagement)
SHORTS_WEIGHTS = (0.5, 0.5)
DISCOVER_WEIGHTS = (0.3, 0.7)

CACHE_ERRORS = (SQLAlchemyError, RedisError, ValueError)


def _visible():
    """Filters shared by every feed."""
    return (Post.status == PostStatus.PUBLISHED, Post.deleted_at.is_(None))


def _blend(weights: tuple[float, float]):
    trending_w, engagement_w = weights
    return Post.trending_score * trending_w + Post.engagement_score * engagement_w


class FeedAssembler:
    def __init__(
        self,
        session: AsyncSession,
        cache: FeedCache,
        graph: SocialGraph,
        page_size: Optional[int] = None,
    ) -> None:
        self._session = session
        self._cache = cache
        self._graph = graph
        # Cache pages hold exactly this many ids; other limits bypass the cache
        self._page_size = page_size or settings.feed_page_size

    # ── Public feeds ─────────────────────────────────────────────────────

    async def for_you(self, user_id: str, limit: int = 20, offset: int = 0) -> list[str]:
        async def compute() -> list[str]:
            # Loaded for candidate filtering; the blend is not re-weighted by interest
            interests = await top_interests(
                self._session, user_id, limit=settings.interest_top_n
            )
            logger.debug("for_you user=%s interests=%d", user_id, len(interests))
            return await self._query_for_you(user_id, limit, offset)

        return await self._assemble(user_id, FeedType.FOR_YOU, limit, offset, compute)

    async def following(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
        friend_ids: Optional[list[str]] = None,
    ) -> list[str]:
        async def compute() -> list[str]:
            ids = friend_ids
            if ids is None:
                ids = await self._graph.friend_ids(user_id)
            if not ids:
                return []
            return await self._query_following(ids, limit, offset)

        return await self._assemble(user_id, FeedType.FOLLOWING, limit, offset, compute)

    async def shorts(self, user_id: str, limit: int = 20, offset: int = 0) -> list[str]:
        async def compute() -> list[str]:
            return await self._query_shorts(limit, offset)

        return await self._assemble(user_id, FeedType.SHORTS, limit, offset, compute)

    async def trending(
        self, limit: int = 20, offset: int = 0, now: Optional[datetime] = None
    ) -> list[str]:
        async def compute() -> list[str]:
            return await self._query_trending(limit, offset, now or utcnow())

        return await self._assemble(GLOBAL_USER, FeedType.TRENDING, limit, offset, compute)

    async def discover(self, user_id: str, limit: int = 20, offset: int = 0) -> list[str]:
        async def compute() -> list[str]:
            excluded = await self._graph.friend_ids(user_id)
            return await self._query_discover(user_id, excluded, limit, offset)

        return await self._assemble(user_id, FeedType.DISCOVER, limit, offset, compute)

    async def hydrate(self, post_ids: list[str]) -> list[Post]:
        """Load posts for `post_ids`, keeping the ranked order and dropping vanished ids."""
        if not post_ids:
            return []
        result = await self._session.execute(
            select(Post).where(Post.post_id.in_(post_ids), *_visible())
        )
        by_id = {post.post_id: post for post in result.unique().scalars().all()}
        return [by_id[pid] for pid in post_ids if pid in by_id]

    # ── Queries ──────────────────────────────────────────────────────────

    async def _ids(self, stmt) -> list[str]:
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def _query_for_you(self, user_id: str, limit: int, offset: int) -> list[str]:
        return await self._ids(
            select(Post.post_id)
            .where(*_visible(), Post.privacy == Privacy.PUBLIC, Post.user_id != user_id)
            .order_by(_blend(FOR_YOU_WEIGHTS).desc(), Post.created_at.desc(), Post.post_id.desc())
            .limit(limit)
            .offset(offset)
        )

    async def _query_following(
        self, friend_ids: list[str], limit: int, offset: int
    ) -> list[str]:
        return await self._ids(
            select(Post.post_id)
            .where(
                *_visible(),
                Post.user_id.in_(friend_ids),
                Post.privacy.in_([Privacy.PUBLIC, Privacy.FRIENDS]),
            )
            .order_by(Post.created_at.desc(), Post.post_id.desc())
            .limit(limit)
            .offset(offset)
        )

    async def _query_shorts(self, limit: int, offset: int) -> list[str]:
        short_form = (Post.is_short_video.is_(True)) | (Post.post_type == PostType.SHORT_VIDEO)
        return await self._ids(
            select(Post.post_id)
            .where(*_visible(), Post.privacy == Privacy.PUBLIC, short_form)
            .order_by(_blend(SHORTS_WEIGHTS).desc(), Post.created_at.desc(), Post.post_id.desc())
            .limit(limit)
            .offset(offset)
        )

    async def _query_trending(self, limit: int, offset: int, now: datetime) -> list[str]:
        since = now - timedelta(days=settings.trending_window_days)
        return await self._ids(
            select(Post.post_id)
            .where(*_visible(), Post.privacy == Privacy.PUBLIC, Post.created_at >= since)
            .order_by(Post.trending_score.desc(), Post.created_at.desc(), Post.post_id.desc())
            .limit(limit)
            .offset(offset)
        )

    async def _query_discover(
        self, user_id: str, excluded: list[str], limit: int, offset: int
    ) -> list[str]:
        stmt = select(Post.post_id).where(
            *_visible(), Post.privacy == Privacy.PUBLIC, Post.user_id != user_id
        )
        if excluded:
            stmt = stmt.where(Post.user_id.not_in(excluded))
        return await self._ids(
            stmt.order_by(
                _blend(DISCOVER_WEIGHTS).desc(), Post.created_at.desc(), Post.post_id.desc()
            )
            .limit(limit)
            .offset(offset)
        )

    # ── Read-through cache ───────────────────────────────────────────────

    async def _assemble(
        self,
        cache_user: str,
        feed_type: FeedType,
        limit: int,
        offset: int,
        compute: Callable[[], Awaitable[list[str]]],
    ) -> list[str]:
        start = time.perf_counter()
        with tracer.start_as_current_span(f"feed.{feed_type.value}") as span:
            span.set_attribute("feed.user_id", cache_user)
            span.set_attribute("feed.limit", limit)
            span.set_attribute("feed.offset", offset)

            # Other page sizes or unaligned offsets would collide with another page's key
            cacheable = limit == self._page_size and offset % limit == 0
            page = offset // limit + 1 if cacheable else None

            if cacheable:
                cached = await self._cache_get(cache_user, feed_type, page)
                if cached is not None:
                    span.set_attribute("feed.cache", "hit")
                    FEED_LATENCY.labels(feed_type=feed_type.value).observe(
                        time.perf_counter() - start
                    )
                    return cached

            try:
                post_ids = await compute()
            except SQLAlchemyError:
                logger.exception("Feed %s failed for %s", feed_type.value, cache_user)
                FEED_ERRORS_TOTAL.labels(feed_type=feed_type.value).inc()
                span.set_attribute("feed.cache", "error")
                FEED_LATENCY.labels(feed_type=feed_type.value).observe(
                    time.perf_counter() - start
                )
                return []

            if cacheable:
                await self._cache_put(cache_user, feed_type, page, post_ids)

            span.set_attribute("feed.cache", "miss" if cacheable else "bypass")
            span.set_attribute("feed.posts_returned", len(post_ids))
            FEED_LATENCY.labels(feed_type=feed_type.value).observe(time.perf_counter() - start)
            return post_ids

    async def _cache_get(
        self, user_id: str, feed_type: FeedType, page: int
    ) -> Optional[list[str]]:
        try:
            cached = await self._cache.get(user_id, feed_type, page)
        except CACHE_ERRORS as exc:
            logger.warning("Feed cache read failed (%s) — computing uncached", exc)
            FEED_CACHE_LOOKUPS_TOTAL.labels(result="error").inc()
            return None
        FEED_CACHE_LOOKUPS_TOTAL.labels(result="hit" if cached is not None else "miss").inc()
        return cached

    async def _cache_put(
        self, user_id: str, feed_type: FeedType, page: int, post_ids: list[str]
    ) -> None:
        try:
            await self._cache.put(user_id, feed_type, post_ids, page=page)
        except CACHE_ERRORS as exc:
            logger.warning("Feed cache write failed for %s/%s: %s", user_id, feed_type.value, exc)


async def invalidate_followers(
    graph: SocialGraph, cache: FeedCache, author_id: str
) -> int:
    """Drop the cached Following feed of everyone who follows `author_id`."""
    follower_ids = await graph.follower_ids(author_id)
    for follower_id in follower_ids:
        await cache.invalidate(follower_id, FeedType.FOLLOWING)
    logger.info("Invalidated following feeds of %d followers of %s", len(follower_ids), author_id)
    return len(follower_ids)
