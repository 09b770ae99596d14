"""
Post lifecycle: create, publish (now or scheduled), announce, soft delete.

Publishing a post:
  1. flags short-form video (type short_video, or video ≤ short_video_max_seconds)
  2. stamps status/published_at
  3. syncs hashtags from the content text
  4. counts the ingestion

Announcing happens after the write: a `new-posts` Kafka event when the
producer is running, otherwise (or if the send fails) the followers'
Following feeds are invalidated inline.
"""
import logging
from datetime import datetime
from typing import Optional

from aiokafka.errors import KafkaError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from feedrank.clients.kafka_producer import kafka_available, publish_new_post
from feedrank.config import settings
from feedrank.database import utcnow
from feedrank.engine import hashtags
from feedrank.engine.feed_cache import FeedCache
from feedrank.engine.feeds import invalidate_followers
from feedrank.engine.social_graph import SocialGraph
from feedrank.models import Post, PostStatus, PostType, Privacy
from feedrank.telemetry import POST_INGESTION_TOTAL

logger = logging.getLogger(__name__)


def detect_short_video(
    post_type: PostType,
    duration_seconds: Optional[int],
    max_seconds: Optional[int] = None,
) -> bool:
    if post_type == PostType.SHORT_VIDEO:
        return True
    if post_type != PostType.VIDEO or duration_seconds is None:
        return False
    limit = settings.short_video_max_seconds if max_seconds is None else max_seconds
    return 0 < duration_seconds <= limit


async def create_post(
    session: AsyncSession,
    user_id: str,
    content: Optional[str] = None,
    post_type: PostType = PostType.TEXT,
    privacy: Privacy = Privacy.PUBLIC,
    video_duration_seconds: Optional[int] = None,
    content_category: Optional[str] = None,
    content_tags: Optional[list[str]] = None,
    scheduled_at: Optional[datetime] = None,
    draft: bool = False,
    now: Optional[datetime] = None,
) -> Post:
    now = now or utcnow()
    if draft:
        status = PostStatus.DRAFT
    elif scheduled_at is not None and scheduled_at > now:
        status = PostStatus.SCHEDULED
    else:
        status = PostStatus.PUBLISHED

    post = Post(
        user_id=user_id,
        content=content,
        post_type=post_type,
        privacy=privacy,
        status=status,
        scheduled_at=scheduled_at,
        video_duration_seconds=video_duration_seconds,
        content_category=content_category,
        content_tags=content_tags,
        created_at=now,
    )
    session.add(post)
    await session.flush()

    if status == PostStatus.PUBLISHED:
        await mark_published(session, post, now)
    else:
        logger.info("Post %s stored as %s", post.post_id, status.value)
    return post


async def mark_published(session: AsyncSession, post: Post, now: Optional[datetime] = None) -> Post:
    now = now or utcnow()
    if post.status == PostStatus.SCHEDULED:
        # Age is measured from going live, not from when it was queued
        post.created_at = now
    post.status = PostStatus.PUBLISHED
    post.published_at = now
    post.is_short_video = detect_short_video(post.post_type, post.video_duration_seconds)
    await session.flush()

    await hashtags.extract_and_sync(session, post.post_id, post.content)
    POST_INGESTION_TOTAL.inc()
    logger.info("Post published: %s by user %s", post.post_id, post.user_id)
    return post


async def announce_post(graph: SocialGraph, cache: FeedCache, post: Post) -> None:
    if kafka_available():
        try:
            await publish_new_post(post.post_id, post.user_id, post.content)
            return
        except KafkaError as exc:
            logger.warning("NewPost event for %s failed (%s) — invalidating inline", post.post_id, exc)
    await invalidate_followers(graph, cache, post.user_id)


async def soft_delete(
    session: AsyncSession, post_id: str, now: Optional[datetime] = None
) -> Optional[Post]:
    """Hide a post from every feed and release its hashtag counts."""
    result = await session.execute(
        select(Post).where(Post.post_id == post_id, Post.deleted_at.is_(None))
    )
    post = result.unique().scalar_one_or_none()
    if post is None:
        return None

    post.deleted_at = now or utcnow()
    await session.flush()
    await hashtags.release_post_hashtags(session, post_id)
    logger.info("Post %s deleted", post_id)
    return post


async def due_scheduled_posts(
    session: AsyncSession, now: Optional[datetime] = None, limit: int = 100
) -> list[Post]:
    now = now or utcnow()
    result = await session.execute(
        select(Post)
        .where(
            Post.status == PostStatus.SCHEDULED,
            Post.deleted_at.is_(None),
            Post.scheduled_at <= now,
        )
        .order_by(Post.scheduled_at)
        .limit(limit)
    )
    return list(result.unique().scalars().all())


async def publish_due(
    session: AsyncSession,
    now: Optional[datetime] = None,
    limit: int = 100,
    dry_run: bool = False,
) -> list[Post]:
    """Publish scheduled posts whose time has come. Dry runs only list them."""
    now = now or utcnow()
    posts = await due_scheduled_posts(session, now, limit)
    if dry_run:
        for post in posts:
            logger.info("[dry-run] would publish %s (scheduled %s)", post.post_id, post.scheduled_at)
        return posts

    for post in posts:
        await mark_published(session, post, now)
    return posts
