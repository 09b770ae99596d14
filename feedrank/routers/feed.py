"""
Feed endpoints — GET /feed/<type>?user_id=<id>&limit=&offset=

  for-you    │ public posts by others, 0.4·trending + 0.6·engagement
  following  │ accounts the user follows, newest first
  shorts     │ public short-form video, 0.5·trending + 0.5·engagement
  trending   │ public posts from the last 7 days by trending score (global)
  discover   │ public posts outside the user's follow graph, 0.3·trending + 0.7·engagement

Ranking and caching live in `FeedAssembler`; this layer validates the
requester, hydrates the ranked ids and reports latency.

POST /feed/impressions — client reports which posts were rendered.
"""
import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from feedrank.config import settings
from feedrank.database import get_db
from feedrank.dependencies import get_assembler
from feedrank.engine import interactions
from feedrank.engine.feeds import FeedAssembler
from feedrank.models import FeedType, Post, User
from feedrank.schemas import FeedPost, FeedResponse, ImpressionRecord

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)

def _feed_post(post: Post) -> FeedPost:
    return FeedPost(
        post_id=post.post_id,
        user_id=post.user_id,
        username=post.author.username if post.author else None,
        content=post.content,
        post_type=post.post_type,
        is_short_video=post.is_short_video,
        likes_count=post.likes_count,
        comments_count=post.comments_count,
        views_count=post.views_count,
        engagement_score=post.engagement_score,
        trending_score=post.trending_score,
        is_viral=post.is_viral,
        created_at=post.created_at,
    )


async def _require_user(db: AsyncSession, user_id: str) -> None:
    if not await db.get(User, user_id):
        raise HTTPException(status_code=404, detail="User not found")


async def _respond(
    assembler: FeedAssembler,
    feed_type: FeedType,
    user_id: Optional[str],
    limit: int,
    offset: int,
    post_ids: list[str],
    start_time: float,
) -> FeedResponse:
    posts = await assembler.hydrate(post_ids)
    latency_ms = (time.perf_counter() - start_time) * 1000
    logger.debug(
        "Feed %s for %s: %d posts in %.1fms", feed_type.value, user_id, len(posts), latency_ms
    )
    return FeedResponse(
        user_id=user_id,
        feed_type=feed_type,
        limit=limit,
        offset=offset,
        post_ids=post_ids,
        posts=[_feed_post(p) for p in posts],
        latency_ms=round(latency_ms, 2),
    )


@router.get("/for-you", response_model=FeedResponse)
async def for_you_feed(
    user_id: str = Query(..., description="ID of the requesting user"),
    limit: Optional[int] = Query(None, ge=1, le=settings.feed_max_page_size),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    assembler: FeedAssembler = Depends(get_assembler),
):
    start_time = time.perf_counter()
    limit = limit or settings.feed_page_size
    await _require_user(db, user_id)
    post_ids = await assembler.for_you(user_id, limit, offset)
    return await _respond(assembler, FeedType.FOR_YOU, user_id, limit, offset, post_ids, start_time)


@router.get("/following", response_model=FeedResponse)
async def following_feed(
    user_id: str = Query(..., description="ID of the requesting user"),
    limit: Optional[int] = Query(None, ge=1, le=settings.feed_max_page_size),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    assembler: FeedAssembler = Depends(get_assembler),
):
    start_time = time.perf_counter()
    limit = limit or settings.feed_page_size
    await _require_user(db, user_id)
    post_ids = await assembler.following(user_id, limit, offset)
    return await _respond(assembler, FeedType.FOLLOWING, user_id, limit, offset, post_ids, start_time)


@router.get("/shorts", response_model=FeedResponse)
async def shorts_feed(
    user_id: str = Query(..., description="ID of the requesting user"),
    limit: Optional[int] = Query(None, ge=1, le=settings.feed_max_page_size),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    assembler: FeedAssembler = Depends(get_assembler),
):
    start_time = time.perf_counter()
    limit = limit or settings.feed_page_size
    await _require_user(db, user_id)
    post_ids = await assembler.shorts(user_id, limit, offset)
    return await _respond(assembler, FeedType.SHORTS, user_id, limit, offset, post_ids, start_time)


@router.get("/trending", response_model=FeedResponse)
async def trending_feed(
    limit: Optional[int] = Query(None, ge=1, le=settings.feed_max_page_size),
    offset: int = Query(0, ge=0),
    assembler: FeedAssembler = Depends(get_assembler),
):
    """Global feed — the same for every requester, so no user_id."""
    start_time = time.perf_counter()
    limit = limit or settings.feed_page_size
    post_ids = await assembler.trending(limit, offset)
    return await _respond(assembler, FeedType.TRENDING, None, limit, offset, post_ids, start_time)


@router.get("/discover", response_model=FeedResponse)
async def discover_feed(
    user_id: str = Query(..., description="ID of the requesting user"),
    limit: Optional[int] = Query(None, ge=1, le=settings.feed_max_page_size),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    assembler: FeedAssembler = Depends(get_assembler),
):
    start_time = time.perf_counter()
    limit = limit or settings.feed_page_size
    await _require_user(db, user_id)
    post_ids = await assembler.discover(user_id, limit, offset)
    return await _respond(assembler, FeedType.DISCOVER, user_id, limit, offset, post_ids, start_time)


@router.post("/impressions")
async def record_impressions(body: ImpressionRecord, db: AsyncSession = Depends(get_db)):
    """
    Record that the client rendered these posts.
    Typically called after the feed page is displayed.
    """
    with tracer.start_as_current_span("record_impressions") as span:
        recorded = await interactions.record_impressions(db, body.post_ids)
        span.set_attribute("impressions.recorded", recorded)
        return {"recorded": recorded}
