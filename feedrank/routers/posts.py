"""
Post endpoints:
  POST   /posts                         — create (publish now, schedule or draft)
  GET    /posts/{id}                    — fetch a post with counters and scores
  DELETE /posts/{id}                    — soft delete
  POST   /posts/{id}/view               — record a view
  POST   /posts/{id}/impressions        — record one impression
  POST   /posts/{id}/like | unlike      — react / remove reaction
  POST   /posts/{id}/comment            — comment or reply
  DELETE /posts/{id}/comments/{cid}     — remove a comment and its replies
  POST   /posts/{id}/share              — reshare as a new `shared` post
  POST   /posts/{id}/save | unsave      — bookmark, optionally into a collection
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from feedrank.database import get_db
from feedrank.dependencies import get_feed_cache, get_graph
from feedrank.engine import hashtags, interactions, publishing
from feedrank.engine.feed_cache import FeedCache
from feedrank.engine.feeds import invalidate_followers
from feedrank.engine.social_graph import SocialGraph
from feedrank.models import Post, PostStatus, SaveCollection, User
from feedrank.schemas import (
    CommentRequest,
    CommentResponse,
    InteractionResult,
    LikeRequest,
    PostCreate,
    PostResponse,
    SaveRequest,
    ShareRequest,
    UserActionRequest,
    ViewRequest,
    ViewResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


async def _load_post(db: AsyncSession, post_id: str) -> Optional[Post]:
    result = await db.execute(
        select(Post)
        .where(Post.post_id == post_id, Post.deleted_at.is_(None))
        .execution_options(populate_existing=True)
    )
    return result.unique().scalar_one_or_none()


async def _require_user(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")
    return user


async def _build_post_response(db: AsyncSession, post_id: str) -> PostResponse:
    post = await _load_post(db, post_id)
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")
    return PostResponse(
        post_id=post.post_id,
        user_id=post.user_id,
        username=post.author.username if post.author else None,
        display_name=post.author.display_name if post.author else None,
        content=post.content,
        post_type=post.post_type,
        privacy=post.privacy,
        status=post.status.value,
        is_short_video=post.is_short_video,
        original_post_id=post.original_post_id,
        hashtags=await hashtags.post_hashtag_names(db, post.post_id),
        likes_count=post.likes_count,
        comments_count=post.comments_count,
        shares_count=post.shares_count,
        views_count=post.views_count,
        impressions_count=post.impressions_count,
        saves_count=post.saves_count,
        replies_count=post.replies_count,
        watch_time_seconds=post.watch_time_seconds,
        engagement_score=post.engagement_score,
        trending_score=post.trending_score,
        is_viral=post.is_viral,
        created_at=post.created_at,
        published_at=post.published_at,
    )


def _not_found(result) -> None:
    if result is None:
        raise HTTPException(status_code=404, detail="Post not found")


# ─────────────────────── Lifecycle ────────────────────────────────────────

@router.post("/", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
async def create_post(
    body: PostCreate,
    db: AsyncSession = Depends(get_db),
    cache: FeedCache = Depends(get_feed_cache),
    graph: SocialGraph = Depends(get_graph),
):
    """
    Post ingestion path:

    1. Validate the author exists.
    2. Persist the post (published, scheduled or draft).
    3. If published: flag short video, sync hashtags, then announce —
       Kafka `new-posts` event, or inline follower cache invalidation.
    """
    with tracer.start_as_current_span("create_post") as span:
        await _require_user(db, body.user_id)

        post = await publishing.create_post(
            db,
            user_id=body.user_id,
            content=body.content,
            post_type=body.post_type,
            privacy=body.privacy,
            video_duration_seconds=body.video_duration_seconds,
            content_category=body.content_category,
            content_tags=body.content_tags,
            scheduled_at=body.scheduled_at,
            draft=body.draft,
        )
        span.set_attribute("post.id", post.post_id)
        span.set_attribute("post.status", post.status.value)

        if post.status == PostStatus.PUBLISHED:
            await publishing.announce_post(graph, cache, post)
        return await _build_post_response(db, post.post_id)


@router.get("/{post_id}", response_model=PostResponse)
async def get_post(post_id: str, db: AsyncSession = Depends(get_db)):
    return await _build_post_response(db, post_id)


@router.delete("/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(
    post_id: str,
    db: AsyncSession = Depends(get_db),
    cache: FeedCache = Depends(get_feed_cache),
    graph: SocialGraph = Depends(get_graph),
):
    post = await publishing.soft_delete(db, post_id)
    _not_found(post)
    await invalidate_followers(graph, cache, post.user_id)


# ─────────────────────── Views & impressions ──────────────────────────────

@router.post("/{post_id}/view", response_model=ViewResponse, status_code=status.HTTP_201_CREATED)
async def view_post(
    post_id: str,
    body: ViewRequest,
    db: AsyncSession = Depends(get_db),
    graph: SocialGraph = Depends(get_graph),
):
    with tracer.start_as_current_span("record_view") as span:
        span.set_attribute("post.id", post_id)
        if body.user_id:
            await _require_user(db, body.user_id)
        view = await interactions.record_view(
            db,
            post_id,
            viewer_id=body.user_id,
            session_id=body.session_id,
            watch_time_seconds=body.watch_time_seconds,
            watch_percentage=body.watch_percentage,
            source=body.source,
            device_type=body.device_type,
            graph=graph,
        )
        _not_found(view)
        span.set_attribute("view.is_replay", view.is_replay)
        return ViewResponse(
            view_id=view.view_id,
            is_replay=view.is_replay,
            is_complete_view=view.is_complete_view,
        )


@router.post("/{post_id}/impressions", response_model=InteractionResult)
async def impression(post_id: str, db: AsyncSession = Depends(get_db)):
    recorded = await interactions.record_impressions(db, [post_id])
    if not recorded:
        raise HTTPException(status_code=404, detail="Post not found")
    return InteractionResult(post_id=post_id, changed=True)


# ─────────────────────── Reactions ────────────────────────────────────────

@router.post("/{post_id}/like", response_model=InteractionResult)
async def like_post(post_id: str, body: LikeRequest, db: AsyncSession = Depends(get_db)):
    """Idempotent: liking twice keeps one like (the reaction type may change)."""
    with tracer.start_as_current_span("like_post"):
        await _require_user(db, body.user_id)
        changed = await interactions.record_like(db, post_id, body.user_id, body.reaction)
        _not_found(changed)
        return InteractionResult(post_id=post_id, changed=changed)


@router.post("/{post_id}/unlike", response_model=InteractionResult)
async def unlike_post(
    post_id: str, body: UserActionRequest, db: AsyncSession = Depends(get_db)
):
    changed = await interactions.record_unlike(db, post_id, body.user_id)
    _not_found(changed)
    return InteractionResult(post_id=post_id, changed=changed)


# ─────────────────────── Comments ─────────────────────────────────────────

@router.post(
    "/{post_id}/comment", response_model=CommentResponse, status_code=status.HTTP_201_CREATED
)
async def comment_on_post(
    post_id: str, body: CommentRequest, db: AsyncSession = Depends(get_db)
):
    await _require_user(db, body.user_id)
    if body.parent_id is not None:
        parent = await interactions.get_comment(db, body.parent_id)
        if parent is None or parent.post_id != post_id:
            raise HTTPException(status_code=404, detail="Parent comment not found")

    comment = await interactions.record_comment(
        db, post_id, body.user_id, body.body, parent_id=body.parent_id
    )
    _not_found(comment)
    return comment


@router.delete("/{post_id}/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(post_id: str, comment_id: int, db: AsyncSession = Depends(get_db)):
    removed = await interactions.record_uncomment(db, post_id, comment_id)
    _not_found(removed)
    if not removed:
        raise HTTPException(status_code=404, detail="Comment not found")


# ─────────────────────── Shares & saves ───────────────────────────────────

@router.post("/{post_id}/share", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
async def share_post(
    post_id: str,
    body: ShareRequest,
    db: AsyncSession = Depends(get_db),
    cache: FeedCache = Depends(get_feed_cache),
    graph: SocialGraph = Depends(get_graph),
):
    await _require_user(db, body.user_id)
    shared = await interactions.record_share(
        db, post_id, body.user_id, content=body.content, privacy=body.privacy
    )
    _not_found(shared)
    await publishing.announce_post(graph, cache, shared)
    return await _build_post_response(db, shared.post_id)


@router.post("/{post_id}/save", response_model=InteractionResult)
async def save_post(post_id: str, body: SaveRequest, db: AsyncSession = Depends(get_db)):
    await _require_user(db, body.user_id)
    if body.collection_id is not None:
        collection = await db.get(SaveCollection, body.collection_id)
        if collection is None or collection.user_id != body.user_id:
            raise HTTPException(status_code=404, detail="Collection not found")

    changed = await interactions.record_save(
        db, post_id, body.user_id, collection_id=body.collection_id
    )
    _not_found(changed)
    return InteractionResult(post_id=post_id, changed=changed)


@router.post("/{post_id}/unsave", response_model=InteractionResult)
async def unsave_post(
    post_id: str, body: UserActionRequest, db: AsyncSession = Depends(get_db)
):
    changed = await interactions.record_unsave(db, post_id, body.user_id)
    _not_found(changed)
    return InteractionResult(post_id=post_id, changed=changed)
