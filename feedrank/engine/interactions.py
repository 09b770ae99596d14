"""
Interaction recorder — the write path of the ranking engine.

Every mutator follows the same sequence inside the caller's transaction:

  1. persist the interaction row (view, like, comment, save, …)
  2. adjust the post's raw counter with a single UPDATE … SET c = c ± n
  3. apply soft side effects (reach attribution, interest profile)
  4. recompute the post's derived scores

Steps 3 and 4 run inside SAVEPOINTs: if they fail the error is logged and
counted, the savepoint is rolled back, and the primary interaction still
commits. A missing or soft-deleted post turns every mutator into a no-op
that returns None.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from feedrank.config import settings
from feedrank.database import utcnow
from feedrank.engine import hashtags, interests, scoring
from feedrank.engine.social_graph import SocialGraph, SqlSocialGraph
from feedrank.models import (
    Comment,
    InterestType,
    Post,
    PostLike,
    PostSave,
    PostType,
    PostView,
    Privacy,
    Reaction,
    SaveCollection,
    ViewSource,
)
from feedrank.telemetry import (
    INTERACTIONS_TOTAL,
    SCORE_RECOMPUTE_ERRORS_TOTAL,
    SIDE_EFFECT_ERRORS_TOTAL,
)

logger = logging.getLogger(__name__)

COMPLETE_VIEW_PERCENTAGE = 95.0


# ─────────────────────── Counter helpers ──────────────────────────────────

async def _live_post(session: AsyncSession, post_id: str) -> Optional[Post]:
    result = await session.execute(
        select(Post).where(Post.post_id == post_id, Post.deleted_at.is_(None))
    )
    return result.unique().scalar_one_or_none()


async def _adjust(session: AsyncSession, post_id: str, **deltas: int) -> None:
    """Atomically add each delta to its counter column; decrements floor at 0."""
    values = {}
    for column_name, delta in deltas.items():
        column = getattr(Post, column_name)
        if delta >= 0:
            values[column_name] = column + delta
        else:
            values[column_name] = case((column + delta > 0, column + delta), else_=0)
    await session.execute(
        update(Post)
        .where(Post.post_id == post_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


async def _recompute(session: AsyncSession, post_id: str, now: datetime) -> None:
    try:
        async with session.begin_nested():
            await scoring.recalculate(session, post_id, now)
    except SQLAlchemyError:
        SCORE_RECOMPUTE_ERRORS_TOTAL.inc()
        logger.exception("Score recompute failed for post %s", post_id)


# ─────────────────────── Views ────────────────────────────────────────────

async def _attribute_reach(
    session: AsyncSession, graph: SocialGraph, post: Post, viewer_id: str
) -> None:
    try:
        async with session.begin_nested():
            if await graph.is_follower(post.user_id, viewer_id):
                await _adjust(session, post.post_id, reach_followers=1)
            else:
                await _adjust(session, post.post_id, reach_non_followers=1)
    except SQLAlchemyError:
        SIDE_EFFECT_ERRORS_TOTAL.labels(effect="reach").inc()
        logger.exception("Reach attribution failed for post %s", post.post_id)


async def _record_view_interests(
    session: AsyncSession, post: Post, viewer_id: str
) -> None:
    strength = settings.interest_default_strength
    try:
        async with session.begin_nested():
            await interests.record_interaction(
                session, viewer_id, InterestType.CREATOR, post.user_id, strength
            )
            for tag in await hashtags.post_hashtag_names(session, post.post_id):
                await interests.record_interaction(
                    session, viewer_id, InterestType.HASHTAG, tag, strength
                )
            if post.content_category:
                await interests.record_interaction(
                    session, viewer_id, InterestType.CATEGORY, post.content_category, strength
                )
    except SQLAlchemyError:
        SIDE_EFFECT_ERRORS_TOTAL.labels(effect="interests").inc()
        logger.exception("Interest update failed for viewer %s", viewer_id)


async def record_view(
    session: AsyncSession,
    post_id: str,
    viewer_id: Optional[str] = None,
    session_id: Optional[str] = None,
    watch_time_seconds: int = 0,
    watch_percentage: float = 0.0,
    source: ViewSource = ViewSource.FEED,
    device_type: Optional[str] = None,
    graph: Optional[SocialGraph] = None,
    now: Optional[datetime] = None,
) -> Optional[PostView]:
    """
    Record one view of a post.

    A view is a replay when the same (identified) viewer has viewed the post
    before; anonymous views are never replays. Views watched past
    `interest_view_threshold` percent feed the viewer's interest profile.
    """
    now = now or utcnow()
    post = await _live_post(session, post_id)
    if post is None:
        return None

    is_replay = False
    if viewer_id:
        prior = await session.execute(
            select(PostView.view_id)
            .where(PostView.post_id == post_id, PostView.user_id == viewer_id)
            .limit(1)
        )
        is_replay = prior.first() is not None

    view = PostView(
        post_id=post_id,
        user_id=viewer_id,
        session_id=session_id,
        watch_time_seconds=watch_time_seconds,
        watch_percentage=watch_percentage,
        is_complete_view=watch_percentage >= COMPLETE_VIEW_PERCENTAGE,
        is_replay=is_replay,
        source=source,
        device_type=device_type,
        created_at=now,
    )
    session.add(view)
    await session.flush()

    deltas = {"views_count": 1}
    if watch_time_seconds > 0:
        deltas["watch_time_seconds"] = watch_time_seconds
    await _adjust(session, post_id, **deltas)

    if viewer_id and viewer_id != post.user_id:
        await _attribute_reach(session, graph or SqlSocialGraph(session), post, viewer_id)

    if viewer_id and watch_percentage > settings.interest_view_threshold:
        await _record_view_interests(session, post, viewer_id)

    await _recompute(session, post_id, now)
    INTERACTIONS_TOTAL.labels(kind="view").inc()
    return view


async def record_impressions(
    session: AsyncSession, post_ids: list[str], now: Optional[datetime] = None
) -> int:
    """Count one impression per served post. Returns how many posts matched."""
    now = now or utcnow()
    recorded = 0
    for post_id in dict.fromkeys(post_ids):
        if await _live_post(session, post_id) is None:
            continue
        await _adjust(session, post_id, impressions_count=1)
        await _recompute(session, post_id, now)
        recorded += 1
    INTERACTIONS_TOTAL.labels(kind="impression").inc(recorded)
    return recorded


# ─────────────────────── Likes ────────────────────────────────────────────

async def record_like(
    session: AsyncSession,
    post_id: str,
    user_id: str,
    reaction: Reaction = Reaction.LIKE,
    now: Optional[datetime] = None,
) -> Optional[bool]:
    """
    Returns True for a new like, False when the user had already reacted
    (the reaction type is updated in place, counters untouched).
    """
    now = now or utcnow()
    if await _live_post(session, post_id) is None:
        return None

    existing = await session.get(PostLike, (user_id, post_id))
    if existing is not None:
        if existing.reaction_type != reaction:
            existing.reaction_type = reaction
        return False

    session.add(
        PostLike(user_id=user_id, post_id=post_id, reaction_type=reaction, created_at=now)
    )
    await session.flush()
    await _adjust(session, post_id, likes_count=1)
    await _recompute(session, post_id, now)
    INTERACTIONS_TOTAL.labels(kind="like").inc()
    return True


async def record_unlike(
    session: AsyncSession, post_id: str, user_id: str, now: Optional[datetime] = None
) -> Optional[bool]:
    now = now or utcnow()
    if await _live_post(session, post_id) is None:
        return None

    result = await session.execute(
        delete(PostLike).where(PostLike.user_id == user_id, PostLike.post_id == post_id)
    )
    if result.rowcount == 0:
        return False
    await _adjust(session, post_id, likes_count=-1)
    await _recompute(session, post_id, now)
    INTERACTIONS_TOTAL.labels(kind="unlike").inc()
    return True


# ─────────────────────── Comments ─────────────────────────────────────────

async def get_comment(session: AsyncSession, comment_id: int) -> Optional[Comment]:
    return await session.get(Comment, comment_id)


async def record_comment(
    session: AsyncSession,
    post_id: str,
    user_id: str,
    body: str,
    parent_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[Comment]:
    """Every comment counts towards comments_count; replies also towards replies_count."""
    now = now or utcnow()
    if await _live_post(session, post_id) is None:
        return None

    comment = Comment(
        post_id=post_id, user_id=user_id, body=body, parent_id=parent_id, created_at=now
    )
    session.add(comment)
    await session.flush()

    deltas = {"comments_count": 1}
    if parent_id is not None:
        deltas["replies_count"] = 1
    await _adjust(session, post_id, **deltas)
    await _recompute(session, post_id, now)
    INTERACTIONS_TOTAL.labels(kind="comment").inc()
    return comment


async def record_uncomment(
    session: AsyncSession, post_id: str, comment_id: int, now: Optional[datetime] = None
) -> Optional[bool]:
    """Delete a comment together with every reply beneath it, at any depth."""
    now = now or utcnow()
    if await _live_post(session, post_id) is None:
        return None

    comment = await session.get(Comment, comment_id)
    if comment is None or comment.post_id != post_id:
        return False

    is_reply = comment.parent_id is not None

    levels = [[comment_id]]
    while True:
        result = await session.execute(
            select(Comment.comment_id).where(Comment.parent_id.in_(levels[-1]))
        )
        children = list(result.scalars().all())
        if not children:
            break
        levels.append(children)
    reply_ids = [cid for level in levels[1:] for cid in level]

    # Deepest first so no row outlives the parent its foreign key points at
    for level in reversed(levels):
        await session.execute(delete(Comment).where(Comment.comment_id.in_(level)))

    removed_replies = len(reply_ids) + (1 if is_reply else 0)
    deltas = {"comments_count": -(len(reply_ids) + 1)}
    if removed_replies:
        deltas["replies_count"] = -removed_replies
    await _adjust(session, post_id, **deltas)
    await _recompute(session, post_id, now)
    INTERACTIONS_TOTAL.labels(kind="uncomment").inc()
    return True


# ─────────────────────── Shares ───────────────────────────────────────────

async def record_share(
    session: AsyncSession,
    post_id: str,
    user_id: str,
    content: Optional[str] = None,
    privacy: Privacy = Privacy.PUBLIC,
    now: Optional[datetime] = None,
) -> Optional[Post]:
    """Create a `shared` post pointing at the original and count the share."""
    now = now or utcnow()
    if await _live_post(session, post_id) is None:
        return None

    shared = Post(
        user_id=user_id,
        content=content,
        post_type=PostType.SHARED,
        privacy=privacy,
        original_post_id=post_id,
        published_at=now,
        created_at=now,
    )
    session.add(shared)
    await session.flush()
    await hashtags.extract_and_sync(session, shared.post_id, content)

    await _adjust(session, post_id, shares_count=1)
    await _recompute(session, post_id, now)
    INTERACTIONS_TOTAL.labels(kind="share").inc()
    return shared


# ─────────────────────── Saves ────────────────────────────────────────────

async def _adjust_collection(session: AsyncSession, collection_id: int, delta: int) -> None:
    column = SaveCollection.posts_count
    value = column + delta if delta >= 0 else case((column + delta > 0, column + delta), else_=0)
    await session.execute(
        update(SaveCollection)
        .where(SaveCollection.collection_id == collection_id)
        .values(posts_count=value)
        .execution_options(synchronize_session=False)
    )


async def record_save(
    session: AsyncSession,
    post_id: str,
    user_id: str,
    collection_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[bool]:
    now = now or utcnow()
    if await _live_post(session, post_id) is None:
        return None

    if await session.get(PostSave, (user_id, post_id)) is not None:
        return False

    session.add(
        PostSave(user_id=user_id, post_id=post_id, collection_id=collection_id, created_at=now)
    )
    await session.flush()
    await _adjust(session, post_id, saves_count=1)
    if collection_id is not None:
        await _adjust_collection(session, collection_id, 1)
    await _recompute(session, post_id, now)
    INTERACTIONS_TOTAL.labels(kind="save").inc()
    return True


async def record_unsave(
    session: AsyncSession, post_id: str, user_id: str, now: Optional[datetime] = None
) -> Optional[bool]:
    now = now or utcnow()
    if await _live_post(session, post_id) is None:
        return None

    save = await session.get(PostSave, (user_id, post_id))
    if save is None:
        return False

    collection_id = save.collection_id
    await session.delete(save)
    await session.flush()
    await _adjust(session, post_id, saves_count=-1)
    if collection_id is not None:
        await _adjust_collection(session, collection_id, -1)
    await _recompute(session, post_id, now)
    INTERACTIONS_TOTAL.labels(kind="unsave").inc()
    return True
