"""
Engagement scoring.

Three derived fields are kept on every post and recomputed after each
counter mutation:

  engagement_score — weighted interaction total × media boost × time decay
  trending_score   — interactions in the trailing 24 h × freshness normaliser
  is_viral         — raw score > 100 AND engagement rate over impressions > 5 %

Weights (replies > shares > comments > saves > likes > views):

  raw = 3.0·replies + 2.5·shares + 2.0·comments + 1.8·saves + 1.0·likes + 0.1·views
      + 0.5·(watch_time / views)              video posts only

  engagement = raw × boost × 0.5^(hours_old / 6)

Boost: short-form video 2.0, video 1.5, photo 1.2, everything else 1.0.

The scoring functions are pure; `recalculate` loads inputs, calls them and
writes all three fields with one UPDATE. Running it twice on the same inputs
gives the same row, so concurrent recomputations are last-writer-wins.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from feedrank.database import utcnow
from feedrank.models import Comment, Post, PostLike, PostStatus, PostType, PostView

logger = logging.getLogger(__name__)

WEIGHT_REPLY = 3.0
WEIGHT_SHARE = 2.5
WEIGHT_COMMENT = 2.0
WEIGHT_SAVE = 1.8
WEIGHT_LIKE = 1.0
WEIGHT_VIEW = 0.1
WEIGHT_WATCH_TIME = 0.5

BOOST_SHORT_VIDEO = 2.0
BOOST_VIDEO = 1.5
BOOST_IMAGE = 1.2
BOOST_TEXT = 1.0

DECAY_HALF_LIFE_HOURS = 6.0
TRENDING_WINDOW_HOURS = 24
TRENDING_MAX_NORMALIZER = 2.0

VIRAL_RAW_THRESHOLD = 100.0
VIRAL_RATE_THRESHOLD = 0.05

VIDEO_TYPES = (PostType.VIDEO, PostType.SHORT_VIDEO)


@dataclass(frozen=True)
class ScoreInputs:
    post_type: PostType
    created_at: datetime
    is_short_video: bool = False
    likes: int = 0
    comments: int = 0
    shares: int = 0
    views: int = 0
    impressions: int = 0
    watch_time_seconds: int = 0
    saves: int = 0
    replies: int = 0

    @classmethod
    def from_post(cls, post: Post) -> "ScoreInputs":
        return cls(
            post_type=post.post_type,
            created_at=post.created_at,
            is_short_video=post.is_short_video,
            likes=post.likes_count,
            comments=post.comments_count,
            shares=post.shares_count,
            views=post.views_count,
            impressions=post.impressions_count,
            watch_time_seconds=post.watch_time_seconds,
            saves=post.saves_count,
            replies=post.replies_count,
        )


@dataclass(frozen=True)
class RecentActivity:
    likes: int = 0
    comments: int = 0
    views: int = 0


@dataclass(frozen=True)
class Scores:
    raw_score: float
    engagement_score: float
    trending_score: float
    is_viral: bool


def hours_since(created_at: datetime, now: datetime) -> float:
    """Fractional hours elapsed; clock skew never yields a negative age."""
    return max(0.0, (now - created_at).total_seconds() / 3600.0)


def raw_score(inputs: ScoreInputs) -> float:
    score = (
        inputs.replies * WEIGHT_REPLY
        + inputs.shares * WEIGHT_SHARE
        + inputs.comments * WEIGHT_COMMENT
        + inputs.saves * WEIGHT_SAVE
        + inputs.likes * WEIGHT_LIKE
        + inputs.views * WEIGHT_VIEW
    )
    if inputs.post_type in VIDEO_TYPES and inputs.views > 0:
        score += (inputs.watch_time_seconds / inputs.views) * WEIGHT_WATCH_TIME
    return score


def media_boost(inputs: ScoreInputs) -> float:
    if inputs.is_short_video or inputs.post_type == PostType.SHORT_VIDEO:
        return BOOST_SHORT_VIDEO
    if inputs.post_type == PostType.VIDEO:
        return BOOST_VIDEO
    if inputs.post_type == PostType.PHOTO:
        return BOOST_IMAGE
    return BOOST_TEXT


def decay_factor(hours_old: float) -> float:
    return 0.5 ** (max(0.0, hours_old) / DECAY_HALF_LIFE_HOURS)


def trending_score(recent: RecentActivity, hours_old: float) -> float:
    recent_score = (
        recent.likes * WEIGHT_LIKE
        + recent.comments * WEIGHT_COMMENT
        + recent.views * WEIGHT_VIEW
    )
    # Young posts get at most a 2x freshness boost
    normalizer = min(TRENDING_WINDOW_HOURS / max(hours_old, 1.0), TRENDING_MAX_NORMALIZER)
    return round(recent_score * normalizer, 4)


def engagement_rate(inputs: ScoreInputs) -> float:
    if inputs.impressions <= 0:
        return 0.0
    return (inputs.likes + inputs.comments + inputs.shares) / inputs.impressions


def is_viral(raw: float, rate: float) -> bool:
    return raw > VIRAL_RAW_THRESHOLD and rate > VIRAL_RATE_THRESHOLD


def compute_scores(
    inputs: ScoreInputs, recent: RecentActivity, now: datetime
) -> Scores:
    hours_old = hours_since(inputs.created_at, now)
    raw = raw_score(inputs)
    return Scores(
        raw_score=raw,
        engagement_score=round(raw * media_boost(inputs) * decay_factor(hours_old), 4),
        trending_score=trending_score(recent, hours_old),
        is_viral=is_viral(raw, engagement_rate(inputs)),
    )


async def recent_activity(
    session: AsyncSession, post_id: str, now: datetime
) -> RecentActivity:
    since = now - timedelta(hours=TRENDING_WINDOW_HOURS)

    async def _count(model) -> int:
        result = await session.execute(
            select(func.count())
            .select_from(model)
            .where(model.post_id == post_id, model.created_at >= since)
        )
        return result.scalar_one()

    return RecentActivity(
        likes=await _count(PostLike),
        comments=await _count(Comment),
        views=await _count(PostView),
    )


async def recalculate(
    session: AsyncSession, post_id: str, now: Optional[datetime] = None
) -> Optional[Scores]:
    """
    Recompute and persist the derived score fields of one post.
    Returns None (and writes nothing) if the post is gone.
    """
    now = now or utcnow()
    result = await session.execute(
        select(Post)
        .where(Post.post_id == post_id, Post.deleted_at.is_(None))
        .execution_options(populate_existing=True)
    )
    post = result.unique().scalar_one_or_none()
    if post is None:
        logger.debug("Skipping recompute for missing post %s", post_id)
        return None

    scores = compute_scores(
        ScoreInputs.from_post(post),
        await recent_activity(session, post_id, now),
        now,
    )
    await session.execute(
        update(Post)
        .where(Post.post_id == post_id)
        .values(
            engagement_score=scores.engagement_score,
            trending_score=scores.trending_score,
            is_viral=scores.is_viral,
        )
        .execution_options(synchronize_session=False)
    )
    return scores


async def recalculate_all(
    session: AsyncSession, since_days: int = 7, now: Optional[datetime] = None
) -> int:
    """
    Rescore every published post created in the last `since_days` days.
    Keeps decay advancing for posts that receive no new interactions.
    """
    now = now or utcnow()
    result = await session.execute(
        select(Post.post_id).where(
            Post.status == PostStatus.PUBLISHED,
            Post.deleted_at.is_(None),
            Post.created_at >= now - timedelta(days=since_days),
        )
    )
    post_ids = list(result.scalars().all())
    for post_id in post_ids:
        await recalculate(session, post_id, now)
    logger.info("Rescored %d posts (window=%dd)", len(post_ids), since_days)
    return len(post_ids)
