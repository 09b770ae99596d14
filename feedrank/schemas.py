"""
Pydantic request / response schemas for the API layer.
Kept separate from ORM models to avoid coupling transport to storage.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from feedrank.models import FeedType, InterestType, PostType, Privacy, Reaction, ViewSource


# ──────────────────────────── Users ───────────────────────────────────────

class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    display_name: Optional[str] = None


class UserResponse(BaseModel):
    user_id: str
    username: str
    display_name: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class FollowRequest(BaseModel):
    follower_id: str
    followee_id: str


class InterestResponse(BaseModel):
    interest_type: InterestType
    interest_value: str
    weight: float
    interaction_count: int
    last_interaction_at: Optional[datetime]

    class Config:
        from_attributes = True


# ──────────────────────────── Posts ───────────────────────────────────────

class PostCreate(BaseModel):
    user_id: str
    content: Optional[str] = Field(None, max_length=10_000)
    post_type: PostType = PostType.TEXT
    privacy: Privacy = Privacy.PUBLIC
    video_duration_seconds: Optional[int] = Field(None, ge=0)
    content_category: Optional[str] = Field(None, max_length=100)
    content_tags: Optional[list[str]] = None
    # Future timestamp → stored as scheduled and published by the job runner
    scheduled_at: Optional[datetime] = None
    draft: bool = False


class PostResponse(BaseModel):
    post_id: str
    user_id: str
    username: Optional[str] = None
    display_name: Optional[str] = None
    content: Optional[str]
    post_type: PostType
    privacy: Privacy
    status: str
    is_short_video: bool
    original_post_id: Optional[str] = None
    hashtags: list[str] = []
    # Raw counters
    likes_count: int
    comments_count: int
    shares_count: int
    views_count: int
    impressions_count: int
    saves_count: int
    replies_count: int
    watch_time_seconds: int
    # Derived
    engagement_score: float
    trending_score: float
    is_viral: bool
    created_at: datetime
    published_at: Optional[datetime] = None


class ViewRequest(BaseModel):
    user_id: Optional[str] = None       # None → anonymous view
    session_id: Optional[str] = Field(None, max_length=64)
    watch_time_seconds: int = Field(0, ge=0)
    watch_percentage: float = Field(0.0, ge=0.0, le=100.0)
    source: ViewSource = ViewSource.FEED
    device_type: Optional[str] = Field(None, max_length=20)


class ViewResponse(BaseModel):
    view_id: int
    is_replay: bool
    is_complete_view: bool


class LikeRequest(BaseModel):
    user_id: str
    reaction: Reaction = Reaction.LIKE


class UserActionRequest(BaseModel):
    user_id: str


class CommentRequest(BaseModel):
    user_id: str
    body: str = Field(..., min_length=1, max_length=5_000)
    parent_id: Optional[int] = None


class CommentResponse(BaseModel):
    comment_id: int
    post_id: str
    user_id: str
    parent_id: Optional[int]
    body: str
    created_at: datetime

    class Config:
        from_attributes = True


class ShareRequest(BaseModel):
    user_id: str
    content: Optional[str] = Field(None, max_length=10_000)
    privacy: Privacy = Privacy.PUBLIC


class SaveRequest(BaseModel):
    user_id: str
    collection_id: Optional[int] = None


class InteractionResult(BaseModel):
    post_id: str
    changed: bool


# ──────────────────────────── Feed ────────────────────────────────────────

class FeedPost(BaseModel):
    """A hydrated, ranked post returned in the feed."""
    post_id: str
    user_id: str
    username: Optional[str]
    content: Optional[str]
    post_type: PostType
    is_short_video: bool
    likes_count: int
    comments_count: int
    views_count: int
    engagement_score: float
    trending_score: float
    is_viral: bool
    created_at: datetime


class FeedResponse(BaseModel):
    user_id: Optional[str]
    feed_type: FeedType
    limit: int
    offset: int
    post_ids: list[str]
    posts: list[FeedPost]
    latency_ms: float


# ──────────────────────────── Impressions ─────────────────────────────────

class ImpressionRecord(BaseModel):
    post_ids: list[str] = Field(..., min_length=1, max_length=500)


# ──────────────────────────── Hashtags ────────────────────────────────────

class HashtagResponse(BaseModel):
    name: str
    name_normalized: str
    posts_count: int
    usage_count_24h: int
    usage_count_7d: int
    is_trending: bool

    class Config:
        from_attributes = True
