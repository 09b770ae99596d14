"""
SQLAlchemy ORM models for TiDB.

Tables:
  users            — user profiles
  follows          — social graph edges (follower → followee)
  posts            — content items: raw interaction counters + derived scores
  post_likes       — user × post reactions
  comments         — comments and replies
  post_views       — append-only view log (watch time, replay detection)
  save_collections — named bookmark folders
  post_saves       — user × post bookmarks
  hashtags         — normalised hashtag registry with rolling usage counters
  post_hashtags    — post ↔ hashtag association
  user_interests   — per-user weighted affinity over creators/hashtags/categories
  feed_cache       — (user, feed_type, page) → ranked post_id snapshot
"""
import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from feedrank.database import Base, utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


def _enum_column(enum_cls: type[enum.Enum], length: int = 20) -> Enum:
    # Stored as VARCHAR holding the enum *value*, not the member name
    return Enum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
    )


# ──────────────────────────── Enumerations ────────────────────────────────

class PostType(str, enum.Enum):
    TEXT = "text"
    PHOTO = "photo"
    VIDEO = "video"
    SHORT_VIDEO = "short_video"
    AUDIO = "audio"
    AUDIO_TEXT = "audio_text"
    IMAGE_TEXT = "image_text"
    POLL = "poll"
    SHARED = "shared"


class Privacy(str, enum.Enum):
    PUBLIC = "public"
    FRIENDS = "friends"
    PRIVATE = "private"


class PostStatus(str, enum.Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class ViewSource(str, enum.Enum):
    FEED = "feed"
    PROFILE = "profile"
    DISCOVER = "discover"
    SEARCH = "search"
    SHARE = "share"
    SHORTS = "shorts"


class Reaction(str, enum.Enum):
    LIKE = "like"
    LOVE = "love"
    HAHA = "haha"
    WOW = "wow"
    SAD = "sad"
    ANGRY = "angry"


class InterestType(str, enum.Enum):
    HASHTAG = "hashtag"
    CATEGORY = "category"
    CREATOR = "creator"


class FeedType(str, enum.Enum):
    FOR_YOU = "for_you"
    FOLLOWING = "following"
    TRENDING = "trending"
    DISCOVER = "discover"
    SHORTS = "shorts"


# ──────────────────────────── Social graph ────────────────────────────────

class User(Base):
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    posts = relationship("Post", back_populates="author", lazy="noload")


class Follow(Base):
    __tablename__ = "follows"

    follower_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), primary_key=True
    )
    followee_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        # Fast lookup "who follows user X?" for reach and invalidation
        Index("idx_followee", "followee_id"),
    )


# ──────────────────────────── Content ─────────────────────────────────────

class Post(Base):
    __tablename__ = "posts"

    post_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), nullable=False
    )
    content: Mapped[Optional[str]] = mapped_column(Text)
    post_type: Mapped[PostType] = mapped_column(
        _enum_column(PostType), default=PostType.TEXT, nullable=False
    )
    privacy: Mapped[Privacy] = mapped_column(
        _enum_column(Privacy), default=Privacy.PUBLIC, nullable=False
    )
    status: Mapped[PostStatus] = mapped_column(
        _enum_column(PostStatus), default=PostStatus.PUBLISHED, nullable=False
    )
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    video_duration_seconds: Mapped[Optional[int]] = mapped_column(Integer)
    is_short_video: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    original_post_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("posts.post_id")
    )

    # Raw counters: only ever changed through atomic UPDATE ... SET c = c + n
    likes_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    comments_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    shares_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    views_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    impressions_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    watch_time_seconds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    saves_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    replies_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reach_followers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reach_non_followers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Derived: written together by the engagement scorer
    engagement_score: Mapped[float] = mapped_column(
        Numeric(14, 4, asdecimal=False), default=0.0, nullable=False
    )
    trending_score: Mapped[float] = mapped_column(
        Numeric(14, 4, asdecimal=False), default=0.0, nullable=False
    )
    is_viral: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    content_category: Mapped[Optional[str]] = mapped_column(String(100))
    content_tags: Mapped[Optional[list]] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    author = relationship("User", back_populates="posts", lazy="joined")
    hashtags = relationship(
        "Hashtag", secondary="post_hashtags", lazy="selectin", viewonly=True
    )

    __table_args__ = (
        Index("idx_posts_user", "user_id"),
        Index("idx_posts_created", "created_at"),
        Index("idx_posts_engagement", "engagement_score"),
        Index("idx_posts_trending", "trending_score"),
        Index("idx_posts_privacy_created", "privacy", "created_at", "trending_score"),
    )

    @property
    def is_short_form(self) -> bool:
        return self.is_short_video or self.post_type == PostType.SHORT_VIDEO


class PostLike(Base):
    __tablename__ = "post_likes"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), primary_key=True
    )
    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("posts.post_id"), primary_key=True
    )
    reaction_type: Mapped[Reaction] = mapped_column(
        _enum_column(Reaction), default=Reaction.LIKE, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_likes_post_created", "post_id", "created_at"),)


class Comment(Base):
    __tablename__ = "comments"

    comment_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("posts.post_id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), nullable=False
    )
    parent_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("comments.comment_id")
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_comments_post_created", "post_id", "created_at"),)


class PostView(Base):
    """Immutable view record. Never updated or deleted."""

    __tablename__ = "post_views"

    view_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("posts.post_id"), nullable=False
    )
    user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.user_id"))
    session_id: Mapped[Optional[str]] = mapped_column(String(64))
    watch_time_seconds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    watch_percentage: Mapped[float] = mapped_column(
        Numeric(5, 2, asdecimal=False), default=0.0, nullable=False
    )
    is_complete_view: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_replay: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    source: Mapped[ViewSource] = mapped_column(
        _enum_column(ViewSource), default=ViewSource.FEED, nullable=False
    )
    device_type: Mapped[Optional[str]] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_views_post_created", "post_id", "created_at"),
        Index("idx_views_user_post", "user_id", "post_id"),
    )


class SaveCollection(Base):
    __tablename__ = "save_collections"

    collection_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    posts_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class PostSave(Base):
    __tablename__ = "post_saves"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), primary_key=True
    )
    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("posts.post_id"), primary_key=True
    )
    collection_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("save_collections.collection_id")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


# ──────────────────────────── Hashtags ────────────────────────────────────

class Hashtag(Base):
    __tablename__ = "hashtags"

    hashtag_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    name_normalized: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    posts_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    usage_count_24h: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    usage_count_7d: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_trending: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_blocked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_hashtags_usage_24h", "usage_count_24h"),
        Index("idx_hashtags_posts", "posts_count"),
    )


class PostHashtag(Base):
    __tablename__ = "post_hashtags"

    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("posts.post_id"), primary_key=True
    )
    hashtag_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("hashtags.hashtag_id"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_post_hashtags_hashtag", "hashtag_id"),)


# ──────────────────────────── Personalisation ─────────────────────────────

class UserInterest(Base):
    __tablename__ = "user_interests"

    interest_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    interest_type: Mapped[InterestType] = mapped_column(
        _enum_column(InterestType), nullable=False
    )
    interest_value: Mapped[str] = mapped_column(String(255), nullable=False)
    weight: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    interaction_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_interaction_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        UniqueConstraint("user_id", "interest_type", "interest_value", name="uq_user_interest"),
        Index("idx_interests_user_weight", "user_id", "weight"),
    )


class FeedCacheEntry(Base):
    __tablename__ = "feed_cache"

    entry_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Not a foreign key: global feeds are cached under a sentinel user id
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    feed_type: Mapped[FeedType] = mapped_column(_enum_column(FeedType), nullable=False)
    page: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    post_ids: Mapped[list] = mapped_column(JSON, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "feed_type", "page", name="uq_feed_cache_key"),
        Index("idx_feed_cache_expires", "expires_at"),
    )
