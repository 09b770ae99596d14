"""
User management endpoints:
  POST /users                         — create a user profile
  GET  /users/{id}                    — fetch a user profile
  POST /users/follow                  — follow another user
  POST /users/unfollow                — unfollow
  GET  /users/{id}/followers          — list followers
  GET  /users/{id}/interests          — strongest interest signals
  GET  /users/{id}/interests/{type}   — interest values of one type
  POST /users/{id}/collections        — create a save collection
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from opentelemetry import trace
from pydantic import BaseModel, Field
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from feedrank.config import settings
from feedrank.database import get_db
from feedrank.dependencies import get_feed_cache
from feedrank.engine import interests
from feedrank.engine.feed_cache import FeedCache
from feedrank.models import FeedType, Follow, InterestType, SaveCollection, User
from feedrank.schemas import FollowRequest, InterestResponse, UserCreate, UserResponse

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)

# Feeds whose candidate set depends on who the user follows
GRAPH_FEEDS = (FeedType.FOLLOWING, FeedType.DISCOVER)


class CollectionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


async def _invalidate_graph_feeds(cache: FeedCache, user_id: str) -> None:
    for feed_type in GRAPH_FEEDS:
        await cache.invalidate(user_id, feed_type)


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(body: UserCreate, db: AsyncSession = Depends(get_db)):
    with tracer.start_as_current_span("create_user"):
        existing = await db.execute(
            select(User).where(User.username == body.username)
        )
        if existing.scalar_one_or_none():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Username '{body.username}' already taken",
            )

        user = User(username=body.username, display_name=body.display_name)
        db.add(user)
        await db.flush()  # get user_id before commit

        logger.info("Created user %s (id=%s)", user.username, user.user_id)
        return user


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, db: AsyncSession = Depends(get_db)):
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post("/follow", status_code=status.HTTP_204_NO_CONTENT)
async def follow_user(
    body: FollowRequest,
    db: AsyncSession = Depends(get_db),
    cache: FeedCache = Depends(get_feed_cache),
):
    """
    Create a follower → followee edge in the social graph.

    The follower's cached Following and Discover feeds are dropped since
    their candidate sets just changed.
    """
    with tracer.start_as_current_span("follow_user"):
        if body.follower_id == body.followee_id:
            raise HTTPException(status_code=400, detail="Cannot follow yourself")

        for uid in (body.follower_id, body.followee_id):
            if not await db.get(User, uid):
                raise HTTPException(status_code=404, detail=f"User {uid} not found")

        existing = await db.get(Follow, (body.follower_id, body.followee_id))
        if existing:
            return  # already following

        db.add(Follow(follower_id=body.follower_id, followee_id=body.followee_id))
        await db.flush()
        await _invalidate_graph_feeds(cache, body.follower_id)
        logger.info("%s followed %s", body.follower_id, body.followee_id)


@router.post("/unfollow", status_code=status.HTTP_204_NO_CONTENT)
async def unfollow_user(
    body: FollowRequest,
    db: AsyncSession = Depends(get_db),
    cache: FeedCache = Depends(get_feed_cache),
):
    with tracer.start_as_current_span("unfollow_user"):
        result = await db.execute(
            delete(Follow).where(
                Follow.follower_id == body.follower_id,
                Follow.followee_id == body.followee_id,
            )
        )
        if result.rowcount:
            await _invalidate_graph_feeds(cache, body.follower_id)


@router.get("/{user_id}/followers")
async def list_followers(user_id: str, db: AsyncSession = Depends(get_db)):
    rows = await db.execute(
        select(Follow.follower_id).where(Follow.followee_id == user_id)
    )
    return {"user_id": user_id, "followers": [r[0] for r in rows.all()]}


@router.get("/{user_id}/interests", response_model=list[InterestResponse])
async def list_interests(
    user_id: str,
    limit: int = Query(settings.interest_top_n, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    return await interests.top_interests(db, user_id, limit)


@router.get("/{user_id}/interests/{interest_type}", response_model=list[str])
async def list_interests_by_type(
    user_id: str,
    interest_type: InterestType,
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    return await interests.interests_by_type(db, user_id, interest_type, limit)


@router.post("/{user_id}/collections", status_code=status.HTTP_201_CREATED)
async def create_collection(
    user_id: str, body: CollectionCreate, db: AsyncSession = Depends(get_db)
):
    if not await db.get(User, user_id):
        raise HTTPException(status_code=404, detail="User not found")
    collection = SaveCollection(user_id=user_id, name=body.name)
    db.add(collection)
    await db.flush()
    return {
        "collection_id": collection.collection_id,
        "user_id": user_id,
        "name": collection.name,
        "posts_count": collection.posts_count,
    }
