"""
Hashtag endpoints:
  GET /hashtags/trending          — most used hashtags in the last 24 h
  GET /hashtags/search?q=<prefix> — autocomplete by prefix, most posted first
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from feedrank.database import get_db
from feedrank.engine import hashtags
from feedrank.schemas import HashtagResponse

router = APIRouter()


@router.get("/trending", response_model=list[HashtagResponse])
async def trending_hashtags(
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    return await hashtags.trending(db, limit)


@router.get("/search", response_model=list[HashtagResponse])
async def search_hashtags(
    q: str = Query("", max_length=100, description="Prefix, with or without a leading #"),
    limit: int = Query(10, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    return await hashtags.search(db, q, limit)
