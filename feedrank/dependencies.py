"""
FastAPI dependencies wiring the engine collaborators to the request session.
Override these in tests to swap in fakes (e.g. a Redis-backed feed cache).
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from feedrank.database import get_db
from feedrank.engine.feed_cache import FeedCache, build_feed_cache
from feedrank.engine.feeds import FeedAssembler
from feedrank.engine.social_graph import SocialGraph, SqlSocialGraph


def get_graph(db: AsyncSession = Depends(get_db)) -> SocialGraph:
    return SqlSocialGraph(db)


def get_feed_cache(db: AsyncSession = Depends(get_db)) -> FeedCache:
    return build_feed_cache(db)


def get_assembler(
    db: AsyncSession = Depends(get_db),
    cache: FeedCache = Depends(get_feed_cache),
    graph: SocialGraph = Depends(get_graph),
) -> FeedAssembler:
    return FeedAssembler(db, cache, graph)
