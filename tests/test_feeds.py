from datetime import datetime, timedelta

import pytest
from prometheus_client import REGISTRY
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import SQLAlchemyError

from feedrank.engine.feed_cache import SqlFeedCache
from feedrank.engine.feeds import GLOBAL_USER, FeedAssembler, invalidate_followers
from feedrank.engine.social_graph import SqlSocialGraph
from feedrank.models import FeedType, Follow, PostStatus, PostType, Privacy

NOW = datetime(2024, 3, 10, 12, 0, 0)


class BrokenCache:
    async def get(self, *args, **kwargs):
        raise RedisConnectionError("redis down")

    async def put(self, *args, **kwargs):
        raise RedisConnectionError("redis down")

    async def invalidate(self, *args, **kwargs):
        return 0

    async def clear_expired(self):
        return 0


@pytest.fixture()
def cache(session):
    return SqlFeedCache(session)


@pytest.fixture()
def assembler(session, cache):
    return FeedAssembler(session, cache, SqlSocialGraph(session), page_size=2)


@pytest.fixture()
async def people(session, make_user):
    me = await make_user(session, "me")
    friend = await make_user(session, "friend")
    stranger = await make_user(session, "stranger")
    session.add(Follow(follower_id=me.user_id, followee_id=friend.user_id))
    await session.flush()
    return me, friend, stranger


def _latency_count(feed_type: FeedType) -> float:
    return REGISTRY.get_sample_value(
        "feed_latency_seconds_count", {"feed_type": feed_type.value}
    ) or 0.0


def _counting(calls: list, fn):
    async def wrapper(*args, **kwargs):
        calls.append(args)
        return await fn(*args, **kwargs)

    return wrapper


# ── For You ──────────────────────────────────────────────────────────────

async def test_for_you_orders_by_blend_and_filters(session, assembler, people, make_post):
    me, friend, stranger = people
    mid = await make_post(session, stranger, trending_score=10, engagement_score=10)   # 10.0
    top = await make_post(session, friend, trending_score=0, engagement_score=20)      # 12.0
    low = await make_post(session, stranger, trending_score=20, engagement_score=0)    # 8.0
    await make_post(session, me, engagement_score=99)
    await make_post(session, stranger, privacy=Privacy.FRIENDS, engagement_score=99)
    await make_post(session, stranger, privacy=Privacy.PRIVATE, engagement_score=99)
    await make_post(session, stranger, status=PostStatus.DRAFT, engagement_score=99)
    await make_post(session, stranger, deleted_at=NOW, engagement_score=99)

    ids = await assembler.for_you(me.user_id, limit=10)

    assert ids == [top.post_id, mid.post_id, low.post_id]


async def test_ties_break_on_created_at_then_id(session, assembler, people, make_post):
    me, _, stranger = people
    older = await make_post(session, stranger, created_at=NOW - timedelta(hours=2), engagement_score=5)
    a = await make_post(session, stranger, post_id="aaaa", created_at=NOW, engagement_score=5)
    b = await make_post(session, stranger, post_id="bbbb", created_at=NOW, engagement_score=5)

    ids = await assembler.for_you(me.user_id, limit=10)

    assert ids == [b.post_id, a.post_id, older.post_id]


async def test_for_you_read_through_cache(session, assembler, people, make_post):
    me, _, stranger = people
    for score in (1, 2, 3):
        await make_post(session, stranger, engagement_score=score)

    calls = []
    assembler._query_for_you = _counting(calls, assembler._query_for_you)

    first = await assembler.for_you(me.user_id, limit=2, offset=0)
    second = await assembler.for_you(me.user_id, limit=2, offset=0)
    assert first == second
    assert len(calls) == 1

    page_two = await assembler.for_you(me.user_id, limit=2, offset=2)
    assert len(page_two) == 1
    assert len(calls) == 2

    # unaligned offsets bypass the cache
    await assembler.for_you(me.user_id, limit=2, offset=1)
    await assembler.for_you(me.user_id, limit=2, offset=1)
    assert len(calls) == 4


async def test_other_page_sizes_bypass_the_cache(session, cache, assembler, people, make_post):
    me, _, stranger = people
    ranked = [
        (await make_post(session, stranger, engagement_score=score)).post_id
        for score in (60, 50, 40, 30, 20, 10)
    ]

    assert await assembler.for_you(me.user_id, limit=2, offset=2) == ranked[2:4]
    assert await assembler.for_you(me.user_id, limit=4, offset=4) == ranked[4:6]

    assert await assembler.for_you(me.user_id, limit=4, offset=0) == ranked[:4]
    assert await assembler.for_you(me.user_id, limit=2, offset=0) == ranked[:2]

    # only pages of the configured size were written
    assert await cache.get(me.user_id, FeedType.FOR_YOU, page=2) == ranked[2:4]
    assert await cache.get(me.user_id, FeedType.FOR_YOU, page=1) == ranked[:2]


async def test_cached_snapshot_is_not_reordered(session, assembler, people, make_post, reload):
    me, _, stranger = people
    p1 = await make_post(session, stranger, engagement_score=2)
    p2 = await make_post(session, stranger, engagement_score=1)
    assert await assembler.for_you(me.user_id, limit=2) == [p1.post_id, p2.post_id]

    p2 = await reload(session, p2.post_id)
    p2.engagement_score = 50
    await session.flush()

    assert await assembler.for_you(me.user_id, limit=2) == [p1.post_id, p2.post_id]


async def test_cache_failure_falls_back_to_query(session, people, make_post):
    me, _, stranger = people
    post = await make_post(session, stranger)
    assembler = FeedAssembler(session, BrokenCache(), SqlSocialGraph(session))

    assert await assembler.for_you(me.user_id) == [post.post_id]


async def test_storage_failure_returns_empty_feed(session, assembler, people):
    me, _, _ = people

    async def broken(*args, **kwargs):
        raise SQLAlchemyError("connection lost")

    assembler._query_for_you = broken
    assert await assembler.for_you(me.user_id) == []


async def test_storage_failure_is_still_timed(session, assembler, people):
    me, _, _ = people

    async def broken(*args, **kwargs):
        raise SQLAlchemyError("connection lost")

    assembler._query_for_you = broken
    before = _latency_count(FeedType.FOR_YOU)

    assert await assembler.for_you(me.user_id, limit=2) == []
    assert _latency_count(FeedType.FOR_YOU) == before + 1


# ── Following ────────────────────────────────────────────────────────────

async def test_following_is_chronological_friends_only(session, assembler, people, make_post):
    me, friend, stranger = people
    old = await make_post(session, friend, created_at=NOW - timedelta(hours=5), engagement_score=50)
    new = await make_post(session, friend, created_at=NOW, privacy=Privacy.FRIENDS)
    await make_post(session, friend, privacy=Privacy.PRIVATE)
    await make_post(session, stranger, created_at=NOW)

    assert await assembler.following(me.user_id) == [new.post_id, old.post_id]


async def test_following_accepts_explicit_friend_ids(session, assembler, people, make_post):
    me, _, stranger = people
    post = await make_post(session, stranger)

    assert await assembler.following(me.user_id, friend_ids=[stranger.user_id]) == [post.post_id]


async def test_following_without_friends_is_empty(session, assembler, people, make_post):
    _, _, stranger = people
    await make_post(session, stranger)
    assert await assembler.following(stranger.user_id) == []


# ── Shorts ───────────────────────────────────────────────────────────────

async def test_shorts_only_short_form(session, assembler, people, make_post):
    me, _, stranger = people
    flagged = await make_post(
        session, stranger, post_type=PostType.VIDEO, is_short_video=True, trending_score=4
    )
    typed = await make_post(session, stranger, post_type=PostType.SHORT_VIDEO, engagement_score=10)
    await make_post(session, stranger, post_type=PostType.VIDEO, engagement_score=99)
    await make_post(session, stranger, post_type=PostType.PHOTO, engagement_score=99)

    assert await assembler.shorts(me.user_id) == [typed.post_id, flagged.post_id]


# ── Trending ─────────────────────────────────────────────────────────────

async def test_trending_seven_day_boundary(session, assembler, people, make_post):
    _, _, stranger = people
    edge = await make_post(session, stranger, created_at=NOW - timedelta(days=7), trending_score=5)
    await make_post(
        session, stranger, created_at=NOW - timedelta(days=7, seconds=1), trending_score=500
    )
    await make_post(session, stranger, created_at=NOW - timedelta(days=8), trending_score=900)
    fresh = await make_post(session, stranger, created_at=NOW, trending_score=10)

    assert await assembler.trending(limit=10, now=NOW) == [fresh.post_id, edge.post_id]


async def test_trending_is_cached_globally(session, cache, assembler, people, make_post):
    _, _, stranger = people
    post = await make_post(session, stranger, created_at=NOW, trending_score=1)

    await assembler.trending(limit=2, now=NOW)

    assert await cache.get(GLOBAL_USER, FeedType.TRENDING) == [post.post_id]


# ── Discover ─────────────────────────────────────────────────────────────

async def test_discover_excludes_self_and_friends(session, assembler, people, make_post):
    me, friend, stranger = people
    await make_post(session, me, engagement_score=99)
    await make_post(session, friend, engagement_score=99)
    hot = await make_post(session, stranger, trending_score=10, engagement_score=0)      # 3.0
    warm = await make_post(session, stranger, trending_score=0, engagement_score=5)      # 3.5

    assert await assembler.discover(me.user_id) == [warm.post_id, hot.post_id]


# ── Invalidation & hydration ─────────────────────────────────────────────

async def test_invalidate_followers_drops_following_feeds(session, cache, people):
    me, friend, stranger = people
    await cache.put(me.user_id, FeedType.FOLLOWING, ["old"])
    await cache.put(me.user_id, FeedType.FOR_YOU, ["keep"])
    await cache.put(stranger.user_id, FeedType.FOLLOWING, ["other"])

    count = await invalidate_followers(SqlSocialGraph(session), cache, friend.user_id)

    assert count == 1
    assert await cache.get(me.user_id, FeedType.FOLLOWING) is None
    assert await cache.get(me.user_id, FeedType.FOR_YOU) == ["keep"]
    assert await cache.get(stranger.user_id, FeedType.FOLLOWING) == ["other"]


async def test_hydrate_keeps_rank_order_and_drops_deleted(session, assembler, people, make_post):
    _, _, stranger = people
    a = await make_post(session, stranger)
    b = await make_post(session, stranger)
    gone = await make_post(session, stranger, deleted_at=NOW)

    posts = await assembler.hydrate([b.post_id, gone.post_id, a.post_id])

    assert [p.post_id for p in posts] == [b.post_id, a.post_id]
