from feedrank.engine.feed_cache import SqlFeedCache
from feedrank.models import FeedType, Follow
from feedrank.workers.invalidation_worker import process_message


async def test_new_post_event_drops_follower_feeds(session_factory, make_user):
    async with session_factory() as session:
        author = await make_user(session, "author")
        fans = [await make_user(session) for _ in range(2)]
        for fan in fans:
            session.add(Follow(follower_id=fan.user_id, followee_id=author.user_id))
            await SqlFeedCache(session).put(fan.user_id, FeedType.FOLLOWING, ["stale"])
        await session.commit()

    count = await process_message(
        {"post_id": "p1", "user_id": author.user_id, "content": "hi"}, session_factory
    )

    assert count == 2
    async with session_factory() as session:
        cache = SqlFeedCache(session)
        for fan in fans:
            assert await cache.get(fan.user_id, FeedType.FOLLOWING) is None


async def test_malformed_event_is_skipped(session_factory):
    assert await process_message({"post_id": "p1"}, session_factory) == 0
    assert await process_message({}, session_factory) == 0


async def test_non_object_payloads_are_skipped(session_factory):
    for payload in (["p1", "u1"], "p1", 42, None):
        assert await process_message(payload, session_factory) == 0
