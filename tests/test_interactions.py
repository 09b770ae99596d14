from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from feedrank.engine import hashtags, interactions, interests, scoring
from feedrank.engine.social_graph import SqlSocialGraph
from feedrank.models import (
    Comment,
    Follow,
    InterestType,
    Post,
    PostLike,
    PostType,
    PostView,
    Reaction,
    SaveCollection,
)

NOW = datetime(2024, 3, 1, 13, 0, 0)


class DummyGraph:
    def __init__(self, followers: dict[str, set[str]]):
        self.followers = followers
        self.calls = []

    async def is_follower(self, followee_id, follower_id):
        self.calls.append((followee_id, follower_id))
        return follower_id in self.followers.get(followee_id, set())

    async def friend_ids(self, user_id):
        return [f for f, fans in self.followers.items() if user_id in fans]

    async def follower_ids(self, user_id):
        return sorted(self.followers.get(user_id, set()))


@pytest.fixture()
async def author_and_post(session, make_user, make_post):
    author = await make_user(session, "author")
    post = await make_post(session, author, content="hello #Cats", content_category="pets")
    await hashtags.extract_and_sync(session, post.post_id, post.content)
    return author, post


# ── Views ────────────────────────────────────────────────────────────────

async def test_replay_detection_per_viewer(session, make_user, author_and_post):
    _, post = author_and_post
    viewer = await make_user(session)

    first = await interactions.record_view(session, post.post_id, viewer.user_id, now=NOW)
    second = await interactions.record_view(session, post.post_id, viewer.user_id, now=NOW)
    third = await interactions.record_view(session, post.post_id, viewer.user_id, now=NOW)

    assert [first.is_replay, second.is_replay, third.is_replay] == [False, True, True]


async def test_anonymous_views_are_never_replays(session, author_and_post):
    _, post = author_and_post
    views = [
        await interactions.record_view(session, post.post_id, None, session_id="s1", now=NOW)
        for _ in range(3)
    ]
    assert all(v.is_replay is False for v in views)


async def test_view_counters_and_completion(session, author_and_post, reload):
    _, post = author_and_post

    complete = await interactions.record_view(
        session, post.post_id, watch_time_seconds=20, watch_percentage=95.0, now=NOW
    )
    partial = await interactions.record_view(
        session, post.post_id, watch_time_seconds=0, watch_percentage=94.9, now=NOW
    )

    assert complete.is_complete_view is True
    assert partial.is_complete_view is False
    post = await reload(session, post.post_id)
    assert (post.views_count, post.watch_time_seconds) == (2, 20)


async def test_view_of_missing_post_writes_nothing(session):
    assert await interactions.record_view(session, "missing", "u1", now=NOW) is None
    assert await session.scalar(select(func.count()).select_from(PostView)) == 0


async def test_reach_attribution(session, make_user, author_and_post, reload):
    author, post = author_and_post
    fan = await make_user(session)
    stranger = await make_user(session)
    graph = DummyGraph({author.user_id: {fan.user_id}})

    await interactions.record_view(session, post.post_id, fan.user_id, graph=graph, now=NOW)
    await interactions.record_view(session, post.post_id, stranger.user_id, graph=graph, now=NOW)
    await interactions.record_view(session, post.post_id, author.user_id, graph=graph, now=NOW)

    post = await reload(session, post.post_id)
    assert (post.reach_followers, post.reach_non_followers) == (1, 1)
    assert (author.user_id, author.user_id) not in graph.calls


async def test_reach_uses_follow_table_by_default(session, make_user, author_and_post, reload):
    author, post = author_and_post
    fan = await make_user(session)
    session.add(Follow(follower_id=fan.user_id, followee_id=author.user_id))
    await session.flush()

    await interactions.record_view(
        session, post.post_id, fan.user_id, graph=SqlSocialGraph(session), now=NOW
    )
    assert (await reload(session, post.post_id)).reach_followers == 1


async def test_engaged_view_feeds_interest_profile(session, make_user, author_and_post):
    author, post = author_and_post
    viewer = await make_user(session)

    await interactions.record_view(
        session, post.post_id, viewer.user_id, watch_percentage=50.0, now=NOW
    )
    assert await interests.top_interests(session, viewer.user_id) == []

    await interactions.record_view(
        session, post.post_id, viewer.user_id, watch_percentage=80.0, now=NOW
    )
    profile = {
        (i.interest_type, i.interest_value): i.weight
        for i in await interests.top_interests(session, viewer.user_id)
    }
    assert profile == {
        (InterestType.CREATOR, author.user_id): pytest.approx(0.1),
        (InterestType.HASHTAG, "cats"): pytest.approx(0.1),
        (InterestType.CATEGORY, "pets"): pytest.approx(0.1),
    }


async def test_impressions_count_each_live_post_once(session, author_and_post, reload):
    _, post = author_and_post

    recorded = await interactions.record_impressions(
        session, [post.post_id, post.post_id, "missing"], now=NOW
    )

    assert recorded == 1
    assert (await reload(session, post.post_id)).impressions_count == 1


# ── Likes ────────────────────────────────────────────────────────────────

async def test_like_is_idempotent_and_updates_reaction(session, make_user, author_and_post, reload):
    _, post = author_and_post
    fan = await make_user(session)

    assert await interactions.record_like(session, post.post_id, fan.user_id, now=NOW) is True
    assert await interactions.record_like(
        session, post.post_id, fan.user_id, Reaction.LOVE, now=NOW
    ) is False

    like = await session.get(PostLike, (fan.user_id, post.post_id))
    assert like.reaction_type == Reaction.LOVE
    post = await reload(session, post.post_id)
    assert post.likes_count == 1
    assert post.engagement_score > 0


async def test_unlike_never_goes_negative(session, make_user, author_and_post, reload):
    _, post = author_and_post
    fan = await make_user(session)
    await interactions.record_like(session, post.post_id, fan.user_id, now=NOW)

    assert await interactions.record_unlike(session, post.post_id, fan.user_id, now=NOW) is True
    assert await interactions.record_unlike(session, post.post_id, fan.user_id, now=NOW) is False
    assert (await reload(session, post.post_id)).likes_count == 0


async def test_like_on_deleted_post_is_noop(session, make_user, make_post):
    author = await make_user(session)
    post = await make_post(session, author, deleted_at=NOW)
    assert await interactions.record_like(session, post.post_id, author.user_id, now=NOW) is None


async def test_recompute_failure_does_not_fail_interaction(
    session, make_user, author_and_post, reload, monkeypatch
):
    _, post = author_and_post
    fan = await make_user(session)

    async def broken(*args, **kwargs):
        raise SQLAlchemyError("scores table locked")

    monkeypatch.setattr(scoring, "recalculate", broken)

    assert await interactions.record_like(session, post.post_id, fan.user_id, now=NOW) is True
    post = await reload(session, post.post_id)
    assert post.likes_count == 1
    assert post.engagement_score == 0.0


# ── Comments ─────────────────────────────────────────────────────────────

async def test_replies_count_separately(session, make_user, author_and_post, reload):
    _, post = author_and_post
    fan = await make_user(session)

    parent = await interactions.record_comment(session, post.post_id, fan.user_id, "first", now=NOW)
    await interactions.record_comment(
        session, post.post_id, fan.user_id, "reply", parent_id=parent.comment_id, now=NOW
    )

    post = await reload(session, post.post_id)
    assert (post.comments_count, post.replies_count) == (2, 1)


async def test_uncomment_removes_thread(session, make_user, author_and_post, reload):
    _, post = author_and_post
    fan = await make_user(session)
    parent = await interactions.record_comment(session, post.post_id, fan.user_id, "a", now=NOW)
    await interactions.record_comment(
        session, post.post_id, fan.user_id, "b", parent_id=parent.comment_id, now=NOW
    )

    assert await interactions.record_uncomment(session, post.post_id, parent.comment_id, now=NOW)

    post = await reload(session, post.post_id)
    assert (post.comments_count, post.replies_count) == (0, 0)
    assert await session.scalar(select(func.count()).select_from(Comment)) == 0


async def test_uncomment_removes_nested_replies(session, make_user, author_and_post, reload):
    _, post = author_and_post
    fan = await make_user(session)
    top = await interactions.record_comment(session, post.post_id, fan.user_id, "a", now=NOW)
    reply = await interactions.record_comment(
        session, post.post_id, fan.user_id, "b", parent_id=top.comment_id, now=NOW
    )
    await interactions.record_comment(
        session, post.post_id, fan.user_id, "c", parent_id=reply.comment_id, now=NOW
    )
    sibling = await interactions.record_comment(session, post.post_id, fan.user_id, "d", now=NOW)

    assert await interactions.record_uncomment(session, post.post_id, top.comment_id, now=NOW)

    remaining = (await session.execute(select(Comment.comment_id))).scalars().all()
    assert list(remaining) == [sibling.comment_id]
    post = await reload(session, post.post_id)
    assert (post.comments_count, post.replies_count) == (1, 0)


async def test_uncomment_reply_only(session, make_user, author_and_post, reload):
    _, post = author_and_post
    fan = await make_user(session)
    parent = await interactions.record_comment(session, post.post_id, fan.user_id, "a", now=NOW)
    reply = await interactions.record_comment(
        session, post.post_id, fan.user_id, "b", parent_id=parent.comment_id, now=NOW
    )

    assert await interactions.record_uncomment(session, post.post_id, reply.comment_id, now=NOW)

    post = await reload(session, post.post_id)
    assert (post.comments_count, post.replies_count) == (1, 0)
    assert await interactions.record_uncomment(session, post.post_id, 9999, now=NOW) is False


# ── Shares & saves ───────────────────────────────────────────────────────

async def test_share_creates_shared_post(session, make_user, author_and_post, reload):
    _, post = author_and_post
    fan = await make_user(session)

    shared = await interactions.record_share(
        session, post.post_id, fan.user_id, content="look #wow", now=NOW
    )

    assert shared.post_type == PostType.SHARED
    assert shared.original_post_id == post.post_id
    assert await hashtags.post_hashtag_names(session, shared.post_id) == ["wow"]
    assert (await reload(session, post.post_id)).shares_count == 1


async def test_save_into_collection(session, make_user, author_and_post, reload):
    _, post = author_and_post
    fan = await make_user(session)
    collection = SaveCollection(user_id=fan.user_id, name="later")
    session.add(collection)
    await session.flush()

    assert await interactions.record_save(
        session, post.post_id, fan.user_id, collection.collection_id, now=NOW
    ) is True
    assert await interactions.record_save(session, post.post_id, fan.user_id, now=NOW) is False

    await session.refresh(collection)
    assert collection.posts_count == 1
    assert (await reload(session, post.post_id)).saves_count == 1

    assert await interactions.record_unsave(session, post.post_id, fan.user_id, now=NOW) is True
    await session.refresh(collection)
    assert collection.posts_count == 0
    assert (await reload(session, post.post_id)).saves_count == 0


async def test_trending_window_only_counts_last_day(session, make_user, author_and_post, reload):
    _, post = author_and_post
    old_fan = await make_user(session)
    new_fan = await make_user(session)

    await interactions.record_like(
        session, post.post_id, old_fan.user_id, now=NOW - timedelta(days=2)
    )
    await interactions.record_like(session, post.post_id, new_fan.user_id, now=NOW)

    post: Post = await reload(session, post.post_id)
    # one recent like, post is 1 h old → normalizer capped at 2
    assert post.trending_score == pytest.approx(2.0)
