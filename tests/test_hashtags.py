from sqlalchemy import select

from feedrank.engine import hashtags
from feedrank.models import Hashtag


async def _tag(session, name: str) -> Hashtag:
    result = await session.execute(
        select(Hashtag)
        .where(Hashtag.name_normalized == name)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


def test_extract_is_unicode_aware_and_distinct():
    text = "Launch day #Python #python #Привет #日本語 #snake_case #2024 and #Python again"
    assert hashtags.extract_hashtags(text) == [
        ("Python", "python"),
        ("Привет", "привет"),
        ("日本語", "日本語"),
        ("snake_case", "snake_case"),
        ("2024", "2024"),
    ]


def test_extract_handles_missing_text():
    assert hashtags.extract_hashtags(None) == []
    assert hashtags.extract_hashtags("") == []
    assert hashtags.extract_hashtags("no tags # here") == []


async def test_resync_with_same_text_is_idempotent(session, make_user, make_post):
    post = await make_post(session, await make_user(session))

    first = await hashtags.extract_and_sync(session, post.post_id, "#a #B")
    second = await hashtags.extract_and_sync(session, post.post_id, "#a #B")

    assert first == second
    assert await hashtags.post_hashtag_names(session, post.post_id) == ["a", "b"]
    tag_a = await _tag(session, "a")
    assert (tag_a.posts_count, tag_a.usage_count_24h, tag_a.usage_count_7d) == (1, 1, 1)
    assert (await _tag(session, "b")).name == "B"


async def test_resync_replaces_association_set(session, make_user, make_post):
    post = await make_post(session, await make_user(session))
    await hashtags.extract_and_sync(session, post.post_id, "#a #b")

    await hashtags.extract_and_sync(session, post.post_id, "#b #c")

    assert await hashtags.post_hashtag_names(session, post.post_id) == ["b", "c"]
    assert (await _tag(session, "b")).posts_count == 1
    assert (await _tag(session, "c")).posts_count == 1


async def test_empty_text_clears_associations(session, make_user, make_post):
    post = await make_post(session, await make_user(session))
    await hashtags.extract_and_sync(session, post.post_id, "#a")

    assert await hashtags.extract_and_sync(session, post.post_id, None) == []
    assert await hashtags.post_hashtag_names(session, post.post_id) == []


async def test_counts_accumulate_across_posts_and_release_on_delete(session, make_user, make_post):
    author = await make_user(session)
    p1 = await make_post(session, author)
    p2 = await make_post(session, author)
    await hashtags.extract_and_sync(session, p1.post_id, "#shared")
    await hashtags.extract_and_sync(session, p2.post_id, "#Shared")

    assert (await _tag(session, "shared")).posts_count == 2

    await hashtags.release_post_hashtags(session, p1.post_id)
    tag = await _tag(session, "shared")
    assert tag.posts_count == 1
    assert tag.usage_count_24h == 2


async def _seed_usage(session, counts: dict[str, tuple[int, int]]) -> None:
    for name, (usage_24h, posts) in counts.items():
        session.add(
            Hashtag(
                name=name,
                name_normalized=name,
                usage_count_24h=usage_24h,
                usage_count_7d=usage_24h,
                posts_count=posts,
            )
        )
    await session.flush()


async def test_trending_excludes_blocked(session):
    await _seed_usage(session, {"low": (1, 1), "high": (9, 1), "mid": (5, 1), "spam": (50, 1)})
    (await _tag(session, "spam")).is_blocked = True
    await session.flush()

    assert [t.name for t in await hashtags.trending(session, limit=2)] == ["high", "mid"]


async def test_search_by_prefix(session):
    await _seed_usage(
        session, {"python": (0, 3), "pytest": (0, 8), "pydantic": (0, 1), "rust": (0, 9)}
    )

    result = await hashtags.search(session, "#PY", limit=2)
    assert [t.name for t in result] == ["pytest", "python"]
    assert await hashtags.search(session, "   ") == []


async def test_search_escapes_like_wildcards(session):
    await _seed_usage(session, {"a_b": (0, 1), "axb": (0, 1)})
    assert [t.name for t in await hashtags.search(session, "a_")] == ["a_b"]
    assert await hashtags.search(session, "%") == []


async def test_refresh_trending_status_is_idempotent(session):
    await _seed_usage(session, {"one": (10, 0), "two": (7, 0), "three": (3, 0), "idle": (0, 0)})

    flagged = await hashtags.refresh_trending_status(session, slots=2)
    again = await hashtags.refresh_trending_status(session, slots=2)

    assert flagged == again
    states = {t.name: t.is_trending for t in [await _tag(session, n) for n in ("one", "two", "three", "idle")]}
    assert states == {"one": True, "two": True, "three": False, "idle": False}


async def test_resets_zero_their_window_only(session):
    await _seed_usage(session, {"a": (4, 4), "b": (2, 2)})

    assert await hashtags.reset_daily_counts(session) == 2
    tag = await _tag(session, "a")
    assert (tag.usage_count_24h, tag.usage_count_7d) == (0, 4)

    assert await hashtags.reset_weekly_counts(session) == 2
    assert (await _tag(session, "a")).usage_count_7d == 0
