"""
Hashtag index.

Hashtags are extracted from post text, normalised to lowercase and stored
once in `hashtags`. Each row carries three counters:

  posts_count      — posts ever tagged (released again on post deletion)
  usage_count_24h  — reset daily by the scheduler
  usage_count_7d   — reset weekly by the scheduler

Counters move only through single-statement UPDATEs so a viral tag shared by
thousands of concurrent posts never loses increments. The resets are not
ordered against those increments: an increment racing a reset may be lost,
which is acceptable for a trending signal.
"""
import logging
import re
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from feedrank.database import insert_ignore
from feedrank.models import Hashtag, PostHashtag

logger = logging.getLogger(__name__)

# `#` followed by Unicode letters, digits or underscore (works for Swahili,
# Cyrillic, CJK, …). str patterns are Unicode-aware by default.
HASHTAG_PATTERN = re.compile(r"#(\w+)")

TRENDING_SLOTS = 50


def normalize(tag: str) -> str:
    return tag.lstrip("#").lower()


def extract_hashtags(text: Optional[str]) -> list[tuple[str, str]]:
    """
    Return distinct (display_name, normalized_name) pairs in order of first
    appearance. '#Python #python' yields a single ('Python', 'python').
    """
    if not text:
        return []
    seen: dict[str, str] = {}
    for tag in HASHTAG_PATTERN.findall(text):
        key = normalize(tag)
        if key not in seen:
            seen[key] = tag
    return [(display, key) for key, display in seen.items()]


async def _get_or_create(session: AsyncSession, display: str, normalized: str) -> int:
    await insert_ignore(
        session, Hashtag, {"name": display, "name_normalized": normalized}
    )
    result = await session.execute(
        select(Hashtag.hashtag_id).where(Hashtag.name_normalized == normalized)
    )
    return result.scalar_one()


async def extract_and_sync(
    session: AsyncSession, post_id: str, text: Optional[str]
) -> list[int]:
    """
    Replace the post's hashtag associations with exactly the tags in `text`.

    Usage counters are incremented only for hashtags newly linked to the post,
    so re-syncing identical text is a no-op. Returns the linked hashtag ids.
    """
    tags = extract_hashtags(text)
    hashtag_ids = [await _get_or_create(session, d, n) for d, n in tags]

    current = await session.execute(
        select(PostHashtag.hashtag_id).where(PostHashtag.post_id == post_id)
    )
    existing = set(current.scalars().all())
    wanted = set(hashtag_ids)

    stale = existing - wanted
    if stale:
        await session.execute(
            delete(PostHashtag).where(
                PostHashtag.post_id == post_id,
                PostHashtag.hashtag_id.in_(list(stale)),
            )
        )

    added = [hid for hid in hashtag_ids if hid not in existing]
    for hid in added:
        await insert_ignore(session, PostHashtag, {"post_id": post_id, "hashtag_id": hid})

    if added:
        await session.execute(
            update(Hashtag)
            .where(Hashtag.hashtag_id.in_(added))
            .values(
                posts_count=Hashtag.posts_count + 1,
                usage_count_24h=Hashtag.usage_count_24h + 1,
                usage_count_7d=Hashtag.usage_count_7d + 1,
            )
            .execution_options(synchronize_session=False)
        )

    logger.debug(
        "Hashtags synced for post %s: %d linked, %d new, %d removed",
        post_id, len(hashtag_ids), len(added), len(stale),
    )
    return hashtag_ids


async def release_post_hashtags(session: AsyncSession, post_id: str) -> None:
    """Decrement posts_count for every hashtag on a deleted post."""
    result = await session.execute(
        select(PostHashtag.hashtag_id).where(PostHashtag.post_id == post_id)
    )
    ids = list(result.scalars().all())
    if not ids:
        return
    await session.execute(
        update(Hashtag)
        .where(Hashtag.hashtag_id.in_(ids), Hashtag.posts_count > 0)
        .values(posts_count=Hashtag.posts_count - 1)
        .execution_options(synchronize_session=False)
    )


async def post_hashtag_names(session: AsyncSession, post_id: str) -> list[str]:
    result = await session.execute(
        select(Hashtag.name_normalized)
        .join(PostHashtag, PostHashtag.hashtag_id == Hashtag.hashtag_id)
        .where(PostHashtag.post_id == post_id)
        .order_by(Hashtag.name_normalized)
    )
    return list(result.scalars().all())


async def trending(session: AsyncSession, limit: int = 20) -> list[Hashtag]:
    result = await session.execute(
        select(Hashtag)
        .where(Hashtag.is_blocked.is_(False))
        .order_by(Hashtag.usage_count_24h.desc(), Hashtag.hashtag_id)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


async def search(session: AsyncSession, prefix: str, limit: int = 10) -> list[Hashtag]:
    """Autocomplete: case-insensitive prefix match, most used first."""
    needle = normalize(prefix.strip())
    if not needle:
        return []
    result = await session.execute(
        select(Hashtag)
        .where(
            Hashtag.is_blocked.is_(False),
            Hashtag.name_normalized.like(_escape_like(needle) + "%", escape="\\"),
        )
        .order_by(Hashtag.posts_count.desc(), Hashtag.name_normalized)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def refresh_trending_status(
    session: AsyncSession, slots: int = TRENDING_SLOTS
) -> list[int]:
    """
    Flag the top `slots` hashtags by 24h usage as trending, clear the rest.
    The flag is advisory; running this concurrently with increments is safe.
    """
    result = await session.execute(
        select(Hashtag.hashtag_id)
        .where(Hashtag.is_blocked.is_(False), Hashtag.usage_count_24h > 0)
        .order_by(Hashtag.usage_count_24h.desc(), Hashtag.hashtag_id)
        .limit(slots)
    )
    trending_ids = list(result.scalars().all())

    await session.execute(
        update(Hashtag)
        .where(Hashtag.is_trending.is_(True))
        .values(is_trending=False)
        .execution_options(synchronize_session=False)
    )
    if trending_ids:
        await session.execute(
            update(Hashtag)
            .where(Hashtag.hashtag_id.in_(trending_ids))
            .values(is_trending=True)
            .execution_options(synchronize_session=False)
        )
    logger.info("Trending hashtags refreshed: %d flagged", len(trending_ids))
    return trending_ids


async def reset_daily_counts(session: AsyncSession) -> int:
    result = await session.execute(
        update(Hashtag)
        .where(Hashtag.usage_count_24h != 0)
        .values(usage_count_24h=0)
        .execution_options(synchronize_session=False)
    )
    logger.info("Reset 24h usage on %d hashtags", result.rowcount)
    return result.rowcount


async def reset_weekly_counts(session: AsyncSession) -> int:
    result = await session.execute(
        update(Hashtag)
        .where(Hashtag.usage_count_7d != 0)
        .values(usage_count_7d=0)
        .execution_options(synchronize_session=False)
    )
    logger.info("Reset 7d usage on %d hashtags", result.rowcount)
    return result.rowcount
