"""
Scheduled maintenance operations — run by an external scheduler (cron,
Kubernetes CronJob); nothing here keeps an in-process timer.

  Job                │ Suggested cadence │ Effect
  ───────────────────┼───────────────────┼──────────────────────────────────────
  refresh-trending   │ every 15 min      │ top-50 hashtags by 24 h usage flagged
  reset-daily        │ daily             │ hashtag usage_count_24h → 0
  reset-weekly       │ weekly            │ hashtag usage_count_7d → 0
  decay-interests    │ daily             │ interest weights × rate, prune < floor
  clear-feed-cache   │ every 5 min       │ delete expired feed cache rows
  rescore            │ hourly            │ recompute scores of recent posts
  publish-scheduled  │ every minute      │ publish scheduled posts that are due

Usage:
  feedrank-jobs refresh-trending
  feedrank-jobs decay-interests --rate 0.9
  feedrank-jobs publish-scheduled --limit 50 --dry-run
"""
import argparse
import asyncio
import logging
import sys
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feedrank.clients.kafka_producer import init_kafka, stop_kafka
from feedrank.clients.redis_client import close_redis, init_redis
from feedrank.config import settings
from feedrank.database import AsyncSessionLocal
from feedrank.engine import hashtags, interests, publishing, scoring
from feedrank.engine.feed_cache import build_feed_cache
from feedrank.engine.social_graph import SqlSocialGraph
from feedrank.telemetry import JOB_RUNS_TOTAL

logger = logging.getLogger(__name__)


async def refresh_trending(session: AsyncSession, args: argparse.Namespace) -> dict:
    flagged = await hashtags.refresh_trending_status(session, settings.hashtag_trending_slots)
    return {"flagged": len(flagged)}


async def reset_daily(session: AsyncSession, args: argparse.Namespace) -> dict:
    return {"reset": await hashtags.reset_daily_counts(session)}


async def reset_weekly(session: AsyncSession, args: argparse.Namespace) -> dict:
    return {"reset": await hashtags.reset_weekly_counts(session)}


async def decay_interests(session: AsyncSession, args: argparse.Namespace) -> dict:
    decayed, pruned = await interests.decay_weights(
        session, decay_rate=args.rate, min_weight=settings.interest_min_weight
    )
    return {"decayed": decayed, "pruned": pruned}


async def clear_feed_cache(session: AsyncSession, args: argparse.Namespace) -> dict:
    return {"cleared": await build_feed_cache(session).clear_expired()}


async def rescore(session: AsyncSession, args: argparse.Namespace) -> dict:
    return {"rescored": await scoring.recalculate_all(session, since_days=args.days)}


async def publish_scheduled(session: AsyncSession, args: argparse.Namespace) -> dict:
    posts = await publishing.publish_due(session, limit=args.limit, dry_run=args.dry_run)
    if not args.dry_run:
        graph = SqlSocialGraph(session)
        cache = build_feed_cache(session)
        for post in posts:
            await publishing.announce_post(graph, cache, post)
    return {"due" if args.dry_run else "published": len(posts)}


JOBS = {
    "refresh-trending": refresh_trending,
    "reset-daily": reset_daily,
    "reset-weekly": reset_weekly,
    "decay-interests": decay_interests,
    "clear-feed-cache": clear_feed_cache,
    "rescore": rescore,
    "publish-scheduled": publish_scheduled,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="feedrank-jobs", description="Run a feedrank maintenance job once"
    )
    sub = parser.add_subparsers(dest="job", required=True)

    sub.add_parser("refresh-trending", help="Recompute hashtag trending flags")
    sub.add_parser("reset-daily", help="Zero hashtag 24h usage counters")
    sub.add_parser("reset-weekly", help="Zero hashtag 7d usage counters")

    decay = sub.add_parser("decay-interests", help="Decay and prune interest weights")
    decay.add_argument("--rate", type=float, default=settings.interest_decay_rate)

    sub.add_parser("clear-feed-cache", help="Delete expired feed cache entries")

    rescore_p = sub.add_parser("rescore", help="Recompute scores of recent posts")
    rescore_p.add_argument("--days", type=int, default=settings.trending_window_days)

    publish = sub.add_parser("publish-scheduled", help="Publish due scheduled posts")
    publish.add_argument("--limit", type=int, default=100)
    publish.add_argument("--dry-run", action="store_true", help="List due posts only")
    return parser


async def run_job(
    args: argparse.Namespace,
    session_factory: async_sessionmaker = AsyncSessionLocal,
) -> dict:
    """Run one job in its own transaction; failures roll back and re-raise."""
    job = JOBS[args.job]
    async with session_factory() as session:
        try:
            result = await job(session, args)
            await session.commit()
        except Exception:
            await session.rollback()
            JOB_RUNS_TOTAL.labels(job=args.job, outcome="failure").inc()
            logger.exception("Job %s failed", args.job)
            raise
    JOB_RUNS_TOTAL.labels(job=args.job, outcome="success").inc()
    logger.info("Job %s finished: %s", args.job, result)
    return result


async def _run_with_clients(args: argparse.Namespace) -> dict:
    if args.job == "publish-scheduled" and not args.dry_run:
        await init_kafka()
    if settings.feed_cache_backend == "redis":
        await init_redis()
    try:
        return await run_job(args)
    finally:
        await stop_kafka()
        await close_redis()


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
    )
    args = build_parser().parse_args(argv)
    try:
        asyncio.run(_run_with_clients(args))
    except Exception:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
