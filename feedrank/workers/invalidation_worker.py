"""
Feed invalidation worker — Kafka consumer.

For every 'new-posts' event:
  1. Look up all followers of the post author in the follow graph.
  2. Drop each follower's cached Following feed so their next request
     recomputes it with the new post.

Posts still reach non-followers through the ranked feeds, whose snapshots
expire on the cache TTL.

Run:
  python -m feedrank.workers.invalidation_worker
"""
import asyncio
import json
import logging
import time

from aiokafka import AIOKafkaConsumer
from opentelemetry import trace
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from feedrank.clients.redis_client import close_redis, init_redis
from feedrank.config import settings
from feedrank.database import AsyncSessionLocal
from feedrank.engine.feed_cache import build_feed_cache
from feedrank.engine.feeds import invalidate_followers
from feedrank.engine.social_graph import SqlSocialGraph
from feedrank.telemetry import setup_tracing

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

tracer = trace.get_tracer(__name__)


# ─────────────────────────── Message Handler ─────────────────────────────

async def process_message(
    msg, session_factory: async_sessionmaker = AsyncSessionLocal
) -> int:
    if not isinstance(msg, dict):
        logger.warning("Malformed NewPost event: %r", msg)
        return 0

    post_id = msg.get("post_id")
    user_id = msg.get("user_id")

    if not post_id or not user_id:
        logger.warning("Malformed NewPost event: %s", msg)
        return 0

    with tracer.start_as_current_span("invalidate_followers") as span:
        span.set_attribute("post.id", post_id)
        span.set_attribute("post.user_id", user_id)

        t0 = time.perf_counter()
        async with session_factory() as session:
            invalidated = await invalidate_followers(
                SqlSocialGraph(session), build_feed_cache(session), user_id
            )
            await session.commit()

        span.set_attribute("invalidation.follower_count", invalidated)
        logger.info(
            "Invalidation complete: post %s → %d followers (%.1fms)",
            post_id, invalidated, (time.perf_counter() - t0) * 1000,
        )
        return invalidated


# ─────────────────────────── Main Loop ───────────────────────────────────

async def main() -> None:
    setup_tracing()
    if settings.feed_cache_backend == "redis":
        await init_redis()

    consumer = AIOKafkaConsumer(
        settings.kafka_topic_new_posts,
        bootstrap_servers=settings.kafka_bootstrap_servers,
        group_id=settings.kafka_consumer_group,
        auto_offset_reset="earliest",
        value_deserializer=lambda v: json.loads(v.decode("utf-8")),
    )
    await consumer.start()
    logger.info(
        "Invalidation worker listening on topic '%s'", settings.kafka_topic_new_posts
    )

    try:
        async for msg in consumer:
            try:
                await process_message(msg.value)
            except (SQLAlchemyError, RedisError) as exc:
                logger.error("Invalidation error for %s: %s", msg.value, exc)
    finally:
        await consumer.stop()
        await close_redis()


if __name__ == "__main__":
    asyncio.run(main())
