"""
Async Kafka producer.

Publishes one event type:
  new-posts    — emitted when a post becomes published (API or the
                 publish-scheduled job).
                 Consumed by: invalidation-worker, which drops the cached
                 Following feed of every follower of the author.

Disabled with `KAFKA_ENABLED=false`; publishers then invalidate inline.
"""
import json
import logging
from typing import Optional

from aiokafka import AIOKafkaProducer

from feedrank.config import settings

logger = logging.getLogger(__name__)

_producer: Optional[AIOKafkaProducer] = None


async def init_kafka() -> None:
    global _producer
    if not settings.kafka_enabled:
        logger.info("Kafka disabled — new-post events will not be published")
        return
    _producer = AIOKafkaProducer(
        bootstrap_servers=settings.kafka_bootstrap_servers,
        value_serializer=lambda v: json.dumps(v).encode("utf-8"),
        acks="all",          # wait for all in-sync replicas
        enable_idempotence=True,
    )
    await _producer.start()
    logger.info("Kafka producer started → %s", settings.kafka_bootstrap_servers)


async def stop_kafka() -> None:
    global _producer
    if _producer:
        await _producer.stop()
        _producer = None


def kafka_available() -> bool:
    return _producer is not None


def get_producer() -> AIOKafkaProducer:
    if _producer is None:
        raise RuntimeError("Kafka producer not initialised")
    return _producer


async def publish_new_post(post_id: str, user_id: str, content: str | None) -> None:
    """
    Emit a NewPost event to the 'new-posts' Kafka topic.

    Schema:
      { post_id, user_id, content }
    """
    producer = get_producer()
    payload = {"post_id": post_id, "user_id": user_id, "content": content or ""}
    await producer.send_and_wait(settings.kafka_topic_new_posts, payload)
    logger.debug("Published NewPost event for post_id=%s", post_id)
