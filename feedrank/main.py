"""
Feed Ranking API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Initialise DB connection pool (TiDB) and create tables if not present
  3. Start Kafka producer (unless KAFKA_ENABLED=false)
  4. Connect to Redis when it backs the feed cache
  5. Expose Prometheus /metrics endpoint
"""
import logging

from contextlib import asynccontextmanager
from fastapi import FastAPI
from prometheus_client import make_asgi_app

from feedrank.config import settings
from feedrank.database import init_db
from feedrank.telemetry import setup_tracing, instrument_app
from feedrank.clients.kafka_producer import init_kafka, stop_kafka
from feedrank.clients.redis_client import close_redis, init_redis
from feedrank.routers import feed, hashtags, posts, users

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

# Set up tracing before the app is created so all imports are instrumented
setup_tracing()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of all external connections."""
    logger.info("Starting Feed Ranking API (env=%s)", settings.environment)

    await init_db()
    await init_kafka()
    if settings.feed_cache_backend == "redis":
        await init_redis()

    logger.info("All services connected. API ready.")
    yield

    logger.info("Shutting down...")
    await stop_kafka()
    await close_redis()


app = FastAPI(
    title="Feed Ranking API",
    description=(
        "Engagement scoring, hashtag trends, interest profiles and cached "
        "For You / Following / Shorts / Trending / Discover feeds."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── Routers ────────────────────────────────────────────────────────────────
app.include_router(users.router, prefix="/users", tags=["Users"])
app.include_router(posts.router, prefix="/posts", tags=["Posts"])
app.include_router(feed.router, prefix="/feed", tags=["Feed"])
app.include_router(hashtags.router, prefix="/hashtags", tags=["Hashtags"])

# ── Prometheus metrics endpoint ────────────────────────────────────────────
# Mounted at /metrics, scraped by Prometheus
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── OTel FastAPI instrumentation ──────────────────────────────────────────
instrument_app(app)


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "service": settings.service_name}
