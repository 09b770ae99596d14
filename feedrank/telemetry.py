"""
Observability setup:
  - OpenTelemetry distributed tracing → Jaeger (via OTLP gRPC)
  - Prometheus metrics: feed latency, feed cache hit ratio, interaction
    throughput, score recomputation failures, scheduled job runs

Both are initialised once at startup and injected into FastAPI via middleware.
"""
import logging

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from prometheus_client import Counter, Histogram

from feedrank.config import settings

logger = logging.getLogger(__name__)

# ─────────────────────────── Prometheus Metrics ───────────────────────────
FEED_LATENCY = Histogram(
    "feed_latency_seconds",
    "Latency of feed assembly, per feed type",
    ["feed_type"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0],
)

FEED_CACHE_LOOKUPS_TOTAL = Counter(
    "feed_cache_lookups_total",
    "Feed cache lookups by result",
    ["result"],  # 'hit' | 'miss' | 'error'
)

FEED_ERRORS_TOTAL = Counter(
    "feed_errors_total",
    "Feed requests that fell back to an empty list after a storage error",
    ["feed_type"],
)

INTERACTIONS_TOTAL = Counter(
    "interactions_total",
    "Recorded interaction events",
    ["kind"],  # view | like | unlike | comment | uncomment | share | save | unsave | impression
)

SCORE_RECOMPUTE_ERRORS_TOTAL = Counter(
    "score_recompute_errors_total",
    "Engagement score recomputations that failed after a counter update",
)

SIDE_EFFECT_ERRORS_TOTAL = Counter(
    "interaction_side_effect_errors_total",
    "Interest-profile or reach updates that failed without blocking the interaction",
    ["effect"],
)

POST_INGESTION_TOTAL = Counter(
    "post_ingestion_total",
    "Total number of posts published",
)

JOB_RUNS_TOTAL = Counter(
    "scheduled_job_runs_total",
    "Scheduled maintenance operations executed",
    ["job", "outcome"],
)


# ─────────────────────────── OpenTelemetry Setup ──────────────────────────
def setup_tracing() -> None:
    """Configure the global OTel TracerProvider with OTLP/Jaeger export."""
    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "deployment.environment": settings.environment,
        }
    )

    provider = TracerProvider(resource=resource)

    try:
        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            insecure=True,
        )
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        logger.info(
            "OTel tracing configured → %s", settings.otel_exporter_otlp_endpoint
        )
    except Exception as exc:
        logger.warning("Could not connect to OTLP exporter: %s — traces disabled", exc)

    trace.set_tracer_provider(provider)

    # Auto-instrument popular libraries so their spans appear in traces
    RedisInstrumentor().instrument()
    SQLAlchemyInstrumentor().instrument()


def instrument_app(app) -> None:  # noqa: ANN001
    """Call after app is created to add FastAPI request spans."""
    FastAPIInstrumentor.instrument_app(app)
