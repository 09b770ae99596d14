"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── TiDB (MySQL-protocol compatible) ───────────────────────────────────
    tidb_host: str = "tidb"
    tidb_port: int = 4000
    tidb_user: str = "root"
    tidb_password: str = ""
    tidb_database: str = "feedrank"
    # Full SQLAlchemy URL; takes precedence over the tidb_* fields when set
    database_url: Optional[str] = None

    @property
    def tidb_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"mysql+aiomysql://{self.tidb_user}:{self.tidb_password}"
            f"@{self.tidb_host}:{self.tidb_port}/{self.tidb_database}"
        )

    # ── Redis ──────────────────────────────────────────────────────────────
    redis_host: str = "redis"
    redis_port: int = 6379

    # ── Kafka ──────────────────────────────────────────────────────────────
    kafka_enabled: bool = True
    kafka_bootstrap_servers: str = "kafka:9092"
    kafka_topic_new_posts: str = "new-posts"
    kafka_consumer_group: str = "feed-invalidation"

    # ── Feeds ──────────────────────────────────────────────────────────────
    feed_page_size: int = 20
    feed_max_page_size: int = 100
    feed_cache_backend: str = "sql"      # 'sql' | 'redis'
    feed_cache_ttl_minutes: int = 5
    trending_window_days: int = 7

    # ── Hashtags & interests ───────────────────────────────────────────────
    hashtag_trending_slots: int = 50
    interest_default_strength: float = 0.1
    interest_decay_rate: float = 0.95
    interest_min_weight: float = 0.01
    interest_view_threshold: float = 50.0   # watch % above which a view counts
    interest_top_n: int = 20

    # ── Content ────────────────────────────────────────────────────────────
    short_video_max_seconds: int = 60

    # ── Observability ──────────────────────────────────────────────────────
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "feedrank-api"
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
