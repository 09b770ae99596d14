"""
Async SQLAlchemy engine + session factory for TiDB (MySQL-protocol).

TiDB is wire-compatible with MySQL 5.7, so we use the aiomysql driver.
The engine is created once at startup and reused across all requests.

Counter tables (hashtags, user_interests, feed_cache) rely on
insert-if-absent and upsert statements, which differ per dialect; the
helpers at the bottom of this module pick the right form.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import insert
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from feedrank.config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.tidb_url,
    pool_pre_ping=True,
    pool_size=20,
    max_overflow=10,
    echo=False,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DATETIME columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def init_db() -> None:
    """Create all tables if they don't exist (idempotent)."""
    from feedrank import models  # noqa: F401  register mappers

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def get_db():
    """FastAPI dependency that yields an async DB session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ─────────────────────── Dialect-aware statements ─────────────────────────

def _dialect(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


async def insert_ignore(session: AsyncSession, model, values: dict) -> None:
    """INSERT a row unless it collides with a unique key."""
    name = _dialect(session)
    if name == "mysql":
        stmt = insert(model).values(**values).prefix_with("IGNORE")
    elif name == "sqlite":
        stmt = sqlite.insert(model).values(**values).on_conflict_do_nothing()
    elif name == "postgresql":
        stmt = postgresql.insert(model).values(**values).on_conflict_do_nothing()
    else:
        raise NotImplementedError(f"insert_ignore not supported for {name}")
    await session.execute(stmt)


async def upsert(
    session: AsyncSession,
    model,
    values: dict,
    key_columns: list[str],
    update_columns: list[str],
) -> None:
    """INSERT a row, or overwrite update_columns when the key already exists."""
    name = _dialect(session)
    if name == "mysql":
        stmt = mysql.insert(model).values(**values)
        stmt = stmt.on_duplicate_key_update(
            {col: stmt.inserted[col] for col in update_columns}
        )
    elif name in ("sqlite", "postgresql"):
        dialect_mod = sqlite if name == "sqlite" else postgresql
        stmt = dialect_mod.insert(model).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=key_columns,
            set_={col: stmt.excluded[col] for col in update_columns},
        )
    else:
        raise NotImplementedError(f"upsert not supported for {name}")
    await session.execute(stmt)
