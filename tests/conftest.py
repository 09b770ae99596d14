import os

# Must be set before feedrank.config is imported
os.environ.setdefault("KAFKA_ENABLED", "false")
os.environ.setdefault("FEED_CACHE_BACKEND", "sql")
os.environ.setdefault("OTEL_SDK_DISABLED", "true")

from datetime import datetime

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from feedrank import models  # noqa: F401  register mappers
from feedrank.database import Base, get_db
from feedrank.models import Post, PostStatus, PostType, Privacy, User

T0 = datetime(2024, 3, 1, 12, 0, 0)


@pytest.fixture()
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture()
def make_user():
    counter = {"n": 0}

    async def _make(session: AsyncSession, username: str | None = None) -> User:
        counter["n"] += 1
        user = User(username=username or f"user{counter['n']}", created_at=T0)
        session.add(user)
        await session.flush()
        return user

    return _make


@pytest.fixture()
def make_post():
    async def _make(session: AsyncSession, author: User, **fields) -> Post:
        fields.setdefault("post_type", PostType.TEXT)
        fields.setdefault("privacy", Privacy.PUBLIC)
        fields.setdefault("status", PostStatus.PUBLISHED)
        fields.setdefault("created_at", T0)
        post = Post(user_id=author.user_id, **fields)
        session.add(post)
        await session.flush()
        return post

    return _make


async def reload_post(session: AsyncSession, post_id: str) -> Post:
    """Fetch a post bypassing identity-map state left by bulk UPDATEs."""
    return await session.get(Post, post_id, populate_existing=True)


@pytest.fixture()
def reload():
    return reload_post


@pytest.fixture()
async def client(session_factory):
    from feedrank.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()
