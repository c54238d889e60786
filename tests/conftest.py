"""
Top-level pytest configuration.

Provides:
  - A test SQLite database (aiosqlite) with all tables created fresh per test.
  - A db_session fixture that rolls back each test in a transaction.
  - An async_client fixture wired to the FastAPI app with Redis replaced by
    fakeredis.
  - Two regular users and a premium user, with auth header fixtures.
  - A clean change feed and swipe session registry for every test.
"""

from __future__ import annotations

import os
import uuid
from typing import AsyncGenerator

# ---------------------------------------------------------------------------
# Environment must be set BEFORE any app module is imported so that
# pydantic-settings picks up the test values.
# ---------------------------------------------------------------------------
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("POSTGRES_HOST", "localhost")
os.environ.setdefault("POSTGRES_USER", "test")
os.environ.setdefault("POSTGRES_PASSWORD", "test")
os.environ.setdefault("POSTGRES_DB", "test")
os.environ.setdefault("JWT_SECRET", "test-secret-key-that-is-long-enough-32c")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("REWIND_BUDGET_PER_SESSION", "3")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

# ---------------------------------------------------------------------------
# SQLite in-memory URL for testing. It supports the ON CONFLICT ... RETURNING
# conditional inserts and partial unique indexes the engine relies on.
# ---------------------------------------------------------------------------
TEST_DATABASE_URL = os.getenv(
    "TEST_DATABASE_URL",
    "sqlite+aiosqlite:///:memory:",
)


# ---------------------------------------------------------------------------
# Test engine (SQLite in-memory, shared via StaticPool so all connections of
# a test see the same data).
# ---------------------------------------------------------------------------
@pytest_asyncio.fixture
async def engine():
    """Create the SQLite test engine and all tables."""
    # Import Base here (after env vars are set) to ensure models register.
    from app.core.database import Base

    # Force all model modules to load so their tables register on Base.metadata
    import app.models  # noqa: F401

    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


# ---------------------------------------------------------------------------
# Per-test DB session that rolls back after each test for isolation.
#
# Strategy: wrap each test in a single outer transaction that is rolled back.
# - The outer connection begins a real transaction.
# - A custom NonCommittingSession is used: commit() is overridden to only
#   flush, so service code that commits never actually commits to the
#   database; all writes stay within the outer transaction.
# - At teardown the outer transaction is rolled back, erasing all writes.
# ---------------------------------------------------------------------------
class _NonCommittingSession(AsyncSession):
    """AsyncSession subclass where commit() becomes flush().

    Services commit their unit of work and then publish to the change feed.
    In the test suite we want those writes to be visible to later reads in
    the same test, but not persisted. Turning commit() into flush() keeps the
    data in the open outer transaction, which gets rolled back in teardown.
    """

    async def commit(self) -> None:  # type: ignore[override]
        await self.flush()


@pytest_asyncio.fixture
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a per-test database session that is fully rolled back on teardown."""
    async with engine.connect() as conn:
        await conn.begin()  # outer real transaction

        session = _NonCommittingSession(
            bind=conn,
            expire_on_commit=False,
        )

        try:
            yield session
        finally:
            await session.close()
            await conn.rollback()


# ---------------------------------------------------------------------------
# Redis mock: fakeredis so the rate limiter works without a real server.
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def mock_redis(monkeypatch):
    """Replace the Redis client with an in-process fakeredis instance."""
    import fakeredis
    import fakeredis.aioredis as fakeredis_async

    fake_server = fakeredis.FakeServer()
    fake_redis = fakeredis_async.FakeRedis(server=fake_server, decode_responses=True)

    async def _get_redis():
        return fake_redis

    monkeypatch.setattr("app.core.cache.get_redis", _get_redis)
    return fake_redis


# ---------------------------------------------------------------------------
# Process-wide state: the live change feed and in-memory swipe sessions.
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def reset_live_state():
    """Start every test with no subscribers and no swipe sessions."""
    from app.core.change_feed import change_feed
    from app.services.swipe_service import swipe_sessions

    change_feed.topics.clear()
    swipe_sessions.clear()
    yield
    change_feed.topics.clear()
    swipe_sessions.clear()


# ---------------------------------------------------------------------------
# Override FastAPI database dependency to use the test session.
# ---------------------------------------------------------------------------
@pytest_asyncio.fixture
async def async_client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    Provide an httpx AsyncClient backed by the FastAPI app.

    The app's get_db dependency is overridden to yield the test session so all
    requests in a test share the same transactional session and thus see any
    data seeded in that test.
    """
    from app.core.database import get_db
    from app.main import app

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
    ) as client:
        yield client

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Seeded fixtures
# ---------------------------------------------------------------------------
async def _add_user(db_session: AsyncSession, email: str, full_name: str, is_premium: bool = False):
    from app.models.user import User

    user = User(
        id=uuid.uuid4(),
        email=email,
        full_name=full_name,
        is_premium=is_premium,
    )
    db_session.add(user)
    await db_session.flush()
    return user


@pytest_asyncio.fixture
async def alice(db_session: AsyncSession):
    """Persisted regular user."""
    return await _add_user(db_session, "alice@example.com", "Alice")


@pytest_asyncio.fixture
async def bob(db_session: AsyncSession):
    """Persisted regular user."""
    return await _add_user(db_session, "bob@example.com", "Bob")


@pytest_asyncio.fixture
async def carol(db_session: AsyncSession):
    """Persisted regular user, outsider to alice/bob matches."""
    return await _add_user(db_session, "carol@example.com", "Carol")


@pytest_asyncio.fixture
async def premium_user(db_session: AsyncSession):
    """Persisted premium user (unlimited rewinds)."""
    return await _add_user(db_session, "premium@example.com", "Premium", is_premium=True)


def _token_for(user) -> str:
    from app.core.security import create_access_token
    return create_access_token(data={"sub": str(user.id)})


@pytest.fixture
def alice_token(alice) -> str:
    """Valid access token for alice."""
    return _token_for(alice)


@pytest.fixture
def alice_headers(alice_token: str) -> dict[str, str]:
    """Authorization headers for alice."""
    return {"Authorization": f"Bearer {alice_token}"}


@pytest.fixture
def bob_headers(bob) -> dict[str, str]:
    """Authorization headers for bob."""
    return {"Authorization": f"Bearer {_token_for(bob)}"}


@pytest.fixture
def carol_headers(carol) -> dict[str, str]:
    """Authorization headers for carol."""
    return {"Authorization": f"Bearer {_token_for(carol)}"}


@pytest.fixture
def premium_headers(premium_user) -> dict[str, str]:
    """Authorization headers for the premium user."""
    return {"Authorization": f"Bearer {_token_for(premium_user)}"}


@pytest_asyncio.fixture
async def active_match(db_session: AsyncSession, alice, bob):
    """Alice and bob liked each other through the swipe service."""
    from app.models.decision import DecisionKind
    from app.services.swipe_service import SwipeService

    service = SwipeService()
    await service.swipe(db_session, alice, bob.id, DecisionKind.LIKE)
    result = await service.swipe(db_session, bob, alice.id, DecisionKind.LIKE)
    assert result.match_created
    return result.match
