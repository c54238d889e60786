"""
Integration tests for swipes racing each other.

Each coroutine gets its own session and connection on a file-backed SQLite
database and really commits, so the conditional inserts and the pair lock
are exercised the way concurrent requests hit them.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import AsyncGenerator

import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.database import Base
from app.core.exceptions import DuplicateDecision
from app.models.decision import Decision, DecisionKind
from app.models.match import Match
from app.models.notification import Notification, NotificationType
from app.models.user import User
from app.services.swipe_service import SwipeResult, SwipeService


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Sessions on a fresh database file, one connection each."""
    import app.models  # noqa: F401

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'swipes.db'}",
        connect_args={"timeout": 15},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def pair(session_factory) -> tuple[User, User]:
    async with session_factory() as db:
        first = User(id=uuid.uuid4(), email="dana@example.com", full_name="Dana", is_premium=False)
        second = User(id=uuid.uuid4(), email="eli@example.com", full_name="Eli", is_premium=False)
        db.add_all([first, second])
        await db.commit()
    return first, second


async def _swipe_in_own_session(session_factory, service: SwipeService, user: User, subject_id):
    async with session_factory() as db:
        return await service.swipe(db, user, subject_id, DecisionKind.LIKE)


async def _count(session_factory, model, *criteria) -> int:
    async with session_factory() as db:
        result = await db.execute(select(func.count()).select_from(model).where(*criteria))
        return result.scalar_one()


class TestConcurrentSwipes:
    async def test_simultaneous_mutual_likes_form_exactly_one_match(self, session_factory, pair):
        dana, eli = pair
        service = SwipeService()

        results = await asyncio.gather(
            _swipe_in_own_session(session_factory, service, dana, eli.id),
            _swipe_in_own_session(session_factory, service, eli, dana.id),
            return_exceptions=True,
        )

        assert all(isinstance(r, SwipeResult) for r in results), results
        assert sum(r.match_created for r in results) == 1
        user_a, user_b = Match.canonical_pair(dana.id, eli.id)
        active = await _count(
            session_factory, Match, Match.user_a == user_a, Match.user_b == user_b, Match.is_active.is_(True)
        )
        assert active == 1
        for user in (dana, eli):
            formed = await _count(
                session_factory,
                Notification,
                Notification.recipient_id == user.id,
                Notification.kind == NotificationType.MATCH_FORMED,
            )
            assert formed == 1

    async def test_double_tap_records_one_decision(self, session_factory, pair):
        dana, eli = pair
        service = SwipeService()

        results = await asyncio.gather(
            _swipe_in_own_session(session_factory, service, dana, eli.id),
            _swipe_in_own_session(session_factory, service, dana, eli.id),
            return_exceptions=True,
        )

        assert sum(isinstance(r, SwipeResult) for r in results) == 1
        assert sum(isinstance(r, DuplicateDecision) for r in results) == 1
        stored = await _count(
            session_factory, Decision, Decision.actor_id == dana.id, Decision.subject_id == eli.id
        )
        assert stored == 1
        assert service.session_for(dana).rewinds.depth == 1
