"""
Presence repository: one last-activity row per user.
"""

from __future__ import annotations
from typing import Optional, Iterable
from uuid import UUID
from datetime import datetime
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
import logging

from app.models.presence import PresenceSample
from .base import BaseRepository

logger = logging.getLogger(__name__)


class PresenceRepository(BaseRepository[PresenceSample]):
    """Repository for PresenceSample model."""

    def __init__(self):
        """Initialize with PresenceSample model."""
        super().__init__(PresenceSample)

    async def upsert(
        self,
        db: AsyncSession,
        user_id: UUID,
        last_active_at: datetime
    ) -> None:
        """
        Record activity for a user, creating the row on first use.

        Never moves ``last_active_at`` backwards.
        """
        dialect = db.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert

        try:
            stmt = insert(PresenceSample).values(user_id=user_id, last_active_at=last_active_at)
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id"],
                set_={"last_active_at": last_active_at},
                where=PresenceSample.last_active_at < last_active_at,
            )
            await db.execute(stmt)
            await db.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error recording activity for user {user_id}: {e}")
            raise

    async def get_last_active(
        self,
        db: AsyncSession,
        user_id: UUID
    ) -> Optional[datetime]:
        try:
            stmt = select(PresenceSample.last_active_at).where(PresenceSample.user_id == user_id)
            result = await db.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error fetching presence for user {user_id}: {e}")
            raise

    async def get_last_active_many(
        self,
        db: AsyncSession,
        user_ids: Iterable[UUID]
    ) -> dict[UUID, datetime]:
        user_ids = list(user_ids)
        if not user_ids:
            return {}

        try:
            stmt = select(PresenceSample.user_id, PresenceSample.last_active_at).where(
                PresenceSample.user_id.in_(user_ids)
            )
            result = await db.execute(stmt)
            return {user_id: last_active_at for user_id, last_active_at in result.all()}
        except SQLAlchemyError as e:
            logger.error(f"Error fetching presence for users {user_ids}: {e}")
            raise
