"""
Decision repository for the swipe ledger.

Provides pair lookups, the conditional insert backing exactly-once
decisions, reciprocal-like lookups for match detection and the
"who likes you" query.
"""

from __future__ import annotations
from typing import Optional, Iterable
from uuid import UUID
import uuid
from datetime import datetime
from sqlalchemy import select, and_, desc, delete as sql_delete
from sqlalchemy.orm import aliased
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
import logging

from app.models.decision import Decision, DecisionKind, POSITIVE_KINDS
from .base import BaseRepository

logger = logging.getLogger(__name__)


class DecisionRepository(BaseRepository[Decision]):
    """
    Repository for Decision model.

    Provides methods for:
    - Looking up the decision for an ordered (actor, subject) pair
    - Inserting a decision only if the pair is still free
    - Deleting a decision (rewind)
    - Finding reciprocal positive decisions
    - Listing unanswered incoming likes
    """

    def __init__(self):
        """Initialize with Decision model."""
        super().__init__(Decision)

    async def get_for_pair(
        self,
        db: AsyncSession,
        actor_id: UUID,
        subject_id: UUID
    ) -> Optional[Decision]:
        """
        Get the decision ``actor_id`` made on ``subject_id``.

        Returns:
            The decision if one exists, None otherwise
        """
        try:
            stmt = select(Decision).where(
                and_(
                    Decision.actor_id == actor_id,
                    Decision.subject_id == subject_id
                )
            )
            result = await db.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error fetching decision {actor_id} -> {subject_id}: {e}")
            raise

    async def insert_for_pair(
        self,
        db: AsyncSession,
        actor_id: UUID,
        subject_id: UUID,
        kind: DecisionKind,
        created_at: datetime
    ) -> Optional[Decision]:
        """
        Insert a decision unless the (actor, subject) pair is already taken.

        Returns:
            The new decision, or None if a concurrent request recorded one first
        """
        return await self.insert_if_absent(
            db,
            {
                "id": uuid.uuid4(),
                "actor_id": actor_id,
                "subject_id": subject_id,
                "kind": kind,
                "created_at": created_at,
            },
            index_elements=["actor_id", "subject_id"],
        )

    async def delete_for_pair(
        self,
        db: AsyncSession,
        actor_id: UUID,
        subject_id: UUID
    ) -> bool:
        """
        Delete the decision for an ordered pair.

        Returns:
            True if a row was deleted, False if there was none
        """
        try:
            stmt = sql_delete(Decision).where(
                and_(
                    Decision.actor_id == actor_id,
                    Decision.subject_id == subject_id
                )
            )
            result = await db.execute(stmt)
            await db.flush()
            return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Error deleting decision {actor_id} -> {subject_id}: {e}")
            raise

    async def get_reciprocal_positive(
        self,
        db: AsyncSession,
        decision: Decision
    ) -> Optional[Decision]:
        """
        Find the subject's like / super like on the actor of ``decision``.

        Returns:
            The reciprocal positive decision, or None
        """
        try:
            stmt = select(Decision).where(
                and_(
                    Decision.actor_id == decision.subject_id,
                    Decision.subject_id == decision.actor_id,
                    Decision.kind.in_(POSITIVE_KINDS)
                )
            )
            result = await db.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error fetching reciprocal decision for {decision.id}: {e}")
            raise

    async def get_decided_subject_ids(
        self,
        db: AsyncSession,
        actor_id: UUID,
        subject_ids: Iterable[UUID]
    ) -> set[UUID]:
        """
        Return which of ``subject_ids`` the actor already decided on.
        """
        subject_ids = list(subject_ids)
        if not subject_ids:
            return set()

        try:
            stmt = select(Decision.subject_id).where(
                and_(
                    Decision.actor_id == actor_id,
                    Decision.subject_id.in_(subject_ids)
                )
            )
            result = await db.execute(stmt)
            return set(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error fetching decided subjects for user {actor_id}: {e}")
            raise

    async def get_unanswered_likes(
        self,
        db: AsyncSession,
        user_id: UUID,
        limit: int = 50
    ) -> list[Decision]:
        """
        Positive decisions on ``user_id`` that the user has not answered yet.

        Newest first. Used for the "who likes you" surface.
        """
        try:
            answer = aliased(Decision)
            stmt = (
                select(Decision)
                .outerjoin(
                    answer,
                    and_(
                        answer.actor_id == Decision.subject_id,
                        answer.subject_id == Decision.actor_id
                    )
                )
                .where(
                    and_(
                        Decision.subject_id == user_id,
                        Decision.kind.in_(POSITIVE_KINDS),
                        answer.id.is_(None)
                    )
                )
                .order_by(desc(Decision.created_at))
                .limit(limit)
            )
            result = await db.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error fetching incoming likes for user {user_id}: {e}")
            raise
