"""
Match repository.

Matches are stored with their pair canonicalized (``user_a < user_b``) and a
partial unique index guarantees at most one active row per pair.
"""

from __future__ import annotations
from typing import Optional
from uuid import UUID
import hashlib
import uuid
from datetime import datetime
from sqlalchemy import select, func, and_, or_, desc
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
import logging

from app.models.match import Match, DeactivationReason, ACTIVE_MATCH_PREDICATE
from .base import BaseRepository

logger = logging.getLogger(__name__)


def pair_lock_key(first_user_id: UUID, second_user_id: UUID) -> int:
    """Signed 64-bit advisory lock key of an unordered pair."""
    user_a, user_b = Match.canonical_pair(first_user_id, second_user_id)
    digest = hashlib.blake2b(user_a.bytes + user_b.bytes, digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class MatchRepository(BaseRepository[Match]):
    """
    Repository for Match model.

    Provides methods for:
    - Creating the active match for a pair at most once
    - Looking up the active match for a pair
    - Soft-deleting (deactivating) matches
    - Listing a user's active matches
    """

    def __init__(self):
        """Initialize with Match model."""
        super().__init__(Match)

    async def create_if_absent(
        self,
        db: AsyncSession,
        first_user_id: UUID,
        second_user_id: UUID,
        created_at: datetime
    ) -> Optional[Match]:
        """
        Create the active match for an unordered pair unless one exists.

        Args:
            db: Active database session
            first_user_id: One participant (order does not matter)
            second_user_id: The other participant
            created_at: Creation timestamp

        Returns:
            The new match, or None if an active match for the pair already existed

        Example:
            match = await repo.create_if_absent(db, a, b, utcnow())
            if match is None:
                match = await repo.get_active_for_pair(db, a, b)
        """
        user_a, user_b = Match.canonical_pair(first_user_id, second_user_id)
        return await self.insert_if_absent(
            db,
            {
                "id": uuid.uuid4(),
                "user_a": user_a,
                "user_b": user_b,
                "is_active": True,
                "created_at": created_at,
            },
            index_elements=["user_a", "user_b"],
            index_where=ACTIVE_MATCH_PREDICATE,
        )

    async def lock_pair(
        self,
        db: AsyncSession,
        first_user_id: UUID,
        second_user_id: UUID
    ) -> None:
        """
        Serialize match detection for an unordered pair until the transaction ends.

        On PostgreSQL this takes a transaction-scoped advisory lock, so a
        concurrent reciprocal swipe waits and then sees this transaction's
        committed decision. SQLite serializes writers on its own, so nothing
        is issued there.
        """
        if db.get_bind().dialect.name != "postgresql":
            return

        key = pair_lock_key(first_user_id, second_user_id)
        try:
            await db.execute(select(func.pg_advisory_xact_lock(key)))
        except SQLAlchemyError as e:
            logger.error(f"Error locking pair {first_user_id}/{second_user_id}: {e}")
            raise

    async def get_active_for_pair(
        self,
        db: AsyncSession,
        first_user_id: UUID,
        second_user_id: UUID
    ) -> Optional[Match]:
        """Get the active match between two users, in either order."""
        user_a, user_b = Match.canonical_pair(first_user_id, second_user_id)
        try:
            stmt = select(Match).where(
                and_(
                    Match.user_a == user_a,
                    Match.user_b == user_b,
                    Match.is_active.is_(True)
                )
            )
            result = await db.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error fetching active match for {user_a}/{user_b}: {e}")
            raise

    async def deactivate(
        self,
        db: AsyncSession,
        match: Match,
        reason: DeactivationReason,
        deactivated_at: datetime
    ) -> Match:
        """
        Soft-delete a match. Messages stay in place but become unreachable.

        Already inactive matches are returned unchanged.
        """
        if not match.is_active:
            return match

        try:
            match.is_active = False
            match.deactivated_at = deactivated_at
            match.deactivation_reason = reason.value
            await db.flush()
            return match
        except SQLAlchemyError as e:
            logger.error(f"Error deactivating match {match.id}: {e}")
            raise

    async def list_active_for_user(
        self,
        db: AsyncSession,
        user_id: UUID,
        skip: int = 0,
        limit: int = 100
    ) -> tuple[list[Match], int]:
        """
        List a user's active matches, newest first.

        Returns:
            Tuple of (matches, total count)
        """
        criteria = and_(
            or_(Match.user_a == user_id, Match.user_b == user_id),
            Match.is_active.is_(True)
        )
        try:
            stmt = (
                select(Match)
                .where(criteria)
                .order_by(desc(Match.created_at))
                .offset(skip)
                .limit(limit)
            )
            result = await db.execute(stmt)
            matches = list(result.scalars().all())
            total = await self.count(db, criteria)
            return matches, total
        except SQLAlchemyError as e:
            logger.error(f"Error listing matches for user {user_id}: {e}")
            raise
