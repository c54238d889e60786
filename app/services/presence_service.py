"""
Presence and read tracking.

Online state is a pure function of one timestamp per user: a user is online
when their last activity is less than the configured threshold old. Nothing
is cached and no presence events are streamed.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from typing import Iterable, Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
import logging

from app.core.change_feed import commit_and_publish, rollback_and_discard
from app.core.config import settings
from app.core.exceptions import SwipeMatchError, TransientBackendError
from app.repositories.message_repository import MessageRepository
from app.repositories.presence_repository import PresenceRepository
from app.services.conversation_service import ConversationChannel
from app.utils.timestamps import ensure_utc, utcnow

logger = logging.getLogger(__name__)


def online_threshold() -> timedelta:
    return timedelta(seconds=settings.presence_online_threshold_seconds)


def is_online_at(
    last_active_at: Optional[datetime],
    now: Optional[datetime] = None,
    threshold: Optional[timedelta] = None
) -> bool:
    """
    True if ``last_active_at`` is less than ``threshold`` before ``now``.

    Example:
        >>> is_online_at(utcnow() - timedelta(minutes=3))
        True
    """
    if last_active_at is None:
        return False
    now = ensure_utc(now) or utcnow()
    threshold = threshold if threshold is not None else online_threshold()
    return now - ensure_utc(last_active_at) < threshold


def format_last_active(last_active_at: Optional[datetime], now: Optional[datetime] = None) -> Optional[str]:
    """
    Human readable "last seen" label.

    Example:
        >>> format_last_active(utcnow() - timedelta(hours=3))
        '3h ago'
    """
    if last_active_at is None:
        return None

    now = ensure_utc(now) or utcnow()
    elapsed = now - ensure_utc(last_active_at)
    minutes = int(elapsed.total_seconds() // 60)

    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    days = hours // 24
    if days < 7:
        return f"{days}d ago"
    return "More than a week ago"


class PresenceTracker:
    """
    Service for user activity and conversation read state.

    This service coordinates presence operations including:
    - Recording user activity
    - Deriving online state and last-seen labels
    - Marking a conversation read when its recipient views it
    """

    def __init__(
        self,
        presence_repo: Optional[PresenceRepository] = None,
        message_repo: Optional[MessageRepository] = None,
        channel: Optional[ConversationChannel] = None,
        threshold: Optional[timedelta] = None
    ):
        """
        Initialize service with repositories.

        Args:
            presence_repo: PresenceRepository instance
            message_repo: MessageRepository instance
            channel: ConversationChannel used to mark messages read
            threshold: Online threshold (defaults to settings)
        """
        self.presence_repo = presence_repo or PresenceRepository()
        self.message_repo = message_repo or MessageRepository()
        self.channel = channel or ConversationChannel(message_repo=self.message_repo)
        self.threshold = threshold or online_threshold()

    async def _record(self, db: AsyncSession, user_id: UUID, at: Optional[datetime]) -> datetime:
        at = ensure_utc(at) or utcnow()
        try:
            await self.presence_repo.upsert(db, user_id, at)
        except SQLAlchemyError as e:
            raise TransientBackendError() from e
        return at

    async def touch(self, db: AsyncSession, user_id: UUID, at: Optional[datetime] = None) -> datetime:
        """
        Record activity for a user now.

        Returns:
            The recorded timestamp
        """
        at = await self._record(db, user_id, at)
        try:
            await db.commit()
        except SQLAlchemyError as e:
            await rollback_and_discard(db)
            logger.error(f"Error committing presence for user {user_id}: {e}")
            raise TransientBackendError() from e
        return at

    async def last_active(self, db: AsyncSession, user_id: UUID) -> Optional[datetime]:
        try:
            return ensure_utc(await self.presence_repo.get_last_active(db, user_id))
        except SQLAlchemyError as e:
            raise TransientBackendError() from e

    async def is_online(self, db: AsyncSession, user_id: UUID, now: Optional[datetime] = None) -> bool:
        return is_online_at(await self.last_active(db, user_id), now, self.threshold)

    async def get_presence(self, db: AsyncSession, user_id: UUID, now: Optional[datetime] = None) -> dict:
        """Online flag, last activity and last-seen label for one user."""
        last_active_at = await self.last_active(db, user_id)
        return {
            "user_id": user_id,
            "is_online": is_online_at(last_active_at, now, self.threshold),
            "last_active_at": last_active_at,
            "last_active_label": format_last_active(last_active_at, now),
        }

    async def online_map(
        self,
        db: AsyncSession,
        user_ids: Iterable[UUID],
        now: Optional[datetime] = None
    ) -> dict[UUID, bool]:
        """Online flag for several users at once; unknown users are offline."""
        user_ids = list(user_ids)
        try:
            samples = await self.presence_repo.get_last_active_many(db, user_ids)
        except SQLAlchemyError as e:
            raise TransientBackendError() from e
        return {user_id: is_online_at(samples.get(user_id), now, self.threshold) for user_id in user_ids}

    async def conversation_viewed(self, db: AsyncSession, match_id: UUID, reader_id: UUID) -> int:
        """
        The reader opened a conversation: record activity and read everything
        the other participant sent.

        Returns:
            Number of messages marked read
        """
        await self.channel.require_active_match(db, match_id, reader_id)
        await self._record(db, reader_id, None)
        try:
            unread_ids = await self.message_repo.list_unread_ids(db, match_id, reader_id)
            count = await self.channel.mark_read(db, unread_ids, reader_id, commit=False)
            await commit_and_publish(db, self.channel.feed)
        except SwipeMatchError:
            raise
        except SQLAlchemyError as e:
            await rollback_and_discard(db)
            logger.error(f"Error marking match {match_id} viewed by {reader_id}: {e}")
            raise TransientBackendError() from e
        return count
