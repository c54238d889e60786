"""
Message repository for conversation history and read state.
"""

from __future__ import annotations
from typing import Optional, Iterable
from uuid import UUID
import uuid
from datetime import datetime
from sqlalchemy import select, and_, func, update as sql_update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
import logging

from app.models.message import Message
from .base import BaseRepository

logger = logging.getLogger(__name__)


class MessageRepository(BaseRepository[Message]):
    """
    Repository for Message model.

    Provides methods for:
    - Appending a message with a server-assigned timestamp
    - Ordered replay of a conversation after a cursor
    - Setting read_at at most once
    - Unread counters
    """

    def __init__(self):
        """Initialize with Message model."""
        super().__init__(Message)

    async def append(
        self,
        db: AsyncSession,
        match_id: UUID,
        sender_id: UUID,
        content: str,
        created_at: datetime
    ) -> Message:
        """Insert a message; ``created_at`` must already be ordered by the caller."""
        return await self.create(
            db,
            {
                "id": uuid.uuid4(),
                "match_id": match_id,
                "sender_id": sender_id,
                "content": content,
                "created_at": created_at,
            },
        )

    async def get_last_created_at(
        self,
        db: AsyncSession,
        match_id: UUID
    ) -> Optional[datetime]:
        """Timestamp of the newest message in a conversation, if any."""
        try:
            stmt = select(func.max(Message.created_at)).where(Message.match_id == match_id)
            result = await db.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error fetching last message time for match {match_id}: {e}")
            raise

    async def list_after(
        self,
        db: AsyncSession,
        match_id: UUID,
        after: Optional[datetime] = None,
        limit: int = 200
    ) -> list[Message]:
        """
        Messages of a conversation created strictly after ``after``, oldest first.

        Args:
            db: Active database session
            match_id: Conversation to read
            after: Exclusive cursor; None replays from the beginning
            limit: Maximum number of messages

        Example:
            missed = await repo.list_after(db, match_id, after=last_seen_at)
        """
        try:
            stmt = select(Message).where(Message.match_id == match_id)
            if after is not None:
                stmt = stmt.where(Message.created_at > after)
            stmt = stmt.order_by(Message.created_at).limit(limit)

            result = await db.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error fetching messages for match {match_id} after {after}: {e}")
            raise

    async def get_many(
        self,
        db: AsyncSession,
        message_ids: Iterable[UUID]
    ) -> list[Message]:
        message_ids = list(message_ids)
        if not message_ids:
            return []

        try:
            stmt = select(Message).where(Message.id.in_(message_ids)).order_by(Message.created_at)
            result = await db.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error fetching messages {message_ids}: {e}")
            raise

    async def mark_read(
        self,
        db: AsyncSession,
        message_ids: Iterable[UUID],
        reader_id: UUID,
        read_at: datetime
    ) -> list[UUID]:
        """
        Set read_at on unread messages not authored by ``reader_id``.

        Messages that are already read, or were sent by the reader, are left
        untouched, so repeating the call is a no-op.

        Returns:
            Ids of the messages that changed
        """
        message_ids = list(message_ids)
        if not message_ids:
            return []

        try:
            stmt = (
                sql_update(Message)
                .where(
                    and_(
                        Message.id.in_(message_ids),
                        Message.sender_id != reader_id,
                        Message.read_at.is_(None)
                    )
                )
                .values(read_at=read_at)
                .returning(Message.id)
                .execution_options(synchronize_session="fetch")
            )
            result = await db.execute(stmt)
            updated = list(result.scalars().all())
            await db.flush()
            return updated
        except SQLAlchemyError as e:
            logger.error(f"Error marking messages read for user {reader_id}: {e}")
            raise

    async def list_unread_ids(
        self,
        db: AsyncSession,
        match_id: UUID,
        reader_id: UUID
    ) -> list[UUID]:
        """Ids of messages in a conversation the reader has not read yet."""
        try:
            stmt = (
                select(Message.id)
                .where(
                    and_(
                        Message.match_id == match_id,
                        Message.sender_id != reader_id,
                        Message.read_at.is_(None)
                    )
                )
                .order_by(Message.created_at)
            )
            result = await db.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error fetching unread messages for match {match_id}: {e}")
            raise

    async def count_unread_by_match(
        self,
        db: AsyncSession,
        match_ids: Iterable[UUID],
        reader_id: UUID
    ) -> dict[UUID, int]:
        """Unread message count per conversation for one reader."""
        match_ids = list(match_ids)
        if not match_ids:
            return {}

        try:
            stmt = (
                select(Message.match_id, func.count(Message.id))
                .where(
                    and_(
                        Message.match_id.in_(match_ids),
                        Message.sender_id != reader_id,
                        Message.read_at.is_(None)
                    )
                )
                .group_by(Message.match_id)
            )
            result = await db.execute(stmt)
            return {match_id: count for match_id, count in result.all()}
        except SQLAlchemyError as e:
            logger.error(f"Error counting unread messages for user {reader_id}: {e}")
            raise
