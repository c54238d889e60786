"""
Notification repository for managing inbox data.

This module provides specialized queries for notifications, including
filtering by recipient, read status and kind, and idempotent read updates.
"""

from __future__ import annotations
from typing import Optional
from uuid import UUID
import uuid
from datetime import datetime
from sqlalchemy import select, func, and_, update as sql_update, desc
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
import logging

from app.models.notification import Notification, NotificationType
from .base import BaseRepository

logger = logging.getLogger(__name__)


class NotificationRepository(BaseRepository[Notification]):
    """
    Repository for Notification model with specialized queries.

    Provides methods for:
    - Creating inbox rows
    - Filtering notifications by recipient, read status and kind
    - Read status updates
    - Unread count queries
    """

    def __init__(self):
        """Initialize with Notification model."""
        super().__init__(Notification)

    async def add(
        self,
        db: AsyncSession,
        recipient_id: UUID,
        kind: NotificationType,
        payload_ref: UUID,
        title: str,
        message: str,
        created_at: datetime
    ) -> Notification:
        """Insert one notification row."""
        return await self.create(
            db,
            {
                "id": uuid.uuid4(),
                "recipient_id": recipient_id,
                "kind": kind,
                "payload_ref": payload_ref,
                "title": title,
                "message": message,
                "is_read": False,
                "created_at": created_at,
            },
        )

    async def get_recipient_notifications(
        self,
        db: AsyncSession,
        recipient_id: UUID,
        skip: int = 0,
        limit: int = 50,
        is_read: Optional[bool] = None,
        kind: Optional[NotificationType] = None
    ) -> tuple[list[Notification], int]:
        """
        Get paginated notifications for a recipient, newest first.

        Args:
            db: Active database session
            recipient_id: UUID of the recipient
            skip: Number of records to skip (offset)
            limit: Maximum number of records to return
            is_read: Optional filter by read status
            kind: Optional filter by notification kind

        Returns:
            Tuple of (list of notifications, total count)

        Example:
            notifications, total = await repo.get_recipient_notifications(
                db, user_id, skip=0, limit=20, is_read=False
            )
        """
        criteria = [Notification.recipient_id == recipient_id]
        if is_read is not None:
            criteria.append(Notification.is_read == is_read)
        if kind is not None:
            criteria.append(Notification.kind == kind)

        try:
            query = (
                select(Notification)
                .where(and_(*criteria))
                .order_by(desc(Notification.created_at))
                .offset(skip)
                .limit(limit)
            )
            result = await db.execute(query)
            notifications = list(result.scalars().all())

            total = await self.count(db, *criteria)
            return notifications, total

        except SQLAlchemyError as e:
            logger.error(f"Error fetching notifications for user {recipient_id}: {e}")
            raise

    async def mark_as_read(
        self,
        db: AsyncSession,
        notification: Notification,
        read_at: datetime
    ) -> Notification:
        """
        Mark a single notification as read. Already-read rows are left as is.

        Example:
            notification = await repo.mark_as_read(db, notification, utcnow())
            await db.commit()
        """
        try:
            if not notification.is_read:
                notification.is_read = True
                notification.read_at = read_at
                await db.flush()

            return notification

        except SQLAlchemyError as e:
            logger.error(f"Error marking notification {notification.id} as read: {e}")
            raise

    async def mark_all_as_read_for_recipient(
        self,
        db: AsyncSession,
        recipient_id: UUID,
        read_at: datetime
    ) -> int:
        """
        Mark all unread notifications for a recipient as read.

        Returns:
            Number of notifications updated

        Example:
            count = await repo.mark_all_as_read_for_recipient(db, user_id, utcnow())
            await db.commit()
            print(f"Marked {count} notifications as read")
        """
        try:
            stmt = (
                sql_update(Notification)
                .where(
                    and_(
                        Notification.recipient_id == recipient_id,
                        Notification.is_read.is_(False)
                    )
                )
                .values(
                    is_read=True,
                    read_at=read_at
                )
                .execution_options(synchronize_session="fetch")
            )

            result = await db.execute(stmt)
            await db.flush()
            return result.rowcount

        except SQLAlchemyError as e:
            logger.error(f"Error marking all notifications as read for user {recipient_id}: {e}")
            raise

    async def get_unread_count(
        self,
        db: AsyncSession,
        recipient_id: UUID
    ) -> int:
        """
        Get count of unread notifications for a recipient.

        Example:
            unread = await repo.get_unread_count(db, user_id)
        """
        try:
            stmt = (
                select(func.count())
                .select_from(Notification)
                .where(
                    and_(
                        Notification.recipient_id == recipient_id,
                        Notification.is_read.is_(False)
                    )
                )
            )
            result = await db.execute(stmt)
            return result.scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Error counting unread notifications for user {recipient_id}: {e}")
            raise
