"""
Notification dispatcher.

Turns engine events (match formed, message received, like received) into
inbox rows, publishes each row on the recipient's inbox feed and lets the
recipient page through and mark their inbox.

``emit`` writes exactly one row per call and never deduplicates: callers own
the "notify once" discipline.
"""

from __future__ import annotations
from typing import Optional, TYPE_CHECKING
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
import logging
import math

from app.core.change_feed import ChangeFeed, FeedSubscription, change_feed, inbox_topic, stage, commit_and_publish
from app.core.exceptions import NotificationNotFound, NotMatchParticipant, TransientBackendError
from app.models.notification import Notification, NotificationType
from app.repositories.notification_repository import NotificationRepository
from app.schemas.notification import NotificationResponse
from app.utils.timestamps import utcnow

if TYPE_CHECKING:
    from app.services.match_service import MatchFormed

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 80

# Display strings per kind: (title, default message)
NOTIFICATION_TEXT = {
    NotificationType.MATCH_FORMED: ("It's a Match!", "You have a new match. Say hello!"),
    NotificationType.MESSAGE_RECEIVED: ("New message", "You have a new message"),
    NotificationType.LIKE_RECEIVED: ("Someone likes you", "Someone liked your profile"),
}


def message_preview(content: str) -> str:
    """Shorten message content for the inbox line."""
    content = " ".join(content.split())
    if len(content) <= PREVIEW_LENGTH:
        return content
    return content[:PREVIEW_LENGTH - 3].rstrip() + "..."


class NotificationDispatcher:
    """
    Service for creating and reading inbox notifications.

    This service coordinates notification operations including:
    - Creating one notification per event
    - Fanning out MATCH_FORMED to both participants
    - Retrieving a recipient's inbox
    - Marking notifications as read
    - Live inbox subscriptions
    """

    def __init__(
        self,
        notification_repo: Optional[NotificationRepository] = None,
        feed: Optional[ChangeFeed] = None
    ):
        """
        Initialize service with repositories.

        Args:
            notification_repo: NotificationRepository instance
            feed: Change feed to publish on (defaults to the process-wide feed)
        """
        self.notification_repo = notification_repo or NotificationRepository()
        self.feed = feed or change_feed

    async def emit(
        self,
        db: AsyncSession,
        recipient_id: UUID,
        kind: NotificationType,
        payload_ref: UUID,
        title: Optional[str] = None,
        message: Optional[str] = None
    ) -> Notification:
        """
        Create exactly one notification and stage it for the recipient's inbox feed.

        The caller owns the transaction; the inbox event is published when the
        caller commits through ``commit_and_publish``.

        Args:
            db: Active database session
            recipient_id: User who receives the notification
            kind: Notification kind
            payload_ref: Id of the match, message or decision it is about
            title: Optional override of the default title
            message: Optional override of the default message

        Returns:
            The created notification

        Example:
            await dispatcher.emit(db, subject_id, NotificationType.LIKE_RECEIVED, decision.id)
            await commit_and_publish(db)
        """
        default_title, default_message = NOTIFICATION_TEXT[kind]
        try:
            notification = await self.notification_repo.add(
                db,
                recipient_id=recipient_id,
                kind=kind,
                payload_ref=payload_ref,
                title=title or default_title,
                message=message or default_message,
                created_at=utcnow(),
            )
        except SQLAlchemyError as e:
            logger.error(f"Error creating {kind.value} notification for user {recipient_id}: {e}")
            raise TransientBackendError() from e

        stage(
            db,
            inbox_topic(recipient_id),
            {
                "type": "notification.created",
                "notification": NotificationResponse.model_validate(notification),
            },
        )
        logger.info(f"Notification {notification.id} ({kind.value}) created for user {recipient_id}")
        return notification

    async def on_match_formed(self, db: AsyncSession, event: "MatchFormed") -> list[Notification]:
        """One MATCH_FORMED notification per participant."""
        return [
            await self.emit(db, user_id, NotificationType.MATCH_FORMED, event.match_id)
            for user_id in (event.user_a, event.user_b)
        ]

    async def list_for(
        self,
        db: AsyncSession,
        recipient_id: UUID,
        page: int = 1,
        limit: int = 50,
        unread_only: bool = False,
        kind: Optional[NotificationType] = None
    ) -> dict:
        """
        Get paginated notifications for a recipient.

        Returns:
            Dictionary with items, total, page, pages, unread_count

        Example:
            result = await dispatcher.list_for(db, user_id, page=1, limit=20, unread_only=True)
        """
        try:
            skip = (page - 1) * limit
            notifications, total = await self.notification_repo.get_recipient_notifications(
                db,
                recipient_id,
                skip=skip,
                limit=limit,
                is_read=False if unread_only else None,
                kind=kind,
            )
            unread_count = await self.notification_repo.get_unread_count(db, recipient_id)
        except SQLAlchemyError as e:
            logger.error(f"Error getting notifications for user {recipient_id}: {e}")
            raise TransientBackendError() from e

        pages = math.ceil(total / limit) if limit > 0 else 0

        return {
            "items": notifications,
            "total": total,
            "page": page,
            "pages": pages,
            "unread_count": unread_count
        }

    async def mark_read(
        self,
        db: AsyncSession,
        notification_id: UUID,
        recipient_id: UUID
    ) -> Notification:
        """
        Mark a notification as read (with ownership check). Marking twice is a no-op.

        Raises:
            NotificationNotFound: Unknown id
            NotMatchParticipant: The notification belongs to someone else
        """
        try:
            notification = await self.notification_repo.get(db, notification_id)
            if notification is None:
                raise NotificationNotFound(f"Notification {notification_id} not found")

            if notification.recipient_id != recipient_id:
                raise NotMatchParticipant("You can only mark your own notifications as read")

            notification = await self.notification_repo.mark_as_read(db, notification, utcnow())
            await commit_and_publish(db, self.feed)
            return notification

        except SQLAlchemyError as e:
            logger.error(f"Error marking notification {notification_id} as read: {e}")
            raise TransientBackendError() from e

    async def mark_all_read(self, db: AsyncSession, recipient_id: UUID) -> int:
        """
        Mark every unread notification of a recipient as read.

        Returns:
            Number of notifications that changed
        """
        try:
            count = await self.notification_repo.mark_all_as_read_for_recipient(db, recipient_id, utcnow())
            await commit_and_publish(db, self.feed)
        except SQLAlchemyError as e:
            logger.error(f"Error marking all notifications as read for user {recipient_id}: {e}")
            raise TransientBackendError() from e

        logger.info(f"Marked {count} notifications as read for user {recipient_id}")
        return count

    def subscribe(self, recipient_id: UUID) -> FeedSubscription:
        """
        Live inbox for one recipient. Call ``close()`` on the handle to stop.

        Example:
            inbox = dispatcher.subscribe(user_id)
            event = await inbox.get(timeout=30)
            inbox.close()
        """
        return FeedSubscription(self.feed, inbox_topic(recipient_id))
