"""
API endpoints for the notification inbox.

This module provides endpoints for users to:
- Retrieve their notifications with pagination and filters
- Mark notifications as read
- Mark all notifications as read
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import uuid

from app.core.database import get_db
from app.api.deps import get_current_user
from app.models.notification import NotificationType
from app.models.user import User
from app.services.notification_service import NotificationDispatcher
from app.schemas.notification import (
    NotificationListResponse,
    NotificationResponse,
    MarkReadResponse,
)

router = APIRouter()


@router.get("", response_model=NotificationListResponse)
async def get_notifications(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, le=100, description="Items per page"),
    unread_only: bool = Query(False, description="Only unread notifications"),
    kind: Optional[NotificationType] = Query(None, description="Filter by notification kind"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Get paginated notifications for the current user, newest first.

    Query parameters:
    - page: Page number (default: 1)
    - limit: Items per page (default: 50, max: 100)
    - unread_only: Only unread notifications (default: false)
    - kind: MATCH_FORMED, MESSAGE_RECEIVED or LIKE_RECEIVED (optional)

    Returns paginated list with unread count.
    """
    return await NotificationDispatcher().list_for(
        db,
        current_user.id,
        page=page,
        limit=limit,
        unread_only=unread_only,
        kind=kind
    )


@router.patch("/read-all", response_model=MarkReadResponse)
async def mark_all_notifications_read(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Mark all notifications as read for the current user.

    Returns the count of notifications updated.
    """
    count = await NotificationDispatcher().mark_all_read(db, current_user.id)

    return {
        "updated_count": count,
        "success": True
    }


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Mark a specific notification as read.

    Returns the updated notification.
    """
    return await NotificationDispatcher().mark_read(db, notification_id, current_user.id)
