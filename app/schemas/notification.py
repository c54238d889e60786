from pydantic import BaseModel, field_validator
from typing import Optional, List
from datetime import datetime
import uuid

from app.models.notification import NotificationType
from app.utils.timestamps import ensure_utc


class NotificationResponse(BaseModel):
    """Response schema for a single notification"""
    id: uuid.UUID
    recipient_id: uuid.UUID
    kind: NotificationType
    payload_ref: uuid.UUID
    title: str
    message: str
    is_read: bool
    created_at: datetime
    read_at: Optional[datetime] = None

    @field_validator("created_at", "read_at")
    @classmethod
    def as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    class Config:
        from_attributes = True


class NotificationListResponse(BaseModel):
    """Paginated list of notifications"""
    items: List[NotificationResponse]
    total: int
    page: int
    pages: int
    unread_count: int


class MarkReadResponse(BaseModel):
    """Response when marking notification(s) as read"""
    updated_count: int
    success: bool = True
