from sqlalchemy import Column, String, DateTime, ForeignKey, Boolean, Text, Enum
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import UUID
import uuid
import enum
from app.core.database import Base


class NotificationType(str, enum.Enum):
    MATCH_FORMED = "MATCH_FORMED"
    MESSAGE_RECEIVED = "MESSAGE_RECEIVED"
    LIKE_RECEIVED = "LIKE_RECEIVED"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    recipient_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    kind = Column(Enum(NotificationType, name="notificationtype"), nullable=False, index=True)
    # Id of the match, message or decision the notification is about
    payload_ref = Column(UUID(as_uuid=True), nullable=False)

    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)

    is_read = Column(Boolean, nullable=False, default=False, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    def __repr__(self):
        return f"<Notification(id={self.id}, recipient={self.recipient_id}, kind={self.kind}, is_read={self.is_read})>"
