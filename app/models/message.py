from sqlalchemy import Column, DateTime, ForeignKey, Text, UniqueConstraint, Index
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
from app.core.database import Base


class Message(Base):
    __tablename__ = "messages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    match_id = Column(UUID(as_uuid=True), ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)

    # Server-assigned; strictly increasing within a match
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    # Set at most once, by the recipient
    read_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    match = relationship("Match", back_populates="messages")

    __table_args__ = (
        UniqueConstraint("match_id", "created_at", name="uq_messages_match_created_at"),
        Index("ix_messages_match_unread", "match_id", "sender_id", "read_at"),
    )

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    def __repr__(self):
        return f"<Message(id={self.id}, match_id={self.match_id}, sender_id={self.sender_id}, read={self.is_read})>"
