from sqlalchemy import Column, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from app.core.database import Base


class PresenceSample(Base):
    """Single mutable row per user; no history is kept."""

    __tablename__ = "presence_samples"

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    last_active_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<PresenceSample(user_id={self.user_id}, last_active_at={self.last_active_at})>"
