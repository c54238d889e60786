from sqlalchemy import Column, DateTime, ForeignKey, Boolean, String, Index, CheckConstraint, true
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
import enum
from app.core.database import Base


class DeactivationReason(str, enum.Enum):
    UNMATCH = "unmatch"
    REWIND = "rewind"


class Match(Base):
    __tablename__ = "matches"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)

    # Canonical pair: user_a is always the smaller id
    user_a = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    user_b = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    is_active = Column(Boolean, nullable=False, default=True, server_default="true", index=True)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)
    deactivation_reason = Column(String(20), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    # Relationships
    messages = relationship("Message", back_populates="match", order_by="Message.created_at")

    __table_args__ = (
        CheckConstraint("user_a < user_b", name="ck_matches_canonical_pair"),
    )

    @staticmethod
    def canonical_pair(first: uuid.UUID, second: uuid.UUID) -> tuple[uuid.UUID, uuid.UUID]:
        """Order a pair of user ids the way it is stored."""
        return (first, second) if first < second else (second, first)

    def involves(self, user_id: uuid.UUID) -> bool:
        return user_id in (self.user_a, self.user_b)

    def other_user(self, user_id: uuid.UUID) -> uuid.UUID:
        return self.user_b if user_id == self.user_a else self.user_a

    def __repr__(self):
        return f"<Match(id={self.id}, user_a={self.user_a}, user_b={self.user_b}, is_active={self.is_active})>"


# Shared by the partial unique index and the conflict target of the conditional insert
ACTIVE_MATCH_PREDICATE = Match.is_active == true()

# At most one ACTIVE match per unordered pair; inactive rows do not block a rematch
Index(
    "uq_matches_active_pair",
    Match.user_a,
    Match.user_b,
    unique=True,
    postgresql_where=ACTIVE_MATCH_PREDICATE,
    sqlite_where=ACTIVE_MATCH_PREDICATE,
)
