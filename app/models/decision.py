from sqlalchemy import Column, DateTime, ForeignKey, Enum, UniqueConstraint, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import UUID
import uuid
import enum
from app.core.database import Base


class DecisionKind(str, enum.Enum):
    PASS = "pass"
    LIKE = "like"
    SUPER_LIKE = "super_like"

    @property
    def is_positive(self) -> bool:
        return self in (DecisionKind.LIKE, DecisionKind.SUPER_LIKE)


POSITIVE_KINDS = (DecisionKind.LIKE, DecisionKind.SUPER_LIKE)


class Decision(Base):
    __tablename__ = "decisions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    actor_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    subject_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(
        Enum(DecisionKind, name="decisionkind", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    # One decision per ordered (actor, subject) pair; rewinding deletes the row
    __table_args__ = (
        UniqueConstraint("actor_id", "subject_id", name="uq_decisions_actor_subject"),
        CheckConstraint("actor_id <> subject_id", name="ck_decisions_no_self"),
    )

    def __repr__(self):
        return f"<Decision(actor_id={self.actor_id}, subject_id={self.subject_id}, kind={self.kind})>"
