"""
Decision ledger.

Holds every directional swipe decision. A pair (actor, subject) can be
decided at most once: the existence check catches the common case and the
conditional insert on the unique key catches the double tap that slips past
it, both surfacing as ``DuplicateDecision``.
"""

from __future__ import annotations
from typing import Iterable, Optional, Union
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
import logging

from app.core.exceptions import DuplicateDecision, InvalidDecision, TransientBackendError
from app.models.decision import Decision, DecisionKind
from app.models.notification import NotificationType
from app.repositories.decision_repository import DecisionRepository
from app.services.notification_service import NotificationDispatcher
from app.utils.timestamps import utcnow

logger = logging.getLogger(__name__)


class DecisionLedger:
    """
    Service for recording and unwinding swipe decisions.

    This service coordinates decision operations including:
    - Recording a decision exactly once per ordered pair
    - Notifying the subject of an incoming like
    - Removing a decision (rewind only)
    - Pre-filtering candidates the actor already decided on
    - Listing unanswered incoming likes
    """

    def __init__(
        self,
        decision_repo: Optional[DecisionRepository] = None,
        dispatcher: Optional[NotificationDispatcher] = None
    ):
        """
        Initialize service with repositories.

        Args:
            decision_repo: DecisionRepository instance (creates new if None)
            dispatcher: NotificationDispatcher for LIKE_RECEIVED
        """
        self.decision_repo = decision_repo or DecisionRepository()
        self.dispatcher = dispatcher or NotificationDispatcher()

    async def record(
        self,
        db: AsyncSession,
        actor_id: UUID,
        subject_id: UUID,
        kind: Union[DecisionKind, str]
    ) -> Decision:
        """
        Record ``actor_id``'s decision on ``subject_id``.

        Args:
            db: Active database session (caller commits)
            actor_id: The swiping user
            subject_id: The profile swiped on
            kind: pass, like or super_like

        Returns:
            The new decision

        Raises:
            InvalidDecision: Self-decision or unknown kind
            DuplicateDecision: The pair was already decided, including by a concurrent request
            TransientBackendError: The database failed

        Example:
            decision = await ledger.record(db, user.id, candidate_id, DecisionKind.LIKE)
        """
        try:
            kind = DecisionKind(kind)
        except ValueError:
            raise InvalidDecision(f"Unknown decision kind: {kind}")

        if actor_id == subject_id:
            raise InvalidDecision("Users cannot decide on themselves")

        try:
            if await self.decision_repo.get_for_pair(db, actor_id, subject_id) is not None:
                raise DuplicateDecision(actor_id, subject_id)

            decision = await self.decision_repo.insert_for_pair(db, actor_id, subject_id, kind, utcnow())
            if decision is None:
                logger.info(f"Concurrent decision {actor_id} -> {subject_id} won the insert")
                raise DuplicateDecision(actor_id, subject_id)

            if kind.is_positive:
                await self.dispatcher.emit(
                    db,
                    subject_id,
                    NotificationType.LIKE_RECEIVED,
                    decision.id,
                    message="Someone super liked your profile" if kind == DecisionKind.SUPER_LIKE else None,
                )

        except SQLAlchemyError as e:
            logger.error(f"Error recording decision {actor_id} -> {subject_id}: {e}")
            raise TransientBackendError() from e

        logger.info(f"Decision {decision.id}: {actor_id} -> {subject_id} ({kind.value})")
        return decision

    async def exists(self, db: AsyncSession, actor_id: UUID, subject_id: UUID) -> bool:
        try:
            return await self.decision_repo.get_for_pair(db, actor_id, subject_id) is not None
        except SQLAlchemyError as e:
            raise TransientBackendError() from e

    async def remove(self, db: AsyncSession, actor_id: UUID, subject_id: UUID) -> bool:
        """
        Delete a decision. Only the rewind path calls this.

        Returns:
            True if a decision was removed
        """
        try:
            removed = await self.decision_repo.delete_for_pair(db, actor_id, subject_id)
        except SQLAlchemyError as e:
            logger.error(f"Error removing decision {actor_id} -> {subject_id}: {e}")
            raise TransientBackendError() from e

        if not removed:
            logger.warning(f"No decision {actor_id} -> {subject_id} to remove")
        return removed

    async def filter_undecided(
        self,
        db: AsyncSession,
        actor_id: UUID,
        candidate_ids: Iterable[UUID]
    ) -> list[UUID]:
        """
        Drop candidates the actor already decided on (and the actor themself),
        keeping the original order and the first occurrence of repeats.
        """
        candidate_ids = list(dict.fromkeys(candidate_ids))
        try:
            decided = await self.decision_repo.get_decided_subject_ids(db, actor_id, candidate_ids)
        except SQLAlchemyError as e:
            raise TransientBackendError() from e
        return [c for c in candidate_ids if c != actor_id and c not in decided]

    async def incoming_likes(self, db: AsyncSession, user_id: UUID, limit: int = 50) -> list[Decision]:
        """Likes on ``user_id`` that the user has not answered yet, newest first."""
        try:
            return await self.decision_repo.get_unanswered_likes(db, user_id, limit=limit)
        except SQLAlchemyError as e:
            raise TransientBackendError() from e
