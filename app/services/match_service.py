"""
Match detector.

Runs after every recorded decision. When the subject has already liked the
actor back, the active match for the pair is created with a conditional
insert; losing that race to the other side's swipe is not an error, the
existing match is returned instead and nothing is emitted a second time.

Detection holds a per-pair lock from the reciprocal lookup until commit, so
two concurrent reciprocal likes cannot both miss each other.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, TYPE_CHECKING
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
import logging

from app.core.change_feed import commit_and_publish, rollback_and_discard
from app.core.exceptions import (
    ConstraintConflict,
    MatchNotFound,
    NotMatchParticipant,
    TransientBackendError,
)
from app.models.decision import Decision
from app.models.match import Match, DeactivationReason
from app.repositories.decision_repository import DecisionRepository
from app.repositories.match_repository import MatchRepository
from app.services.notification_service import NotificationDispatcher
from app.utils.timestamps import utcnow

if TYPE_CHECKING:
    from app.services.conversation_service import ConversationChannel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchFormed:
    """Emitted once, when a pair's active match row is created."""
    match_id: UUID
    user_a: UUID
    user_b: UUID
    created_at: datetime
    decision_id: UUID


@dataclass(frozen=True)
class MatchOutcome:
    match: Optional[Match] = None
    created: bool = False


class MatchDetector:
    """
    Service for creating and ending matches.

    This service coordinates match operations including:
    - Detecting mutual interest after a decision
    - Creating the active match exactly once per pair
    - Soft-deleting matches (unmatch, rewind)
    - Listing a user's active matches
    """

    def __init__(
        self,
        match_repo: Optional[MatchRepository] = None,
        decision_repo: Optional[DecisionRepository] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        channel: Optional["ConversationChannel"] = None
    ):
        """
        Initialize service with repositories.

        Args:
            match_repo: MatchRepository instance
            decision_repo: DecisionRepository instance
            dispatcher: NotificationDispatcher that receives MatchFormed
            channel: ConversationChannel that receives MatchFormed
        """
        self.match_repo = match_repo or MatchRepository()
        self.decision_repo = decision_repo or DecisionRepository()
        self.dispatcher = dispatcher or NotificationDispatcher()
        if channel is None:
            from app.services.conversation_service import ConversationChannel
            channel = ConversationChannel(match_repo=self.match_repo, dispatcher=self.dispatcher)
        self.channel = channel

    async def on_decision(self, db: AsyncSession, decision: Decision) -> MatchOutcome:
        """
        Create the pair's match if ``decision`` completes mutual interest.

        Args:
            db: Active database session (caller commits)
            decision: The decision that was just recorded

        Returns:
            MatchOutcome with created=True only for the call that inserted the row

        Example:
            outcome = await detector.on_decision(db, decision)
            if outcome.created:
                ...  # both users were notified
        """
        if not decision.kind.is_positive:
            return MatchOutcome()

        try:
            await self.match_repo.lock_pair(db, decision.actor_id, decision.subject_id)
            reciprocal = await self.decision_repo.get_reciprocal_positive(db, decision)
            if reciprocal is None:
                return MatchOutcome()

            try:
                match = await self._create_match(db, decision)
            except ConstraintConflict:
                existing = await self.match_repo.get_active_for_pair(db, decision.actor_id, decision.subject_id)
                logger.info(
                    f"Match for {decision.actor_id}/{decision.subject_id} already formed "
                    f"(match {existing.id if existing else None}), nothing to emit"
                )
                return MatchOutcome(match=existing, created=False)

            event = MatchFormed(
                match_id=match.id,
                user_a=match.user_a,
                user_b=match.user_b,
                created_at=match.created_at,
                decision_id=decision.id,
            )
            await self.dispatcher.on_match_formed(db, event)
            self.channel.initialize(db, event)

        except SQLAlchemyError as e:
            logger.error(f"Error detecting match for decision {decision.id}: {e}")
            raise TransientBackendError() from e

        logger.info(f"Match {match.id} formed between {match.user_a} and {match.user_b}")
        return MatchOutcome(match=match, created=True)

    async def _create_match(self, db: AsyncSession, decision: Decision) -> Match:
        match = await self.match_repo.create_if_absent(
            db, decision.actor_id, decision.subject_id, utcnow()
        )
        if match is None:
            raise ConstraintConflict(
                f"Active match for {decision.actor_id}/{decision.subject_id} already exists"
            )
        return match

    async def deactivate(
        self,
        db: AsyncSession,
        match_id: UUID,
        reason: DeactivationReason
    ) -> Optional[Match]:
        """
        Move a match to Inactive. Inactive is terminal, so repeating this is a no-op.

        Args:
            db: Active database session (caller commits)
            match_id: Match to deactivate
            reason: Why the match ended

        Returns:
            The match, or None if it does not exist
        """
        try:
            match = await self.match_repo.get(db, match_id, for_update=True)
            if match is None:
                return None

            if not match.is_active:
                return match

            match = await self.match_repo.deactivate(db, match, reason, utcnow())
        except SQLAlchemyError as e:
            logger.error(f"Error deactivating match {match_id}: {e}")
            raise TransientBackendError() from e

        self.channel.close(db, match)
        logger.info(f"Match {match_id} deactivated ({reason.value})")
        return match

    async def unmatch(self, db: AsyncSession, match_id: UUID, user_id: UUID) -> Match:
        """
        End a match on behalf of one of its participants.

        Raises:
            MatchNotFound: Unknown match
            NotMatchParticipant: ``user_id`` is not one of the two users
        """
        match = await self.get_for_participant(db, match_id, user_id)
        try:
            match = await self.deactivate(db, match.id, DeactivationReason.UNMATCH)
            await commit_and_publish(db, self.channel.feed)
        except SQLAlchemyError as e:
            await rollback_and_discard(db)
            logger.error(f"Error committing unmatch of {match_id}: {e}")
            raise TransientBackendError() from e
        return match

    async def get_for_participant(self, db: AsyncSession, match_id: UUID, user_id: UUID) -> Match:
        """
        Load a match, active or not, that ``user_id`` takes part in.

        Raises:
            MatchNotFound: Unknown match
            NotMatchParticipant: ``user_id`` is not one of the two users
        """
        try:
            match = await self.match_repo.get(db, match_id)
        except SQLAlchemyError as e:
            raise TransientBackendError() from e

        if match is None:
            raise MatchNotFound(match_id)
        if not match.involves(user_id):
            raise NotMatchParticipant()
        return match

    async def get_active_for_pair(self, db: AsyncSession, first_user_id: UUID, second_user_id: UUID) -> Optional[Match]:
        try:
            return await self.match_repo.get_active_for_pair(db, first_user_id, second_user_id)
        except SQLAlchemyError as e:
            raise TransientBackendError() from e

    async def list_active(
        self,
        db: AsyncSession,
        user_id: UUID,
        skip: int = 0,
        limit: int = 100
    ) -> tuple[list[Match], int]:
        """Active matches of a user, newest first, with the total count."""
        try:
            return await self.match_repo.list_active_for_user(db, user_id, skip=skip, limit=limit)
        except SQLAlchemyError as e:
            logger.error(f"Error listing matches for user {user_id}: {e}")
            raise TransientBackendError() from e
