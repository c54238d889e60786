"""
Swipe service: one swipe or one rewind, end to end.

A swipe records the decision, runs match detection, commits, and then
updates the user's in-memory swipe session (rewind stack and candidate
queue). Sessions live in process memory and are replaced when the client
starts a new one.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Union
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
import logging

from app.core.change_feed import commit_and_publish, rollback_and_discard
from app.core.config import settings
from app.core.exceptions import TransientBackendError
from app.models.decision import Decision, DecisionKind
from app.models.match import Match
from app.models.user import User
from app.services.decision_service import DecisionLedger
from app.services.match_service import MatchDetector
from app.services.rewind_service import CandidateQueue, RewindController, RewindResult
from app.utils.timestamps import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SwipeSession:
    user_id: UUID
    rewinds: RewindController
    candidates: CandidateQueue
    started_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class SwipeResult:
    decision: Decision
    match: Optional[Match]
    match_created: bool
    rewinds_remaining: Optional[int]


class SwipeSessionRegistry:
    """In-memory swipe sessions keyed by user id."""

    def __init__(self):
        self._sessions: dict[UUID, SwipeSession] = {}

    def get(self, user_id: UUID) -> Optional[SwipeSession]:
        return self._sessions.get(user_id)

    def put(self, session: SwipeSession) -> None:
        self._sessions[session.user_id] = session

    def discard(self, user_id: UUID) -> None:
        self._sessions.pop(user_id, None)

    def clear(self) -> None:
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)


# Global singleton instance
swipe_sessions = SwipeSessionRegistry()


class SwipeService:
    """
    Service orchestrating swipes and rewinds.

    This service coordinates between the ledger, the match detector and the
    user's swipe session:
    - Recording a swipe and detecting a match in one unit of work
    - Pushing each swipe onto the session's rewind stack
    - Advancing and restoring the candidate queue
    - Rewind budget per session (unlimited for premium users)
    """

    def __init__(
        self,
        ledger: Optional[DecisionLedger] = None,
        detector: Optional[MatchDetector] = None,
        sessions: Optional[SwipeSessionRegistry] = None,
        rewind_budget: Optional[int] = None
    ):
        """
        Initialize service with its collaborators.

        Args:
            ledger: DecisionLedger instance (creates new if None)
            detector: MatchDetector instance (creates new if None)
            sessions: Session registry (defaults to the process-wide one)
            rewind_budget: Rewinds per non-premium session (defaults to settings)
        """
        self.detector = detector or MatchDetector()
        self.ledger = ledger or DecisionLedger(dispatcher=self.detector.dispatcher)
        self.sessions = sessions if sessions is not None else swipe_sessions
        self.rewind_budget = rewind_budget if rewind_budget is not None else settings.rewind_budget_per_session

    def start_session(self, user: User, candidate_ids: Iterable[UUID] = ()) -> SwipeSession:
        """
        Begin a fresh swipe session, discarding the previous stack and budget.
        """
        candidates = CandidateQueue(candidate_ids)
        session = SwipeSession(
            user_id=user.id,
            rewinds=RewindController(
                user.id,
                budget=None if user.is_premium else self.rewind_budget,
                ledger=self.ledger,
                detector=self.detector,
                candidates=candidates,
            ),
            candidates=candidates,
        )
        self.sessions.put(session)
        logger.info(f"Swipe session started for user {user.id} (premium: {user.is_premium})")
        return session

    def session_for(self, user: User) -> SwipeSession:
        session = self.sessions.get(user.id)
        if session is None:
            session = self.start_session(user)
        return session

    async def swipe(
        self,
        db: AsyncSession,
        user: User,
        subject_id: UUID,
        kind: Union[DecisionKind, str]
    ) -> SwipeResult:
        """
        Record a swipe and form a match when it is mutual.

        Raises:
            DuplicateDecision: Already swiped on this subject; move on to the next one
            InvalidDecision: Self-swipe or unknown kind
            TransientBackendError: The database failed; safe to retry

        Example:
            result = await service.swipe(db, user, candidate_id, DecisionKind.LIKE)
            if result.match_created:
                ...  # show the match screen
        """
        session = self.session_for(user)

        try:
            decision = await self.ledger.record(db, user.id, subject_id, kind)
            outcome = await self.detector.on_decision(db, decision)
            await commit_and_publish(db, self.detector.channel.feed)
        except TransientBackendError:
            await rollback_and_discard(db)
            raise
        except SQLAlchemyError as e:
            await rollback_and_discard(db)
            logger.error(f"Error committing swipe {user.id} -> {subject_id}: {e}")
            raise TransientBackendError() from e

        session.rewinds.push(decision, outcome.match if outcome.created else None)
        session.candidates.advance(subject_id)

        return SwipeResult(
            decision=decision,
            match=outcome.match,
            match_created=outcome.created,
            rewinds_remaining=session.rewinds.remaining,
        )

    async def rewind(self, db: AsyncSession, user: User) -> RewindResult:
        """
        Undo the user's most recent swipe in this session.

        Raises:
            NoRewindAvailable: Nothing to rewind or the budget is spent
            TransientBackendError: The database failed; nothing was charged
        """
        return await self.session_for(user).rewinds.rewind(db)

    def rewind_status(self, user: User) -> dict:
        rewinds = self.session_for(user).rewinds
        return {
            "available": rewinds.can_rewind,
            "depth": rewinds.depth,
            "rewinds_used": rewinds.used,
            "rewinds_remaining": rewinds.remaining,
            "is_premium": rewinds.budget is None,
        }

    async def load_candidates(
        self,
        db: AsyncSession,
        user: User,
        candidate_ids: Iterable[UUID]
    ) -> list[UUID]:
        """
        Pre-filter a batch from the profile source and queue what is left.

        Returns:
            The candidates that were not decided on yet, in source order
        """
        undecided = await self.ledger.filter_undecided(db, user.id, candidate_ids)
        self.session_for(user).candidates.extend(undecided)
        return undecided

    def next_candidate(self, user: User) -> Optional[UUID]:
        return self.session_for(user).candidates.peek()

    async def incoming_likes(self, db: AsyncSession, user: User, limit: int = 50) -> list[Decision]:
        return await self.ledger.incoming_likes(db, user.id, limit=limit)
