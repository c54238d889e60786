"""
Rewind (undo last swipe) for one swipe session.

Each session keeps a LIFO of the decisions it recorded. Only the top entry
can be rewound; rewinding deletes the decision, soft-deletes the active match
it leaves behind and puts the subject back at the front of the candidate queue.
Non-premium sessions have a fixed budget of rewinds and the stack never
holds more entries than the budget has left, so older entries fall off.
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
import logging

from app.core.change_feed import commit_and_publish, rollback_and_discard
from app.core.exceptions import NoRewindAvailable, SwipeMatchError, TransientBackendError
from app.models.decision import Decision, DecisionKind
from app.models.match import Match, DeactivationReason
from app.services.decision_service import DecisionLedger
from app.services.match_service import MatchDetector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecisionSnapshot:
    id: UUID
    actor_id: UUID
    subject_id: UUID
    kind: DecisionKind
    created_at: datetime

    @classmethod
    def of(cls, decision: Decision) -> "DecisionSnapshot":
        return cls(
            id=decision.id,
            actor_id=decision.actor_id,
            subject_id=decision.subject_id,
            kind=decision.kind,
            created_at=decision.created_at,
        )


@dataclass(frozen=True)
class RewindEntry:
    decision: DecisionSnapshot
    # Match this decision formed, if any
    match_id: Optional[UUID] = None


@dataclass(frozen=True)
class RewindResult:
    decision: DecisionSnapshot
    match_id: Optional[UUID]
    match_deactivated: bool
    remaining: Optional[int]

    @property
    def restored_subject_id(self) -> UUID:
        return self.decision.subject_id


class CandidateQueue:
    """
    Ordered queue of profile ids the user has yet to swipe on.

    Fed by the profile source (after ledger pre-filtering), advanced on each
    swipe and rewound by putting a subject back at the front.
    """

    def __init__(self, candidate_ids: Iterable[UUID] = ()):
        self._queue: deque[UUID] = deque()
        self.extend(candidate_ids)

    def extend(self, candidate_ids: Iterable[UUID]) -> int:
        """Append candidates not already queued. Returns how many were added."""
        added = 0
        for candidate_id in candidate_ids:
            if candidate_id not in self._queue:
                self._queue.append(candidate_id)
                added += 1
        return added

    def peek(self) -> Optional[UUID]:
        return self._queue[0] if self._queue else None

    def advance(self, subject_id: UUID) -> None:
        """Take a swiped subject out of the queue, wherever it is."""
        try:
            self._queue.remove(subject_id)
        except ValueError:
            pass

    def restore_front(self, subject_id: UUID) -> None:
        self.advance(subject_id)
        self._queue.appendleft(subject_id)

    def snapshot(self) -> list[UUID]:
        return list(self._queue)

    def __len__(self) -> int:
        return len(self._queue)

    def __contains__(self, subject_id: UUID) -> bool:
        return subject_id in self._queue


class RewindController:
    """
    Session-scoped undo stack for one user.

    ``budget`` is the number of rewinds allowed in the session, or None for
    unlimited (premium).
    """

    def __init__(
        self,
        user_id: UUID,
        budget: Optional[int],
        ledger: Optional[DecisionLedger] = None,
        detector: Optional[MatchDetector] = None,
        candidates: Optional[CandidateQueue] = None
    ):
        self.user_id = user_id
        self.budget = budget
        self.used = 0
        self.ledger = ledger or DecisionLedger()
        self.detector = detector or MatchDetector()
        self.candidates = candidates
        self._stack: deque[RewindEntry] = deque()
        self._rewinding: Optional[RewindEntry] = None

    @property
    def remaining(self) -> Optional[int]:
        if self.budget is None:
            return None
        return max(self.budget - self.used, 0)

    @property
    def depth(self) -> int:
        return len(self._stack)

    @property
    def can_rewind(self) -> bool:
        return bool(self._stack) and self.remaining != 0

    def peek(self) -> Optional[RewindEntry]:
        return self._stack[-1] if self._stack else None

    def _trim(self) -> None:
        cap = self.remaining
        if cap is None:
            return
        while len(self._stack) > cap:
            dropped = self._stack.popleft()
            logger.debug(f"Rewind stack of {self.user_id} full, dropping decision {dropped.decision.id}")

    def push(self, decision: Decision, match: Optional[Match] = None) -> RewindEntry:
        """Remember a decision (and the match it formed) as the newest rewindable entry."""
        entry = RewindEntry(
            decision=DecisionSnapshot.of(decision),
            match_id=match.id if match is not None else None,
        )
        self._stack.append(entry)
        self._trim()
        return entry

    async def rewind(self, db: AsyncSession) -> RewindResult:
        """
        Undo the most recent decision of the session.

        The database work is one unit of work committed here. The entry leaves
        the stack only once it commits; if it fails no budget is spent.

        Raises:
            NoRewindAvailable: Empty stack or exhausted budget
            TransientBackendError: The database failed; safe to retry

        Example:
            result = await controller.rewind(db)
            print(result.restored_subject_id, result.remaining)
        """
        if self.remaining == 0:
            raise NoRewindAvailable("No rewinds left in this session")
        if self._rewinding is not None:
            raise NoRewindAvailable("A rewind is already in progress")
        entry = self.peek()
        if entry is None:
            raise NoRewindAvailable("Nothing to rewind")

        # The entry stays on the stack until the rewind commits; swipes pushed
        # meanwhile stay above it
        self._rewinding = entry
        decision = entry.decision
        try:
            await self.ledger.remove(db, decision.actor_id, decision.subject_id)

            match_id = entry.match_id
            if match_id is None and decision.kind.is_positive:
                # The other side's like may have formed the match
                active = await self.detector.get_active_for_pair(db, decision.actor_id, decision.subject_id)
                match_id = active.id if active is not None else None

            match_deactivated = False
            if match_id is not None:
                match = await self.detector.deactivate(db, match_id, DeactivationReason.REWIND)
                match_deactivated = match is not None

            await commit_and_publish(db, self.detector.channel.feed)

        except (SwipeMatchError, SQLAlchemyError) as e:
            await rollback_and_discard(db)
            logger.error(f"Rewind of decision {decision.id} for user {self.user_id} failed: {e}")
            if isinstance(e, SQLAlchemyError):
                raise TransientBackendError() from e
            raise
        finally:
            self._rewinding = None

        if entry in self._stack:
            self._stack.remove(entry)
        self.used += 1
        self._trim()
        if self.candidates is not None:
            self.candidates.restore_front(decision.subject_id)

        logger.info(
            f"User {self.user_id} rewound decision {decision.id} on {decision.subject_id} "
            f"(match deactivated: {match_deactivated}, remaining: {self.remaining})"
        )
        return RewindResult(
            decision=decision,
            match_id=match_id,
            match_deactivated=match_deactivated,
            remaining=self.remaining,
        )
