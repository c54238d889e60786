"""
Unit tests for RewindController and CandidateQueue.

The ledger and the match detector are replaced with mocks so the tests only
exercise the stack, the budget and the failure handling.
"""

from __future__ import annotations

import asyncio
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.core.change_feed import ChangeFeed
from app.core.exceptions import NoRewindAvailable, TransientBackendError
from app.models.decision import DecisionKind
from app.models.match import DeactivationReason
from app.services.rewind_service import CandidateQueue, RewindController
from tests.factories import DecisionFactory

USER_ID = uuid.uuid4()


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------
def _decision(subject_id: uuid.UUID | None = None, kind: DecisionKind = DecisionKind.LIKE):
    return DecisionFactory.build(actor_id=USER_ID, subject_id=subject_id or uuid.uuid4(), kind=kind)


def _db() -> AsyncMock:
    db = AsyncMock()
    db.info = {}
    return db


def _controller(budget: int | None = 3, candidates: CandidateQueue | None = None):
    ledger = MagicMock()
    ledger.remove = AsyncMock(return_value=True)
    detector = MagicMock()
    detector.deactivate = AsyncMock()
    detector.get_active_for_pair = AsyncMock(return_value=None)
    detector.channel.feed = ChangeFeed()
    controller = RewindController(
        USER_ID, budget=budget, ledger=ledger, detector=detector, candidates=candidates
    )
    return controller, ledger, detector


# ---------------------------------------------------------------------------
# Budget and stack
# ---------------------------------------------------------------------------
class TestRewindBudget:
    @pytest.mark.asyncio
    async def test_fourth_rewind_fails_with_budget_of_three(self):
        controller, ledger, _ = _controller(budget=3)
        decisions = [_decision() for _ in range(4)]
        for decision in decisions:
            controller.push(decision)

        db = _db()
        results = [await controller.rewind(db) for _ in range(3)]

        # Newest first; the oldest entry fell off when the fourth was pushed
        assert [r.decision.id for r in results] == [d.id for d in reversed(decisions[1:])]
        assert [r.remaining for r in results] == [2, 1, 0]

        controller.push(_decision())
        with pytest.raises(NoRewindAvailable):
            await controller.rewind(db)
        assert ledger.remove.await_count == 3

    @pytest.mark.asyncio
    async def test_empty_stack_raises(self):
        controller, ledger, _ = _controller()

        with pytest.raises(NoRewindAvailable) as exc_info:
            await controller.rewind(_db())

        assert "Nothing to rewind" in exc_info.value.message
        ledger.remove.assert_not_awaited()
        assert controller.used == 0

    def test_stack_never_exceeds_remaining_budget(self):
        controller, _, _ = _controller(budget=2)
        decisions = [_decision() for _ in range(5)]
        for decision in decisions:
            controller.push(decision)

        assert controller.depth == 2
        assert controller.peek().decision.id == decisions[-1].id

    @pytest.mark.asyncio
    async def test_stack_shrinks_as_budget_is_spent(self):
        controller, _, _ = _controller(budget=3)
        first, second, third = _decision(), _decision(), _decision()
        for decision in (first, second, third):
            controller.push(decision)

        await controller.rewind(_db())
        newest = _decision()
        controller.push(newest)

        assert controller.remaining == 2
        assert controller.depth == 2
        assert controller.peek().decision.id == newest.id

    @pytest.mark.asyncio
    async def test_premium_budget_is_unlimited(self):
        controller, _, _ = _controller(budget=None)
        for _ in range(20):
            controller.push(_decision())

        db = _db()
        for _ in range(20):
            result = await controller.rewind(db)
            assert result.remaining is None

        assert controller.depth == 0
        assert controller.used == 20
        assert controller.can_rewind is False


# ---------------------------------------------------------------------------
# Effects of a rewind
# ---------------------------------------------------------------------------
class TestRewindEffects:
    @pytest.mark.asyncio
    async def test_rewind_removes_decision_and_commits(self):
        controller, ledger, detector = _controller()
        decision = _decision()
        controller.push(decision)
        db = _db()

        result = await controller.rewind(db)

        ledger.remove.assert_awaited_once_with(db, USER_ID, decision.subject_id)
        detector.deactivate.assert_not_awaited()
        db.commit.assert_awaited_once()
        assert result.match_deactivated is False
        assert result.restored_subject_id == decision.subject_id

    @pytest.mark.asyncio
    async def test_rewind_deactivates_the_match_it_formed(self):
        controller, _, detector = _controller()
        match = MagicMock()
        match.id = uuid.uuid4()
        detector.deactivate.return_value = match
        controller.push(_decision(), match)
        db = _db()

        result = await controller.rewind(db)

        detector.deactivate.assert_awaited_once_with(db, match.id, DeactivationReason.REWIND)
        assert result.match_deactivated is True
        assert result.match_id == match.id

    @pytest.mark.asyncio
    async def test_rewinding_a_like_ends_match_the_other_side_formed(self):
        controller, _, detector = _controller()
        match = MagicMock()
        match.id = uuid.uuid4()
        detector.get_active_for_pair.return_value = match
        detector.deactivate.return_value = match
        decision = _decision()
        # Pushed without a match: the other user's later like formed it
        controller.push(decision)
        db = _db()

        result = await controller.rewind(db)

        detector.get_active_for_pair.assert_awaited_once_with(db, USER_ID, decision.subject_id)
        detector.deactivate.assert_awaited_once_with(db, match.id, DeactivationReason.REWIND)
        assert result.match_id == match.id
        assert result.match_deactivated is True

    @pytest.mark.asyncio
    async def test_rewinding_a_pass_never_looks_for_a_match(self):
        controller, _, detector = _controller()
        controller.push(_decision(kind=DecisionKind.PASS))

        result = await controller.rewind(_db())

        detector.get_active_for_pair.assert_not_awaited()
        detector.deactivate.assert_not_awaited()
        assert result.match_id is None

    @pytest.mark.asyncio
    async def test_subject_goes_back_to_front_of_queue(self):
        queued = [uuid.uuid4(), uuid.uuid4()]
        candidates = CandidateQueue(queued)
        controller, _, _ = _controller(candidates=candidates)
        decision = _decision()
        controller.push(decision)

        await controller.rewind(_db())

        assert candidates.snapshot() == [decision.subject_id, *queued]


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------
class TestRewindFailure:
    @pytest.mark.asyncio
    async def test_backend_failure_keeps_entry_and_budget(self):
        controller, ledger, _ = _controller(budget=3)
        decision = _decision()
        controller.push(decision)
        ledger.remove.side_effect = TransientBackendError()
        db = _db()

        with pytest.raises(TransientBackendError):
            await controller.rewind(db)

        assert controller.depth == 1
        assert controller.peek().decision.id == decision.id
        assert controller.used == 0
        assert controller.remaining == 3
        db.rollback.assert_awaited_once()
        db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_commit_failure_is_wrapped_and_retryable(self):
        controller, _, _ = _controller(budget=3)
        controller.push(_decision())
        db = _db()
        db.commit.side_effect = SQLAlchemyError("connection reset")

        with pytest.raises(TransientBackendError) as exc_info:
            await controller.rewind(db)

        assert exc_info.value.retryable is True
        assert controller.depth == 1
        assert controller.used == 0

        db.commit.side_effect = None
        result = await controller.rewind(db)
        assert result.remaining == 2


# ---------------------------------------------------------------------------
# Swipes and rewinds interleaving
# ---------------------------------------------------------------------------
class TestRewindInterleaving:
    @pytest.mark.asyncio
    async def test_failed_rewind_keeps_swipe_pushed_meanwhile_on_top(self):
        controller, ledger, _ = _controller(budget=3)
        older, newer = _decision(), _decision()
        controller.push(older)
        started, release = asyncio.Event(), asyncio.Event()

        async def _slow_failing_remove(db, actor_id, subject_id):
            started.set()
            await release.wait()
            raise SQLAlchemyError("connection reset")

        ledger.remove.side_effect = _slow_failing_remove
        pending = asyncio.create_task(controller.rewind(_db()))
        await started.wait()
        controller.push(newer)
        release.set()

        with pytest.raises(TransientBackendError):
            await pending

        assert controller.peek().decision.id == newer.id
        assert controller.depth == 2
        assert controller.used == 0

        ledger.remove.side_effect = None
        result = await controller.rewind(_db())
        assert result.decision.id == newer.id
        assert controller.peek().decision.id == older.id

    @pytest.mark.asyncio
    async def test_successful_rewind_removes_only_its_own_entry(self):
        controller, ledger, _ = _controller(budget=None)
        older, newer = _decision(), _decision()
        controller.push(older)
        started, release = asyncio.Event(), asyncio.Event()

        async def _slow_remove(db, actor_id, subject_id):
            started.set()
            await release.wait()
            return True

        ledger.remove.side_effect = _slow_remove
        pending = asyncio.create_task(controller.rewind(_db()))
        await started.wait()
        controller.push(newer)
        release.set()

        result = await pending

        assert result.decision.id == older.id
        assert controller.depth == 1
        assert controller.peek().decision.id == newer.id

    @pytest.mark.asyncio
    async def test_second_rewind_while_one_is_running_is_refused(self):
        controller, ledger, _ = _controller(budget=3)
        controller.push(_decision())
        controller.push(_decision())
        started, release = asyncio.Event(), asyncio.Event()

        async def _slow_remove(db, actor_id, subject_id):
            started.set()
            await release.wait()
            return True

        ledger.remove.side_effect = _slow_remove
        pending = asyncio.create_task(controller.rewind(_db()))
        await started.wait()

        with pytest.raises(NoRewindAvailable) as exc_info:
            await controller.rewind(_db())

        release.set()
        await pending
        assert "already in progress" in exc_info.value.message
        assert controller.used == 1
        assert ledger.remove.await_count == 1


# ---------------------------------------------------------------------------
# CandidateQueue
# ---------------------------------------------------------------------------
class TestCandidateQueue:
    def test_extend_skips_already_queued(self):
        a, b, c = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        queue = CandidateQueue([a, b])

        added = queue.extend([b, c])

        assert added == 1
        assert queue.snapshot() == [a, b, c]

    def test_advance_removes_wherever_it_is(self):
        a, b, c = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        queue = CandidateQueue([a, b, c])

        queue.advance(b)
        queue.advance(uuid.uuid4())

        assert queue.snapshot() == [a, c]
        assert b not in queue

    def test_restore_front_does_not_duplicate(self):
        a, b = uuid.uuid4(), uuid.uuid4()
        queue = CandidateQueue([a, b])

        queue.restore_front(b)

        assert queue.peek() == b
        assert len(queue) == 2
