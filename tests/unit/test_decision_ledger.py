"""
Unit tests for DecisionLedger.

All database I/O is replaced with AsyncMock objects so tests run without a
real database.
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import DuplicateDecision, InvalidDecision, TransientBackendError
from app.models.decision import DecisionKind
from app.models.notification import NotificationType
from app.services.decision_service import DecisionLedger
from tests.factories import DecisionFactory

ACTOR = uuid.uuid4()
SUBJECT = uuid.uuid4()


def _ledger(existing=None):
    repo = MagicMock()
    repo.get_for_pair = AsyncMock(return_value=existing)
    repo.insert_for_pair = AsyncMock(side_effect=_insert)
    repo.delete_for_pair = AsyncMock(return_value=True)
    repo.get_decided_subject_ids = AsyncMock(return_value=set())
    dispatcher = MagicMock()
    dispatcher.emit = AsyncMock()
    return DecisionLedger(decision_repo=repo, dispatcher=dispatcher), repo, dispatcher


async def _insert(db, actor_id, subject_id, kind, created_at):
    return DecisionFactory.build(actor_id=actor_id, subject_id=subject_id, kind=kind, created_at=created_at)


class TestRecord:
    @pytest.mark.asyncio
    async def test_like_is_recorded_and_subject_notified(self):
        ledger, repo, dispatcher = _ledger()
        db = AsyncMock()

        decision = await ledger.record(db, ACTOR, SUBJECT, "like")

        assert decision.kind == DecisionKind.LIKE
        repo.insert_for_pair.assert_awaited_once()
        dispatcher.emit.assert_awaited_once()
        args = dispatcher.emit.await_args
        assert args.args[1:4] == (SUBJECT, NotificationType.LIKE_RECEIVED, decision.id)
        assert args.kwargs["message"] is None

    @pytest.mark.asyncio
    async def test_super_like_has_its_own_message(self):
        ledger, _, dispatcher = _ledger()

        await ledger.record(AsyncMock(), ACTOR, SUBJECT, DecisionKind.SUPER_LIKE)

        assert "super like" in dispatcher.emit.await_args.kwargs["message"]

    @pytest.mark.asyncio
    async def test_pass_notifies_nobody(self):
        ledger, _, dispatcher = _ledger()

        decision = await ledger.record(AsyncMock(), ACTOR, SUBJECT, DecisionKind.PASS)

        assert decision.kind == DecisionKind.PASS
        dispatcher.emit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_existing_decision_is_duplicate(self):
        ledger, repo, dispatcher = _ledger(existing=DecisionFactory.build(actor_id=ACTOR, subject_id=SUBJECT))

        with pytest.raises(DuplicateDecision) as exc_info:
            await ledger.record(AsyncMock(), ACTOR, SUBJECT, DecisionKind.LIKE)

        assert exc_info.value.status_code == 409
        repo.insert_for_pair.assert_not_awaited()
        dispatcher.emit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_insert_loss_is_duplicate(self):
        ledger, repo, dispatcher = _ledger()
        repo.insert_for_pair.side_effect = None
        repo.insert_for_pair.return_value = None

        with pytest.raises(DuplicateDecision):
            await ledger.record(AsyncMock(), ACTOR, SUBJECT, DecisionKind.LIKE)

        repo.insert_for_pair.assert_awaited_once()
        dispatcher.emit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_self_decision_is_invalid(self):
        ledger, repo, _ = _ledger()

        with pytest.raises(InvalidDecision):
            await ledger.record(AsyncMock(), ACTOR, ACTOR, DecisionKind.LIKE)

        repo.get_for_pair.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_kind_is_invalid(self):
        ledger, _, _ = _ledger()

        with pytest.raises(InvalidDecision):
            await ledger.record(AsyncMock(), ACTOR, SUBJECT, "maybe")

    @pytest.mark.asyncio
    async def test_database_error_is_transient(self):
        ledger, repo, _ = _ledger()
        repo.insert_for_pair.side_effect = SQLAlchemyError("connection lost")

        with pytest.raises(TransientBackendError) as exc_info:
            await ledger.record(AsyncMock(), ACTOR, SUBJECT, DecisionKind.LIKE)

        assert exc_info.value.retryable is True


class TestFilterUndecided:
    @pytest.mark.asyncio
    async def test_drops_decided_self_and_repeats_keeping_order(self):
        ledger, repo, _ = _ledger()
        a, b, c = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        repo.get_decided_subject_ids.return_value = {b}

        result = await ledger.filter_undecided(AsyncMock(), ACTOR, [c, a, b, ACTOR, c])

        assert result == [c, a]


class TestRemove:
    @pytest.mark.asyncio
    async def test_remove_reports_missing_row(self):
        ledger, repo, _ = _ledger()
        repo.delete_for_pair.return_value = False

        assert await ledger.remove(AsyncMock(), ACTOR, SUBJECT) is False
