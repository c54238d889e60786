"""
Unit tests for the pair lock of MatchRepository.
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from app.repositories.match_repository import MatchRepository, pair_lock_key

ALICE = uuid.uuid4()
BOB = uuid.uuid4()


def _db(dialect: str) -> MagicMock:
    db = MagicMock()
    db.get_bind.return_value.dialect.name = dialect
    db.execute = AsyncMock()
    return db


class TestPairLockKey:
    def test_key_ignores_order(self):
        assert pair_lock_key(ALICE, BOB) == pair_lock_key(BOB, ALICE)

    def test_key_fits_bigint(self):
        key = pair_lock_key(ALICE, BOB)

        assert -(2 ** 63) <= key < 2 ** 63

    def test_other_pair_gets_other_key(self):
        assert pair_lock_key(ALICE, BOB) != pair_lock_key(ALICE, uuid.uuid4())


class TestLockPair:
    @pytest.mark.asyncio
    async def test_postgres_takes_transaction_advisory_lock(self):
        db = _db("postgresql")

        await MatchRepository().lock_pair(db, BOB, ALICE)

        db.execute.assert_awaited_once()
        stmt = db.execute.await_args.args[0]
        compiled = stmt.compile(dialect=postgresql.dialect(), compile_kwargs={"literal_binds": True})
        assert "pg_advisory_xact_lock" in str(compiled)
        assert str(pair_lock_key(ALICE, BOB)) in str(compiled)

    @pytest.mark.asyncio
    async def test_sqlite_issues_nothing(self):
        db = _db("sqlite")

        await MatchRepository().lock_pair(db, ALICE, BOB)

        db.execute.assert_not_awaited()
