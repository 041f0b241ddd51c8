"""Service tests for the points ledger: atomic debits, idempotent credits, audit."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from taskstake.database import get_session_factory
from taskstake.db.models import PointsLedger, User
from taskstake.errors import InsufficientFunds, InvalidAmount, NotFound
from taskstake.ledger.service import (
    audit_balance,
    credit,
    debit,
    get_balance,
    get_history,
    get_leaderboard,
    require_debit,
)


async def _ledger_count(db: AsyncSession, user_id: str) -> int:
    result = await db.execute(select(func.count(PointsLedger.id)).where(PointsLedger.user_id == user_id))
    return result.scalar_one()


@pytest.mark.asyncio
class TestCredit:
    async def test_credit_adds_points_and_ledger_row(self, db_session, make_user):
        await make_user("alice")
        assert await credit(db_session, "alice", 50, reason="task_completed", source_id="t1") is True
        await db_session.commit()

        assert await get_balance(db_session, "alice") == 50
        entries, total = await get_history(db_session, "alice")
        assert total == 1
        assert entries[0].amount == 50
        assert entries[0].balance_after == 50
        assert entries[0].reason == "task_completed"

    async def test_duplicate_idempotency_key_credits_once(self, db_session, make_user):
        await make_user("alice")
        key = "daily_challenge:abc:payout"
        assert await credit(db_session, "alice", 30, reason="daily_challenge_payout", idempotency_key=key)
        assert not await credit(db_session, "alice", 30, reason="daily_challenge_payout", idempotency_key=key)
        await db_session.commit()

        assert await get_balance(db_session, "alice") == 30
        assert await _ledger_count(db_session, "alice") == 1

    async def test_idempotency_key_is_unique_in_storage(self, db_session, make_user, t0):
        await make_user("alice")
        db_session.add_all([
            PointsLedger(user_id="alice", amount=1, reason="x", balance_after=1, idempotency_key="k", created_at=t0),
            PointsLedger(user_id="alice", amount=1, reason="x", balance_after=2, idempotency_key="k", created_at=t0),
        ])
        with pytest.raises(IntegrityError):
            await db_session.flush()
        await db_session.rollback()

    async def test_credit_unknown_user(self, db_session, database):
        with pytest.raises(NotFound):
            await credit(db_session, "ghost", 10, reason="grant")

    @pytest.mark.parametrize("amount", [0, -5, True, 2.5])
    async def test_invalid_amounts_rejected(self, db_session, make_user, amount):
        await make_user("alice", 100)
        with pytest.raises(InvalidAmount):
            await credit(db_session, "alice", amount, reason="grant")
        with pytest.raises(InvalidAmount):
            await debit(db_session, "alice", amount, reason="spend")
        assert await get_balance(db_session, "alice") == 100


@pytest.mark.asyncio
class TestDebit:
    async def test_debit_within_balance(self, db_session, make_user):
        await make_user("alice", 100)
        assert await debit(db_session, "alice", 40, reason="reward_purchase") is True
        await db_session.commit()
        assert await get_balance(db_session, "alice") == 60

    async def test_debit_exact_balance_reaches_zero(self, db_session, make_user):
        await make_user("alice", 75)
        assert await debit(db_session, "alice", 75, reason="reward_purchase")
        await db_session.commit()
        assert await get_balance(db_session, "alice") == 0

    async def test_debit_over_balance_changes_nothing(self, db_session, make_user):
        await make_user("alice", 30)
        before = await _ledger_count(db_session, "alice")

        assert await debit(db_session, "alice", 31, reason="reward_purchase") is False
        await db_session.commit()

        assert await get_balance(db_session, "alice") == 30
        assert await _ledger_count(db_session, "alice") == before

    async def test_require_debit_raises(self, db_session, make_user):
        await make_user("alice", 10)
        with pytest.raises(InsufficientFunds) as exc_info:
            await require_debit(db_session, "alice", 11, reason="reward_purchase")
        assert exc_info.value.amount == 11
        assert exc_info.value.status_code == 402

    async def test_balance_never_negative_in_storage(self, db_session, make_user):
        """The CHECK constraint backs up the conditional UPDATE."""
        await make_user("alice", 5)
        user = await db_session.get(User, "alice")
        user.points = -1
        with pytest.raises(IntegrityError):
            await db_session.flush()
        await db_session.rollback()

    async def test_concurrent_debits_cannot_overdraw(self, db_session, make_user):
        """Two sessions racing to spend 60 of 100 points: exactly one wins."""
        await make_user("alice", 100)
        factory = get_session_factory()

        async def spend() -> bool:
            async with factory() as session:
                ok = await debit(session, "alice", 60, reason="reward_purchase")
                await session.commit()
                return ok

        results = await asyncio.gather(spend(), spend())

        assert sorted(results) == [False, True]
        assert await get_balance(db_session, "alice") == 40


@pytest.mark.asyncio
class TestAuditAndHistory:
    async def test_balance_equals_credits_minus_debits(self, db_session, make_user):
        await make_user("alice", 200)
        await credit(db_session, "alice", 50, reason="task_completed")
        await debit(db_session, "alice", 120, reason="reward_purchase")
        await debit(db_session, "alice", 500, reason="reward_purchase")  # rejected
        await credit(db_session, "alice", 30, reason="daily_challenge_payout")
        await db_session.commit()

        audit = await audit_balance(db_session, "alice")
        assert audit == {
            "user_id": "alice",
            "balance": 160,
            "total_credits": 280,
            "total_debits": 120,
            "consistent": True,
        }

    async def test_history_newest_first_and_paginated(self, db_session, make_user):
        await make_user("alice")
        for amount in (1, 2, 3, 4, 5):
            await credit(db_session, "alice", amount, reason="task_completed")
        await db_session.commit()

        page1, total = await get_history(db_session, "alice", page=1, per_page=2)
        page3, _ = await get_history(db_session, "alice", page=3, per_page=2)

        assert total == 5
        assert [e.amount for e in page1] == [5, 4]
        assert [e.amount for e in page3] == [1]

    async def test_leaderboard_orders_by_points(self, db_session, make_user):
        await make_user("alice", 50)
        await make_user("bob", 300)
        await make_user("carol", 120)

        board = await get_leaderboard(db_session, limit=2)
        assert [u.id for u in board] == ["bob", "carol"]
