"""Tests for the challenge settlement arq worker."""

from __future__ import annotations

from datetime import timedelta

import pytest

from taskstake.challenges import daily_service, player_service
from taskstake.ledger.service import get_balance
from taskstake.time_utils import utcnow
from taskstake.workers.settings import WorkerSettings, sweep_minutes
from taskstake.workers.settlement import sweep_challenges


class TestWorkerSettings:
    def test_sweep_registered(self):
        assert sweep_challenges in WorkerSettings.functions
        assert len(WorkerSettings.cron_jobs) == 1

    def test_sweep_minutes(self):
        assert sweep_minutes(5) == {0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}
        assert sweep_minutes(15) == {0, 15, 30, 45}

    def test_sweep_minutes_clamped(self):
        assert sweep_minutes(0) == set(range(60))
        assert sweep_minutes(90) == {0}


@pytest.mark.asyncio
class TestSweepTask:
    async def test_sweep_settles_overdue_challenges(self, db_session, make_user):
        await make_user("alice", 200)
        await make_user("bob", 200)
        started = utcnow() - timedelta(hours=30)
        await daily_service.create_challenge(db_session, None, "alice", 3, 10, now=started)
        await player_service.create_challenge(db_session, None, "alice", "bob", 25, now=started)

        results = await sweep_challenges({"redis": None})

        assert results["daily"] == {"checked": 1, "won": 0, "lost": 1}
        assert results["player"] == {"checked": 1, "settled": 0, "expired": 1}
        # daily stake lost, player stake refunded
        assert await get_balance(db_session, "alice") == 190

    async def test_sweep_with_nothing_due(self, db_session, make_user):
        await make_user("alice", 200)
        results = await sweep_challenges({})
        assert results == {
            "daily": {"checked": 0, "won": 0, "lost": 0},
            "player": {"checked": 0, "settled": 0, "expired": 0},
        }
