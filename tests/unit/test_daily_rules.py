"""Unit tests for daily challenge multiplier, payout, and stake bounds."""

from __future__ import annotations

import pytest

from taskstake.challenges.daily_service import (
    compute_multiplier,
    compute_payout,
    max_bet,
    validate_stake,
)
from taskstake.errors import InvalidStake


class TestMultiplier:
    @pytest.mark.parametrize(
        ("target", "expected"),
        [(1, 1.1), (3, 1.3), (5, 1.5), (10, 2.0)],
    )
    def test_multiplier_steps(self, target, expected):
        assert compute_multiplier(target) == expected

    def test_multiplier_has_no_float_drift(self):
        """0.1 * 3 would drift as a float; the stored value must be exactly 1.3."""
        assert compute_multiplier(3) == 1.3
        assert repr(compute_multiplier(7)) == "1.7"


class TestPayout:
    def test_whole_payout(self):
        assert compute_payout(20, 1.5) == 30

    def test_payout_rounds_half_up(self):
        # 15 * 1.5 = 22.5
        assert compute_payout(15, 1.5) == 23

    def test_payout_rounds_down_below_half(self):
        # 11 * 1.3 = 14.3
        assert compute_payout(11, 1.3) == 14

    def test_payout_at_max_target(self):
        assert compute_payout(100, 2.0) == 200


class TestMaxBet:
    def test_ten_percent_of_balance(self):
        assert max_bet(1000) == 100

    def test_floors_fraction(self):
        assert max_bet(259) == 25

    def test_minimum_bet_floor(self):
        """Small balances can still bet the minimum."""
        assert max_bet(50) == 10
        assert max_bet(0) == 10


class TestValidateStake:
    def test_valid_stake(self):
        validate_stake(target_tasks=5, points_bet=20, balance=200)  # Should not raise

    @pytest.mark.parametrize("target", [0, 11, -1])
    def test_target_out_of_range(self, target):
        with pytest.raises(InvalidStake, match="Target"):
            validate_stake(target_tasks=target, points_bet=10, balance=1000)

    def test_bet_below_minimum(self):
        with pytest.raises(InvalidStake, match="Minimum bet"):
            validate_stake(target_tasks=3, points_bet=9, balance=1000)

    def test_bet_above_maximum(self):
        with pytest.raises(InvalidStake, match="Maximum bet is 20"):
            validate_stake(target_tasks=3, points_bet=21, balance=200)

    def test_bet_at_bounds(self):
        validate_stake(target_tasks=1, points_bet=10, balance=0)
        validate_stake(target_tasks=10, points_bet=20, balance=200)
