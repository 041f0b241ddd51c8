"""Typed failures raised by the points economy services.

Routers let these propagate; ``taskstake.middleware.error_handler`` maps each
one to an HTTP status and a stable ``error`` code.
"""

from __future__ import annotations


class PointsError(Exception):
    """Base class for every expected failure of a points operation."""

    code = "points_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InsufficientFunds(PointsError):
    """A debit asked for more than the balance. Nothing was changed."""

    code = "insufficient_funds"
    status_code = 402

    def __init__(self, user_id: str, amount: int) -> None:
        super().__init__(f"Insufficient points: {amount} required")
        self.user_id = user_id
        self.amount = amount


class InvalidAmount(PointsError):
    code = "invalid_amount"
    status_code = 422


class InvalidStake(PointsError):
    code = "invalid_stake"
    status_code = 422


class NotFound(PointsError):
    code = "not_found"
    status_code = 404


class InvalidStateTransition(PointsError):
    code = "invalid_state_transition"
    status_code = 409


class ChallengeAlreadyActive(InvalidStateTransition):
    code = "challenge_already_active"


class SelfTargeting(PointsError):
    code = "self_targeting"
    status_code = 400
