"""Request/response schemas for challenge endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


# --- Daily ---


class DailyChallengeCreateRequest(BaseModel):
    target_tasks: int
    points_bet: int


class DailyChallengeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    target_tasks: int
    points_bet: int
    multiplier: float
    start_time: datetime
    end_time: datetime
    status: str
    completed: bool
    tasks_completed: int
    payout: int
    potential_payout: int = 0
    seconds_remaining: int = 0


class DailyChallengeStatusResponse(BaseModel):
    challenge: DailyChallengeResponse | None = None
    balance: int
    max_bet: int


# --- Player ---


class PlayerChallengeCreateRequest(BaseModel):
    challenged_id: str
    points_bet: int


class PlayerChallengeRespondRequest(BaseModel):
    accept: bool


class PlayerChallengeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    challenger_id: str
    challenged_id: str
    points_bet: int
    start_time: datetime
    end_time: datetime
    status: str
    challenger_completed: bool
    challenged_completed: bool
    challenger_tasks: int
    challenged_tasks: int
    winner_id: str | None = None
    responded_at: datetime | None = None
    settled_at: datetime | None = None


class PlayerChallengeListResponse(BaseModel):
    incoming: list[PlayerChallengeResponse]
    outgoing: list[PlayerChallengeResponse]
