"""Request/response schemas for task endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from taskstake.challenges.schemas import DailyChallengeResponse


class TaskCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(None, max_length=2000)
    points: int = Field(..., gt=0)


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str | None = None
    points: int
    completed: bool
    completed_at: datetime | None = None
    created_at: datetime
    is_starter: bool = False
    auto_complete_on_new_task: bool = False


class TaskListResponse(BaseModel):
    tasks: list[TaskResponse]


class TaskCreateResponse(BaseModel):
    task: TaskResponse
    auto_completed_task_id: str | None = None


class TaskCompleteResponse(BaseModel):
    task: TaskResponse
    changed: bool
    points_awarded: int
    balance: int
    daily_challenge: DailyChallengeResponse | None = None


class TaskUncompleteResponse(BaseModel):
    task: TaskResponse
    changed: bool
    points_reclaimed: int
    balance: int
