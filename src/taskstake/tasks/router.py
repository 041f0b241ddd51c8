"""Task completion endpoints: the HTTP face of the completion gateway."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from taskstake.auth.dependencies import get_current_user
from taskstake.challenges.router import daily_response
from taskstake.database import get_session
from taskstake.db.models import User
from taskstake.redis_client import get_optional_redis
from taskstake.tasks.schemas import (
    TaskCompleteResponse,
    TaskCreateRequest,
    TaskCreateResponse,
    TaskListResponse,
    TaskResponse,
    TaskUncompleteResponse,
)
from taskstake.tasks.service import complete_task, create_task, list_tasks, uncomplete_task

router = APIRouter(prefix="/api/v1/tasks", tags=["Tasks"])


@router.get("", response_model=TaskListResponse)
async def get_tasks(
    completed: bool | None = Query(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    tasks = await list_tasks(db, user.id, completed=completed)
    return TaskListResponse(tasks=[TaskResponse.model_validate(t) for t in tasks])


@router.post("", response_model=TaskCreateResponse, status_code=201)
async def post_task(
    body: TaskCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    """Create a task. The first one also completes the "create your first task" starter."""
    result = await create_task(db, redis, user.id, body.title, body.points, body.description)
    return TaskCreateResponse(
        task=TaskResponse.model_validate(result["task"]),
        auto_completed_task_id=result["auto_completed_task_id"],
    )


@router.post("/{task_id}/complete", response_model=TaskCompleteResponse)
async def post_complete(
    task_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    """Complete a task and award its points. Repeating the call changes nothing."""
    result = await complete_task(db, redis, user.id, task_id)
    daily = result["daily_challenge"]
    return TaskCompleteResponse(
        task=TaskResponse.model_validate(result["task"]),
        changed=result["changed"],
        points_awarded=result["points_awarded"],
        balance=result["balance"],
        daily_challenge=daily_response(daily) if daily is not None else None,
    )


@router.post("/{task_id}/uncomplete", response_model=TaskUncompleteResponse)
async def post_uncomplete(
    task_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    """Un-complete a task; points are reclaimed only if the balance still covers them."""
    result = await uncomplete_task(db, redis, user.id, task_id)
    return TaskUncompleteResponse(
        task=TaskResponse.model_validate(result["task"]),
        changed=result["changed"],
        points_reclaimed=result["points_reclaimed"],
        balance=result["balance"],
    )
