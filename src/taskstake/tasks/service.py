"""Task completion gateway: the only path from task state changes to the ledger.

Completion and un-completion are guarded UPDATEs on ``tasks.completed``, so
repeating either call is a no-op and can never credit or debit twice.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import func, select, update

from taskstake.db.models import Task
from taskstake.errors import InvalidAmount, NotFound
from taskstake.events import publish_balance, publish_user_event
from taskstake.ledger.service import credit, debit, get_balance
from taskstake.time_utils import utcnow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

STARTER_TASKS: list[dict[str, Any]] = [
    {
        "title": "Complete your profile",
        "description": "Add your profile information including phone number and recovery email for account security.",
        "points": 50,
    },
    {
        "title": "Do 10 push-ups",
        "description": "Complete a set of 10 push-ups for your daily exercise.",
        "points": 30,
    },
    {
        "title": "Create your first task",
        "description": "Add a personal task to get started with task management.",
        "points": 20,
        "auto_complete_on_new_task": True,
    },
]


async def seed_starter_tasks(db: AsyncSession, user_id: str) -> list[Task]:
    """Create the starter tasks for a newly provisioned user."""
    now = utcnow()
    tasks = [
        Task(
            owner_id=user_id,
            title=starter["title"],
            description=starter["description"],
            points=starter["points"],
            auto_complete_on_new_task=starter.get("auto_complete_on_new_task", False),
            is_starter=True,
            # Distinct timestamps keep the listing in catalogue order.
            created_at=now + timedelta(microseconds=i),
        )
        for i, starter in enumerate(STARTER_TASKS)
    ]
    db.add_all(tasks)
    await db.flush()
    return tasks


async def get_task(db: AsyncSession, user_id: str, task_id: str) -> Task:
    """Get one of the user's tasks, or raise NotFound."""
    result = await db.execute(
        select(Task).where(Task.id == task_id, Task.owner_id == user_id)
    )
    task = result.scalar_one_or_none()
    if task is None:
        msg = f"Task {task_id} not found"
        raise NotFound(msg)
    return task


async def list_tasks(
    db: AsyncSession,
    user_id: str,
    completed: bool | None = None,
) -> list[Task]:
    q = select(Task).where(Task.owner_id == user_id)
    if completed is not None:
        q = q.where(Task.completed.is_(completed))
    q = q.order_by(Task.created_at.asc(), Task.id.asc())
    result = await db.execute(q)
    return list(result.scalars().all())


async def count_completed_in_window(
    db: AsyncSession,
    user_id: str,
    start: datetime,
    end: datetime,
) -> int:
    """Count the user's tasks currently completed with completed_at in [start, end]."""
    result = await db.execute(
        select(func.count(Task.id)).where(
            Task.owner_id == user_id,
            Task.completed.is_(True),
            Task.completed_at >= start,
            Task.completed_at <= end,
        )
    )
    return result.scalar_one() or 0


async def _complete(db: AsyncSession, user_id: str, task_id: str, now: datetime) -> int | None:
    """Flip a task to completed and credit its points.

    Returns the points awarded, or None when the task was not incomplete.
    """
    result = await db.execute(
        update(Task)
        .where(Task.id == task_id, Task.owner_id == user_id, Task.completed.is_(False))
        .values(completed=True, completed_at=now)
        .returning(Task.points)
    )
    points = result.scalar_one_or_none()
    if points is None:
        return None

    await credit(db, user_id, points, reason="task_completed", source_id=task_id, now=now)
    return points


async def complete_task(
    db: AsyncSession,
    redis: object | None,
    user_id: str,
    task_id: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Mark a task completed and award its points exactly once.

    Completing an already-completed task changes nothing. After a real
    completion the owner's active daily challenge is evaluated so a met
    target pays out immediately.

    Raises:
        NotFound: If the task does not exist or belongs to someone else.
    """
    from taskstake.challenges.daily_service import evaluate_user_challenge

    now = now or utcnow()
    awarded = await _complete(db, user_id, task_id, now)
    task = await get_task(db, user_id, task_id)

    daily = None
    if awarded is not None:
        daily = await evaluate_user_challenge(db, user_id, now)

    await db.commit()
    balance = await get_balance(db, user_id)

    if awarded is not None:
        logger.info("task_completed", user_id=user_id, task_id=task_id, points=awarded)
        await publish_user_event(redis, user_id, "task_completed", {"task_id": task_id, "points": awarded})
        await publish_balance(redis, user_id, balance)

    return {
        "task": task,
        "changed": awarded is not None,
        "points_awarded": awarded or 0,
        "balance": balance,
        "daily_challenge": daily,
    }


async def uncomplete_task(
    db: AsyncSession,
    redis: object | None,
    user_id: str,
    task_id: str,
) -> dict[str, Any]:
    """Mark a task incomplete and try to take its points back.

    The completion flag always flips. If the points were already spent the
    debit is skipped and logged; the task state never waits on the ledger.

    Raises:
        NotFound: If the task does not exist or belongs to someone else.
    """
    result = await db.execute(
        update(Task)
        .where(Task.id == task_id, Task.owner_id == user_id, Task.completed.is_(True))
        .values(completed=False, completed_at=None)
        .returning(Task.points)
    )
    points = result.scalar_one_or_none()
    task = await get_task(db, user_id, task_id)

    reclaimed = False
    if points is not None:
        reclaimed = await debit(db, user_id, points, reason="task_uncompleted", source_id=task_id)
        if not reclaimed:
            logger.warning("points_reversal_skipped", user_id=user_id, task_id=task_id, points=points)

    await db.commit()
    balance = await get_balance(db, user_id)

    if points is not None:
        await publish_user_event(redis, user_id, "task_uncompleted", {"task_id": task_id, "points": points})
        if reclaimed:
            await publish_balance(redis, user_id, balance)

    return {
        "task": task,
        "changed": points is not None,
        "points_reclaimed": points if reclaimed else 0,
        "balance": balance,
    }


async def create_task(
    db: AsyncSession,
    redis: object | None,
    user_id: str,
    title: str,
    points: int,
    description: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Create a task; the first one also completes the "create your first task" starter.

    Raises:
        InvalidAmount: If points is not positive.
    """
    from taskstake.challenges.daily_service import evaluate_user_challenge

    if points <= 0:
        msg = "Task points must be positive"
        raise InvalidAmount(msg)

    now = now or utcnow()
    task = Task(owner_id=user_id, title=title, description=description, points=points, created_at=now)
    db.add(task)
    await db.flush()

    result = await db.execute(
        select(Task.id).where(
            Task.owner_id == user_id,
            Task.auto_complete_on_new_task.is_(True),
            Task.completed.is_(False),
            Task.id != task.id,
        ).limit(1)
    )
    auto_id = result.scalar_one_or_none()
    auto_awarded = None
    if auto_id is not None:
        auto_awarded = await _complete(db, user_id, auto_id, now)
        if auto_awarded is not None:
            await evaluate_user_challenge(db, user_id, now)

    await db.commit()
    logger.info("task_created", user_id=user_id, task_id=task.id, auto_completed=auto_id if auto_awarded else None)

    await publish_user_event(redis, user_id, "task_created", {"task_id": task.id})
    if auto_awarded is not None:
        await publish_user_event(redis, user_id, "task_completed", {"task_id": auto_id, "points": auto_awarded})
        await publish_balance(redis, user_id, await get_balance(db, user_id))

    return {
        "task": task,
        "auto_completed_task_id": auto_id if auto_awarded is not None else None,
    }
