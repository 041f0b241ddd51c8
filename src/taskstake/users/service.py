"""Balance-holder provisioning for users authenticated elsewhere."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select

from taskstake.db.models import User
from taskstake.errors import NotFound
from taskstake.tasks.service import seed_starter_tasks
from taskstake.time_utils import utcnow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


async def get_user(db: AsyncSession, user_id: str) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def require_user(db: AsyncSession, user_id: str) -> User:
    """Get a user or raise NotFound."""
    user = await get_user(db, user_id)
    if user is None:
        msg = f"User {user_id} not found"
        raise NotFound(msg)
    return user


async def get_or_create_user(
    db: AsyncSession,
    user_id: str,
    display_name: str | None = None,
    *,
    seed_tasks: bool = True,
) -> tuple[User, bool]:
    """
    Get the balance row for a user, creating it at 0 points on first sight.

    New users also receive the starter tasks.

    Returns:
        Tuple of (user, created) where created is True if a new row was made.
    """
    user = await get_user(db, user_id)
    if user is not None:
        if display_name and user.display_name != display_name:
            user.display_name = display_name
            await db.flush()
        return user, False

    user = User(id=user_id, display_name=display_name, points=0, created_at=utcnow())
    db.add(user)
    await db.flush()
    if seed_tasks:
        await seed_starter_tasks(db, user_id)
    logger.info("user_provisioned", user_id=user_id, seeded=seed_tasks)
    return user, True
