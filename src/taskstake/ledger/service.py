"""Points ledger: atomic credit/debit against ``users.points``.

Every balance change is a single conditional UPDATE ... RETURNING, so two
concurrent debits can never both see a stale "sufficient funds" balance.
Successful changes append a ``points_ledger`` row in the same transaction.

These functions flush but never commit; the calling operation owns the
transaction so multi-step actions (stake + state transition) stay atomic.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import case, func, select, update

from taskstake.db.models import PointsLedger, User
from taskstake.errors import InsufficientFunds, InvalidAmount, NotFound
from taskstake.time_utils import utcnow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        msg = f"Amount must be a positive integer, got {amount!r}"
        raise InvalidAmount(msg)


async def _idempotency_key_used(db: AsyncSession, idempotency_key: str | None) -> bool:
    if idempotency_key is None:
        return False
    existing = await db.execute(
        select(PointsLedger.id).where(PointsLedger.idempotency_key == idempotency_key)
    )
    return existing.scalar_one_or_none() is not None


async def get_balance(db: AsyncSession, user_id: str) -> int:
    """Read the committed balance straight from the row (no identity-map cache)."""
    result = await db.execute(select(User.points).where(User.id == user_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        msg = f"User {user_id} not found"
        raise NotFound(msg)
    return balance


async def credit(
    db: AsyncSession,
    user_id: str,
    amount: int,
    reason: str,
    source_id: str | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
    now: datetime | None = None,
) -> bool:
    """Add ``amount`` points. Returns False only for an already-used idempotency key.

    Raises:
        InvalidAmount: If amount is not a positive integer.
        NotFound: If the user has no balance row.
    """
    _check_amount(amount)
    if await _idempotency_key_used(db, idempotency_key):
        logger.info("points_credit_duplicate", user_id=user_id, idempotency_key=idempotency_key)
        return False

    result = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(points=User.points + amount)
        .returning(User.points)
    )
    balance = result.scalar_one_or_none()
    if balance is None:
        msg = f"User {user_id} not found"
        raise NotFound(msg)

    db.add(PointsLedger(
        user_id=user_id,
        amount=amount,
        reason=reason,
        source_id=source_id,
        description=description,
        balance_after=balance,
        idempotency_key=idempotency_key,
        created_at=now or utcnow(),
    ))
    await db.flush()
    logger.info("points_credited", user_id=user_id, amount=amount, reason=reason, balance=balance)
    return True


async def debit(
    db: AsyncSession,
    user_id: str,
    amount: int,
    reason: str,
    source_id: str | None = None,
    description: str | None = None,
    now: datetime | None = None,
) -> bool:
    """Subtract ``amount`` points if the balance covers it.

    Returns True on success. On False the balance is untouched and no ledger
    row is written; callers must treat that as "operation not performed".

    Raises:
        InvalidAmount: If amount is not a positive integer.
    """
    _check_amount(amount)
    result = await db.execute(
        update(User)
        .where(User.id == user_id, User.points >= amount)
        .values(points=User.points - amount)
        .returning(User.points)
    )
    balance = result.scalar_one_or_none()
    if balance is None:
        logger.info("points_debit_rejected", user_id=user_id, amount=amount, reason=reason)
        return False

    db.add(PointsLedger(
        user_id=user_id,
        amount=-amount,
        reason=reason,
        source_id=source_id,
        description=description,
        balance_after=balance,
        created_at=now or utcnow(),
    ))
    await db.flush()
    logger.info("points_debited", user_id=user_id, amount=amount, reason=reason, balance=balance)
    return True


async def require_debit(
    db: AsyncSession,
    user_id: str,
    amount: int,
    reason: str,
    source_id: str | None = None,
    description: str | None = None,
    now: datetime | None = None,
) -> None:
    """Debit or raise InsufficientFunds. Used by every spend path."""
    if not await debit(db, user_id, amount, reason, source_id, description, now):
        raise InsufficientFunds(user_id, amount)


async def get_history(
    db: AsyncSession,
    user_id: str,
    page: int = 1,
    per_page: int = 50,
) -> tuple[list[PointsLedger], int]:
    """Return (entries newest first, total entry count) for a user."""
    total_result = await db.execute(
        select(func.count(PointsLedger.id)).where(PointsLedger.user_id == user_id)
    )
    total = total_result.scalar_one()

    result = await db.execute(
        select(PointsLedger)
        .where(PointsLedger.user_id == user_id)
        .order_by(PointsLedger.created_at.desc(), PointsLedger.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


async def audit_balance(db: AsyncSession, user_id: str) -> dict:
    """Compare the stored balance with the ledger totals for a user."""
    result = await db.execute(
        select(
            func.coalesce(func.sum(case((PointsLedger.amount > 0, PointsLedger.amount), else_=0)), 0),
            func.coalesce(func.sum(case((PointsLedger.amount < 0, -PointsLedger.amount), else_=0)), 0),
        ).where(PointsLedger.user_id == user_id)
    )
    credits, debits = result.one()
    balance = await get_balance(db, user_id)
    return {
        "user_id": user_id,
        "balance": balance,
        "total_credits": int(credits),
        "total_debits": int(debits),
        "consistent": int(credits) - int(debits) == balance,
    }


async def get_leaderboard(db: AsyncSession, limit: int = 50) -> list[User]:
    """Users ordered by balance, highest first. Ties keep the earliest account first."""
    result = await db.execute(
        select(User).order_by(User.points.desc(), User.created_at.asc(), User.id.asc()).limit(limit)
    )
    return list(result.scalars().all())
