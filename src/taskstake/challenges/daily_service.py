"""Daily challenge engine: a self-wager on completing N tasks within 24 hours.

Progress is always recounted from task data. Settlement is a guarded
``active -> won|lost`` UPDATE, so lazy evaluation on read, evaluation after
a task completion, and the periodic sweep all converge on one payout.
"""

from __future__ import annotations

import math
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.attributes import set_committed_value

from taskstake.config import get_settings
from taskstake.db.models import DailyChallenge
from taskstake.errors import ChallengeAlreadyActive, InvalidStake
from taskstake.events import publish_balance, publish_user_event
from taskstake.ledger.service import credit, get_balance, require_debit
from taskstake.tasks.service import count_completed_in_window
from taskstake.time_utils import as_utc, challenge_window, has_ended, seconds_remaining, utcnow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

MULTIPLIER_STEP = Decimal("0.1")


def compute_multiplier(target_tasks: int) -> float:
    """1 + 0.1 per target task, e.g. 5 tasks -> 1.5x."""
    return float(Decimal(1) + MULTIPLIER_STEP * target_tasks)


def compute_payout(points_bet: int, multiplier: float) -> int:
    """Stake times multiplier, rounded half up."""
    amount = Decimal(points_bet) * Decimal(str(multiplier))
    return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def max_bet(balance: int) -> int:
    """The larger of 10% of the balance (floored) and the minimum bet."""
    settings = get_settings()
    fraction = Decimal(str(settings.daily_max_bet_fraction))
    return max(math.floor(Decimal(balance) * fraction), settings.daily_min_bet)


def validate_stake(target_tasks: int, points_bet: int, balance: int) -> None:
    """Raise InvalidStake if the target or bet is outside the allowed bounds."""
    settings = get_settings()
    if not settings.daily_min_target <= target_tasks <= settings.daily_max_target:
        msg = f"Target must be between {settings.daily_min_target} and {settings.daily_max_target} tasks"
        raise InvalidStake(msg)
    if points_bet < settings.daily_min_bet:
        msg = f"Minimum bet is {settings.daily_min_bet} points"
        raise InvalidStake(msg)
    limit = max_bet(balance)
    if points_bet > limit:
        msg = f"Maximum bet is {limit} points"
        raise InvalidStake(msg)


async def get_active_challenge(db: AsyncSession, user_id: str) -> DailyChallenge | None:
    result = await db.execute(
        select(DailyChallenge).where(
            DailyChallenge.user_id == user_id,
            DailyChallenge.status == "active",
        )
    )
    return result.scalar_one_or_none()


async def get_latest_challenge(db: AsyncSession, user_id: str) -> DailyChallenge | None:
    result = await db.execute(
        select(DailyChallenge)
        .where(DailyChallenge.user_id == user_id)
        .order_by(DailyChallenge.start_time.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def settle_challenge(
    db: AsyncSession,
    challenge: DailyChallenge,
    now: datetime,
) -> bool:
    """Evaluate one challenge and settle it if its outcome is decided.

    Won when the qualifying completion count reaches the target (the count
    only includes completions inside the window, so a late evaluation still
    sees a win that happened in time). Lost once the window has ended without
    that. The stake was debited at creation, so a loss needs no ledger action.

    Flushes only. Returns True if this call performed the settlement.
    """
    if challenge.status != "active":
        return False

    count = await count_completed_in_window(
        db, challenge.user_id, as_utc(challenge.start_time), as_utc(challenge.end_time)
    )
    if count >= challenge.target_tasks:
        outcome = "won"
        payout = compute_payout(challenge.points_bet, challenge.multiplier)
    elif has_ended(challenge.end_time, now):
        outcome = "lost"
        payout = 0
    else:
        # Progress only. A settlement that got there first keeps its final count.
        await db.execute(
            update(DailyChallenge)
            .where(DailyChallenge.id == challenge.id, DailyChallenge.status == "active")
            .values(tasks_completed=count)
            .execution_options(synchronize_session=False)
        )
        set_committed_value(challenge, "tasks_completed", count)
        return False

    result = await db.execute(
        update(DailyChallenge)
        .where(DailyChallenge.id == challenge.id, DailyChallenge.status == "active")
        .values(
            status=outcome,
            completed=outcome == "won",
            tasks_completed=count,
            payout=payout,
            settled_at=now,
        )
        .returning(DailyChallenge.id)
    )
    if result.scalar_one_or_none() is None:
        # Settled concurrently by another evaluation.
        await db.refresh(challenge)
        return False

    if payout:
        await credit(
            db,
            challenge.user_id,
            payout,
            reason="daily_challenge_payout",
            source_id=challenge.id,
            description=f"Daily challenge won ({challenge.target_tasks} tasks, {challenge.multiplier:.1f}x)",
            idempotency_key=f"daily_challenge:{challenge.id}:payout",
            now=now,
        )

    logger.info(
        "daily_challenge_settled",
        challenge_id=challenge.id,
        user_id=challenge.user_id,
        outcome=outcome,
        tasks_completed=count,
        payout=payout,
    )
    return True


async def evaluate_user_challenge(
    db: AsyncSession,
    user_id: str,
    now: datetime | None = None,
) -> DailyChallenge | None:
    """Evaluate the user's active challenge, if any. Flushes only."""
    challenge = await get_active_challenge(db, user_id)
    if challenge is None:
        return None
    await settle_challenge(db, challenge, now or utcnow())
    return challenge


async def _publish_settlement(redis: object | None, db: AsyncSession, challenge: DailyChallenge) -> None:
    await publish_user_event(redis, challenge.user_id, "daily_challenge_settled", {
        "challenge_id": challenge.id,
        "status": challenge.status,
        "payout": challenge.payout,
    })
    if challenge.payout:
        await publish_balance(redis, challenge.user_id, await get_balance(db, challenge.user_id))


async def get_current_challenge(
    db: AsyncSession,
    redis: object | None,
    user_id: str,
    now: datetime | None = None,
) -> DailyChallenge | None:
    """The user's most recent challenge with progress recounted and lazily settled."""
    now = now or utcnow()
    challenge = await get_latest_challenge(db, user_id)
    if challenge is None:
        return None

    settled = False
    if challenge.status == "active":
        settled = await settle_challenge(db, challenge, now)
    await db.commit()

    if settled:
        await _publish_settlement(redis, db, challenge)
    return challenge


async def create_challenge(
    db: AsyncSession,
    redis: object | None,
    user_id: str,
    target_tasks: int,
    points_bet: int,
    now: datetime | None = None,
) -> DailyChallenge:
    """Stake points on completing ``target_tasks`` tasks in the next 24 hours.

    Raises:
        InvalidStake: Target or bet outside the allowed bounds.
        ChallengeAlreadyActive: The user already has an open challenge.
        InsufficientFunds: The stake could not be debited.
    """
    settings = get_settings()
    now = now or utcnow()

    # An expired or already-met challenge must not block a new one.
    existing = await get_active_challenge(db, user_id)
    if existing is not None:
        if await settle_challenge(db, existing, now):
            await db.commit()
            await _publish_settlement(redis, db, existing)
        if existing.status == "active":
            msg = "A daily challenge is already active"
            raise ChallengeAlreadyActive(msg)

    balance = await get_balance(db, user_id)
    validate_stake(target_tasks, points_bet, balance)

    start, end = challenge_window(now, settings.challenge_duration_hours)
    challenge = DailyChallenge(
        user_id=user_id,
        target_tasks=target_tasks,
        points_bet=points_bet,
        multiplier=compute_multiplier(target_tasks),
        start_time=start,
        end_time=end,
        status="active",
        completed=False,
        tasks_completed=0,
    )
    try:
        await require_debit(
            db, user_id, points_bet,
            reason="daily_challenge_stake",
            description=f"Daily challenge: {target_tasks} tasks",
            now=now,
        )
        db.add(challenge)
        await db.flush()
    except IntegrityError as e:
        await db.rollback()
        msg = "A daily challenge is already active"
        raise ChallengeAlreadyActive(msg) from e
    except Exception:
        await db.rollback()
        raise

    await db.commit()
    logger.info(
        "daily_challenge_created",
        challenge_id=challenge.id,
        user_id=user_id,
        target_tasks=target_tasks,
        points_bet=points_bet,
        multiplier=challenge.multiplier,
    )

    await publish_user_event(redis, user_id, "daily_challenge_created", {"challenge_id": challenge.id})
    await publish_balance(redis, user_id, await get_balance(db, user_id))
    return challenge


async def sweep_challenges(
    db: AsyncSession,
    redis: object | None,
    now: datetime | None = None,
) -> dict[str, int]:
    """Settle every active challenge whose outcome is decided. Safe to run repeatedly.

    A challenge that fails to settle is rolled back and left active for the
    next sweep; the rest of the batch still settles.
    """
    now = now or utcnow()
    result = await db.execute(
        select(DailyChallenge.id).where(DailyChallenge.status == "active")
    )
    challenge_ids = list(result.scalars().all())

    counts = {"checked": len(challenge_ids), "won": 0, "lost": 0}
    for challenge_id in challenge_ids:
        challenge = await db.get(DailyChallenge, challenge_id, populate_existing=True)
        if challenge is None:
            continue
        try:
            settled = await settle_challenge(db, challenge, now)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception("daily_challenge_settle_failed", challenge_id=challenge_id)
            continue
        if settled:
            counts[challenge.status] += 1
            await _publish_settlement(redis, db, challenge)
    return counts


def challenge_progress(challenge: DailyChallenge, now: datetime | None = None) -> dict[str, Any]:
    """Display fields derived from a (freshly evaluated) challenge."""
    now = now or utcnow()
    return {
        "potential_payout": compute_payout(challenge.points_bet, challenge.multiplier),
        "seconds_remaining": seconds_remaining(challenge.end_time, now) if challenge.status == "active" else 0,
    }
