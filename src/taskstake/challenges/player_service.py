"""Player challenge engine: two-user wagers with escrowed stakes.

Lifecycle::

    pending --accept--> accepted --settle--> settled   (winner paid 2x stake)
       |                    \\------settle--> expired   (tie, stakes returned)
       |--decline--> declined                           (challenger refunded)
       \\--timeout--> expired                            (challenger refunded)

Every transition is an UPDATE guarded on the current status, so a second
accept/decline/settle racing the first matches no row and pays nothing.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import or_, select, update

from taskstake.config import get_settings
from taskstake.db.models import PlayerChallenge
from taskstake.errors import (
    InsufficientFunds,
    InvalidStake,
    InvalidStateTransition,
    NotFound,
    SelfTargeting,
)
from taskstake.events import publish_balance, publish_user_event
from taskstake.ledger.service import credit, get_balance, require_debit
from taskstake.tasks.service import count_completed_in_window
from taskstake.time_utils import as_utc, challenge_window, has_ended, utcnow
from taskstake.users.service import require_user

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

VALID_TRANSITIONS: dict[str, list[str]] = {
    "pending": ["accepted", "declined", "expired"],
    "accepted": ["settled", "expired"],
    "declined": [],
    "settled": [],
    "expired": [],
}

OPEN_STATUSES = ("pending", "accepted")


def validate_transition(current_status: str, target_status: str) -> None:
    """Validate a state transition. Raises InvalidStateTransition if invalid."""
    valid = VALID_TRANSITIONS.get(current_status, [])
    if target_status not in valid:
        msg = f"Invalid transition: {current_status} -> {target_status}"
        raise InvalidStateTransition(msg)


def decide_winner(
    challenger_id: str,
    challenger_tasks: int,
    challenged_id: str,
    challenged_tasks: int,
) -> str | None:
    """Higher completion count wins; a tie has no winner."""
    if challenger_tasks > challenged_tasks:
        return challenger_id
    if challenged_tasks > challenger_tasks:
        return challenged_id
    return None


def validate_stake(points_bet: int) -> None:
    settings = get_settings()
    if points_bet < settings.player_min_bet:
        msg = f"Minimum bet is {settings.player_min_bet} points"
        raise InvalidStake(msg)
    if points_bet > settings.player_max_bet:
        msg = f"Maximum bet is {settings.player_max_bet} points"
        raise InvalidStake(msg)


async def _transition(
    db: AsyncSession,
    challenge_id: str,
    from_status: str,
    to_status: str,
    **values: Any,
) -> bool:
    """Move a challenge between states only if it is still in ``from_status``."""
    validate_transition(from_status, to_status)
    result = await db.execute(
        update(PlayerChallenge)
        .where(PlayerChallenge.id == challenge_id, PlayerChallenge.status == from_status)
        .values(status=to_status, **values)
        .returning(PlayerChallenge.id)
    )
    return result.scalar_one_or_none() is not None


async def get_challenge(db: AsyncSession, challenge_id: str) -> PlayerChallenge:
    result = await db.execute(select(PlayerChallenge).where(PlayerChallenge.id == challenge_id))
    challenge = result.scalar_one_or_none()
    if challenge is None:
        msg = f"Challenge {challenge_id} not found"
        raise NotFound(msg)
    return challenge


async def _refund(db: AsyncSession, challenge: PlayerChallenge, user_id: str, role: str, now: datetime) -> None:
    await credit(
        db,
        user_id,
        challenge.points_bet,
        reason="player_challenge_refund",
        source_id=challenge.id,
        idempotency_key=f"player_challenge:{challenge.id}:refund:{role}",
        now=now,
    )


async def _expire_pending(db: AsyncSession, challenge: PlayerChallenge, now: datetime) -> bool:
    """Expire an unanswered challenge whose window has ended and refund the challenger."""
    if challenge.status != "pending" or not has_ended(challenge.end_time, now):
        return False
    if not await _transition(db, challenge.id, "pending", "expired", settled_at=now):
        await db.refresh(challenge)
        return False
    await _refund(db, challenge, challenge.challenger_id, "challenger", now)
    logger.info("player_challenge_expired", challenge_id=challenge.id, reason="unanswered")
    return True


async def _settle(db: AsyncSession, challenge: PlayerChallenge, now: datetime) -> bool:
    """Decide an accepted challenge once its window has ended. Flushes only.

    Returns True if this call performed the settlement.
    """
    if challenge.status != "accepted" or not has_ended(challenge.end_time, now):
        return False

    start, end = as_utc(challenge.start_time), as_utc(challenge.end_time)
    challenger_tasks = await count_completed_in_window(db, challenge.challenger_id, start, end)
    challenged_tasks = await count_completed_in_window(db, challenge.challenged_id, start, end)
    winner_id = decide_winner(
        challenge.challenger_id, challenger_tasks,
        challenge.challenged_id, challenged_tasks,
    )

    moved = await _transition(
        db,
        challenge.id,
        "accepted",
        "settled" if winner_id else "expired",
        winner_id=winner_id,
        challenger_tasks=challenger_tasks,
        challenged_tasks=challenged_tasks,
        challenger_completed=challenger_tasks > 0,
        challenged_completed=challenged_tasks > 0,
        settled_at=now,
    )
    if not moved:
        await db.refresh(challenge)
        return False

    if winner_id:
        await credit(
            db,
            winner_id,
            challenge.points_bet * 2,
            reason="player_challenge_payout",
            source_id=challenge.id,
            idempotency_key=f"player_challenge:{challenge.id}:payout",
            now=now,
        )
    else:
        await _refund(db, challenge, challenge.challenger_id, "challenger", now)
        await _refund(db, challenge, challenge.challenged_id, "challenged", now)

    logger.info(
        "player_challenge_settled",
        challenge_id=challenge.id,
        winner_id=winner_id,
        challenger_tasks=challenger_tasks,
        challenged_tasks=challenged_tasks,
        pot=challenge.points_bet * 2,
    )
    return True


async def _publish_change(
    redis: object | None,
    db: AsyncSession,
    challenge: PlayerChallenge,
    event: str,
) -> None:
    """Notify both parties and push their fresh balances."""
    data = {"challenge_id": challenge.id, "status": challenge.status, "winner_id": challenge.winner_id}
    for user_id in (challenge.challenger_id, challenge.challenged_id):
        await publish_user_event(redis, user_id, event, data)
        await publish_balance(redis, user_id, await get_balance(db, user_id))


async def _finalize_due(
    db: AsyncSession,
    redis: object | None,
    challenge: PlayerChallenge,
    now: datetime,
) -> bool:
    """Expire or settle one challenge if its window has ended, committing the result."""
    if challenge.status == "pending":
        done = await _expire_pending(db, challenge, now)
    else:
        done = await _settle(db, challenge, now)
    if done:
        await db.commit()
        await _publish_change(redis, db, challenge, "player_challenge_settled")
    return done


async def create_challenge(
    db: AsyncSession,
    redis: object | None,
    challenger_id: str,
    challenged_id: str,
    points_bet: int,
    now: datetime | None = None,
) -> PlayerChallenge:
    """Challenge another user, escrowing the challenger's stake.

    Raises:
        SelfTargeting: challenger and challenged are the same user.
        InvalidStake: bet outside [5, 500].
        NotFound: the challenged user does not exist.
        InsufficientFunds: the stake could not be debited.
    """
    if challenger_id == challenged_id:
        msg = "You cannot challenge yourself"
        raise SelfTargeting(msg)
    validate_stake(points_bet)
    await require_user(db, challenged_id)

    settings = get_settings()
    now = now or utcnow()
    start, end = challenge_window(now, settings.challenge_duration_hours)
    challenge = PlayerChallenge(
        challenger_id=challenger_id,
        challenged_id=challenged_id,
        points_bet=points_bet,
        start_time=start,
        end_time=end,
        status="pending",
    )
    db.add(challenge)
    await db.flush()

    try:
        await require_debit(
            db, challenger_id, points_bet,
            reason="player_challenge_stake",
            source_id=challenge.id,
            now=now,
        )
    except InsufficientFunds:
        await db.rollback()
        raise

    await db.commit()
    logger.info(
        "player_challenge_created",
        challenge_id=challenge.id,
        challenger_id=challenger_id,
        challenged_id=challenged_id,
        points_bet=points_bet,
    )
    await _publish_change(redis, db, challenge, "player_challenge_created")
    return challenge


async def respond_to_challenge(
    db: AsyncSession,
    redis: object | None,
    challenge_id: str,
    user_id: str,
    accept: bool,
    now: datetime | None = None,
) -> PlayerChallenge:
    """Accept (escrowing the challenged user's stake) or decline (refunding the challenger).

    Raises:
        NotFound: unknown challenge, or the caller is not the challenged user.
        InvalidStateTransition: the challenge is no longer pending or its window ended.
        InsufficientFunds: accepting, but the caller cannot cover the stake.
    """
    now = now or utcnow()
    challenge = await get_challenge(db, challenge_id)
    if challenge.challenged_id != user_id:
        msg = f"Challenge {challenge_id} not found"
        raise NotFound(msg)
    if challenge.status != "pending":
        msg = f"Challenge is already {challenge.status}"
        raise InvalidStateTransition(msg)

    if has_ended(challenge.end_time, now):
        await _finalize_due(db, redis, challenge, now)
        msg = "Challenge has expired"
        raise InvalidStateTransition(msg)

    if accept:
        if not await _transition(db, challenge_id, "pending", "accepted", responded_at=now):
            await db.rollback()
            msg = "Challenge was already answered"
            raise InvalidStateTransition(msg)
        try:
            await require_debit(
                db, user_id, challenge.points_bet,
                reason="player_challenge_stake",
                source_id=challenge_id,
                now=now,
            )
        except InsufficientFunds:
            await db.rollback()
            raise
        event = "player_challenge_accepted"
    else:
        if not await _transition(db, challenge_id, "pending", "declined", responded_at=now):
            await db.rollback()
            msg = "Challenge was already answered"
            raise InvalidStateTransition(msg)
        await _refund(db, challenge, challenge.challenger_id, "challenger", now)
        event = "player_challenge_declined"

    await db.commit()
    logger.info(event, challenge_id=challenge_id, user_id=user_id)
    await _publish_change(redis, db, challenge, event)
    return challenge


async def settle_challenge(
    db: AsyncSession,
    redis: object | None,
    challenge_id: str,
    now: datetime | None = None,
) -> PlayerChallenge:
    """Settle (or expire) a challenge whose window has ended.

    Calling this on a challenge that is already declined, settled or expired
    returns it unchanged.

    Raises:
        NotFound: unknown challenge.
        InvalidStateTransition: the challenge window has not ended yet.
    """
    now = now or utcnow()
    challenge = await get_challenge(db, challenge_id)
    if challenge.status not in OPEN_STATUSES:
        return challenge
    if not has_ended(challenge.end_time, now):
        msg = "Challenge window has not ended yet"
        raise InvalidStateTransition(msg)

    await _finalize_due(db, redis, challenge, now)
    return challenge


async def list_challenges(
    db: AsyncSession,
    redis: object | None,
    user_id: str,
    now: datetime | None = None,
) -> dict[str, list[PlayerChallenge]]:
    """The user's incoming and outgoing challenges, finalizing any that are due."""
    now = now or utcnow()
    result = await db.execute(
        select(PlayerChallenge)
        .where(or_(PlayerChallenge.challenger_id == user_id, PlayerChallenge.challenged_id == user_id))
        .order_by(PlayerChallenge.start_time.desc())
    )
    challenges = list(result.scalars().all())

    for challenge in challenges:
        if challenge.status in OPEN_STATUSES and has_ended(challenge.end_time, now):
            await _finalize_due(db, redis, challenge, now)

    return {
        "incoming": [c for c in challenges if c.challenged_id == user_id],
        "outgoing": [c for c in challenges if c.challenger_id == user_id],
    }


async def sweep_challenges(
    db: AsyncSession,
    redis: object | None,
    now: datetime | None = None,
) -> dict[str, int]:
    """Finalize every open challenge whose window has ended. Safe to run repeatedly.

    A challenge that fails to finalize is rolled back and retried by the next sweep.
    """
    now = now or utcnow()
    result = await db.execute(
        select(PlayerChallenge.id).where(
            PlayerChallenge.status.in_(OPEN_STATUSES),
            PlayerChallenge.end_time <= now,
        )
    )
    challenge_ids = list(result.scalars().all())

    counts = {"checked": len(challenge_ids), "settled": 0, "expired": 0}
    for challenge_id in challenge_ids:
        challenge = await db.get(PlayerChallenge, challenge_id, populate_existing=True)
        if challenge is None:
            continue
        try:
            done = await _finalize_due(db, redis, challenge, now)
        except Exception:
            await db.rollback()
            logger.exception("player_challenge_finalize_failed", challenge_id=challenge_id)
            continue
        if done:
            counts[challenge.status] += 1
    return counts
