"""Reward purchases: a point-gated debit with no inventory record."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from taskstake.errors import InsufficientFunds, NotFound
from taskstake.events import publish_balance
from taskstake.ledger.service import get_balance, require_debit
from taskstake.rewards.catalog import RewardItem, find_item

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


def get_item(item_id: str) -> RewardItem:
    item = find_item(item_id)
    if item is None:
        msg = f"Reward {item_id} not found"
        raise NotFound(msg)
    return item


async def purchase(
    db: AsyncSession,
    redis: object | None,
    user_id: str,
    item_id: str,
) -> tuple[RewardItem, int]:
    """Buy a reward. Returns (item, balance after purchase).

    Raises:
        NotFound: unknown item id.
        InsufficientFunds: balance below the item's cost; nothing is charged.
    """
    item = get_item(item_id)
    try:
        await require_debit(
            db, user_id, item.point_cost,
            reason="reward_purchase",
            source_id=item.id,
            description=item.name,
        )
    except InsufficientFunds:
        await db.rollback()
        raise

    await db.commit()
    balance = await get_balance(db, user_id)
    logger.info("reward_purchased", user_id=user_id, item_id=item.id, cost=item.point_cost, balance=balance)
    await publish_balance(redis, user_id, balance)
    return item, balance
