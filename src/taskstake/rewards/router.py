"""Reward catalog endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from taskstake.auth.dependencies import get_current_user
from taskstake.database import get_session
from taskstake.db.models import User
from taskstake.redis_client import get_optional_redis
from taskstake.rewards.catalog import RewardType, list_items
from taskstake.rewards.schemas import PurchaseResponse, RewardCatalogResponse, RewardItemResponse
from taskstake.rewards.service import get_item, purchase

router = APIRouter(prefix="/api/v1/rewards", tags=["Rewards"])


@router.get("", response_model=RewardCatalogResponse)
async def get_catalog(reward_type: RewardType | None = Query(None, alias="type")):
    """All purchasable rewards. Public."""
    return RewardCatalogResponse(items=[RewardItemResponse.model_validate(i) for i in list_items(reward_type)])


@router.get("/{item_id}", response_model=RewardItemResponse)
async def get_reward(item_id: str):
    return RewardItemResponse.model_validate(get_item(item_id))


@router.post("/{item_id}/purchase", response_model=PurchaseResponse)
async def post_purchase(
    item_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis=Depends(get_optional_redis),
):
    item, balance = await purchase(db, redis, user.id, item_id)
    return PurchaseResponse(item=RewardItemResponse.model_validate(item), balance=balance)
