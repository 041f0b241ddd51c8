"""Pydantic response models for reward endpoints."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from taskstake.rewards.catalog import RewardType


class RewardItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str
    point_cost: int
    type: RewardType
    image_src: str | None = None


class RewardCatalogResponse(BaseModel):
    items: list[RewardItemResponse]


class PurchaseResponse(BaseModel):
    item: RewardItemResponse
    balance: int
