"""Static reward catalog. Items are priced in points and never consumed."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class RewardType(str, Enum):
    THEME = "theme"
    TEMPLATE = "template"
    TIP = "tip"
    PREMIUM = "premium"


@dataclass(frozen=True)
class RewardItem:
    id: str
    name: str
    description: str
    point_cost: int
    type: RewardType
    image_src: str | None = None


REWARD_CATALOG: tuple[RewardItem, ...] = (
    RewardItem(
        id="dark-theme",
        name="Dark Theme",
        description="A sleek dark theme for your dashboard with custom accent colors.",
        point_cost=100,
        type=RewardType.THEME,
        image_src="https://images.pexels.com/photos/3075993/pexels-photo-3075993.jpeg?auto=compress&cs=tinysrgb&w=800",
    ),
    RewardItem(
        id="project-template-bundle",
        name="Project Template Bundle",
        description="A collection of professional project management templates.",
        point_cost=150,
        type=RewardType.TEMPLATE,
    ),
    RewardItem(
        id="time-management-guide",
        name="Time Management Guide",
        description="Expert tips and techniques for better time management.",
        point_cost=75,
        type=RewardType.TIP,
    ),
    RewardItem(
        id="premium-analytics",
        name="Premium Analytics",
        description="Detailed insights and statistics about your productivity.",
        point_cost=200,
        type=RewardType.PREMIUM,
    ),
    RewardItem(
        id="custom-avatars-pack",
        name="Custom Avatars Pack",
        description="Exclusive avatar collection to personalize your profile.",
        point_cost=120,
        type=RewardType.THEME,
        image_src="https://images.pexels.com/photos/2815150/pexels-photo-2815150.jpeg?auto=compress&cs=tinysrgb&w=800",
    ),
    RewardItem(
        id="focus-timer-pro",
        name="Focus Timer Pro",
        description="Advanced Pomodoro timer with customizable intervals.",
        point_cost=180,
        type=RewardType.PREMIUM,
    ),
)

_BY_ID: dict[str, RewardItem] = {item.id: item for item in REWARD_CATALOG}


def list_items(reward_type: RewardType | None = None) -> list[RewardItem]:
    if reward_type is None:
        return list(REWARD_CATALOG)
    return [item for item in REWARD_CATALOG if item.type is reward_type]


def find_item(item_id: str) -> RewardItem | None:
    return _BY_ID.get(item_id)
