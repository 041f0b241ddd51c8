"""Publish change events over Redis pub/sub for WebSocket delivery.

Publishing is best-effort: every caller publishes after its transaction has
committed, so a dropped event only delays a client refresh.
"""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

LEADERBOARD_CHANNEL = "pubsub:leaderboard_update"


def user_channel(user_id: str) -> str:
    return f"ws:user:{user_id}"


async def publish_user_event(
    redis: object | None,
    user_id: str,
    event: str,
    data: dict[str, Any],
) -> None:
    """Publish ``{"event": ..., "data": ...}`` to ws:user:{user_id}.

    The bridge pattern-subscribes to ``ws:user:*`` and routes the message
    to the user's WebSocket connections subscribed to the event's channel.
    """
    if redis is None:
        return

    try:
        await redis.publish(  # type: ignore[attr-defined]
            user_channel(user_id),
            json.dumps({"event": event, "data": data}, default=str),
        )
    except Exception:
        logger.warning("Failed to publish %s via ws:user:%s", event, user_id, exc_info=True)


async def publish_balance(redis: object | None, user_id: str, balance: int) -> None:
    """Push a balance update to the user and nudge leaderboard subscribers."""
    await publish_user_event(redis, user_id, "points_changed", {"user_id": user_id, "points": balance})
    if redis is None:
        return
    try:
        await redis.publish(  # type: ignore[attr-defined]
            LEADERBOARD_CHANNEL,
            json.dumps({"user_id": user_id, "points": balance}),
        )
    except Exception:
        logger.warning("Failed to publish leaderboard update", exc_info=True)
