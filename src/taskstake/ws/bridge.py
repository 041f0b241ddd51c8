"""Bridges Redis pub/sub to WebSocket clients.

Services publish per-user change events to ``ws:user:{id}`` and balance
changes to the leaderboard channel; this bridge fans them out to the
WebSocket clients subscribed to the matching channel.
"""

import asyncio
import json

import redis.asyncio as aioredis
import structlog

from taskstake.events import LEADERBOARD_CHANNEL
from taskstake.ws.manager import CHALLENGES, LEADERBOARD, POINTS, TASKS, manager

logger = structlog.get_logger()

USER_PREFIX = "ws:user:"
USER_PATTERN = f"{USER_PREFIX}*"

# Map Redis broadcast channels to WebSocket channels
CHANNEL_MAP: dict[str, str] = {
    LEADERBOARD_CHANNEL: LEADERBOARD,
}

# Map per-user event name prefixes to WebSocket channels
EVENT_CHANNELS: list[tuple[str, str]] = [
    ("points_", POINTS),
    ("task_", TASKS),
    ("daily_challenge_", CHALLENGES),
    ("player_challenge_", CHALLENGES),
]


def channel_for_event(event: str) -> str | None:
    """WebSocket channel that carries a per-user event, or None if unrouted."""
    for prefix, channel in EVENT_CHANNELS:
        if event.startswith(prefix):
            return channel
    return None


def _decode(value: object) -> object:
    return value.decode() if isinstance(value, bytes) else value


class PubSubBridge:
    """Subscribes to Redis pub/sub and pushes messages to WebSocket clients."""

    def __init__(self, redis_client: aioredis.Redis) -> None:
        self.redis = redis_client
        self._running = False

    async def handle_message(self, message: dict) -> int:
        """Route one pub/sub message. Returns the number of clients reached."""
        redis_channel = _decode(message.get("channel", ""))

        if message.get("type") == "pmessage" and redis_channel.startswith(USER_PREFIX):
            user_id = redis_channel[len(USER_PREFIX):]
            if not manager.is_online(user_id):
                return 0
            payload = self._parse(redis_channel, message)
            if payload is None:
                return 0
            return await self._send_user_event(user_id, payload)

        ws_channel = CHANNEL_MAP.get(redis_channel)
        if ws_channel is None or not manager.subscribers(ws_channel):
            return 0
        payload = self._parse(redis_channel, message)
        if payload is None:
            return 0

        sent = await manager.broadcast_to_channel(ws_channel, {
            "type": redis_channel.split(":")[-1],
            **payload,
        })
        logger.debug("pubsub_broadcast", channel=ws_channel, recipients=sent)
        return sent

    @staticmethod
    def _parse(redis_channel: str, message: dict) -> dict | None:
        try:
            payload = json.loads(_decode(message.get("data", b"")))
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError):
            logger.warning("pubsub_invalid_message", channel=redis_channel)
            return None
        if not isinstance(payload, dict):
            logger.warning("pubsub_invalid_message", channel=redis_channel)
            return None
        return payload

    async def _send_user_event(self, user_id: str, payload: dict) -> int:
        event_type = payload.get("event", "")
        ws_channel = channel_for_event(event_type)
        if ws_channel is None:
            logger.debug("pubsub_unrouted_event", user_id=user_id, event_type=event_type)
            return 0

        sent = await manager.send_to_user(user_id, ws_channel, {
            "type": event_type,
            "payload": payload.get("data", payload),
        })
        logger.debug("user_event_sent", user_id=user_id, event_type=event_type, recipients=sent)
        return sent

    async def start(self) -> None:
        """Listen until stopped or cancelled. A message that fails to route is logged and skipped."""
        self._running = True
        pubsub = self.redis.pubsub()

        await pubsub.subscribe(*CHANNEL_MAP.keys())
        await pubsub.psubscribe(USER_PATTERN)

        logger.info(
            "pubsub_bridge_started",
            channels=list(CHANNEL_MAP.keys()),
            patterns=[USER_PATTERN],
        )

        try:
            while self._running:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
                if message is None:
                    continue
                try:
                    await self.handle_message(message)
                except Exception:
                    logger.exception("pubsub_message_failed", channel=_decode(message.get("channel")))

        except asyncio.CancelledError:
            pass
        finally:
            await pubsub.unsubscribe()
            await pubsub.punsubscribe()
            await pubsub.aclose()
            logger.info("pubsub_bridge_stopped")

    async def stop(self) -> None:
        """Signal the bridge to stop."""
        self._running = False
