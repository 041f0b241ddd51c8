"""Tests for the Redis pub/sub to WebSocket bridge."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from taskstake.ws.bridge import CHANNEL_MAP, PubSubBridge, channel_for_event
from taskstake.ws.manager import VALID_CHANNELS


class TestChannelRouting:
    def test_broadcast_channels_are_valid(self) -> None:
        for redis_ch, ws_ch in CHANNEL_MAP.items():
            assert ws_ch in VALID_CHANNELS, f"{redis_ch} maps to unknown {ws_ch}"

    def test_leaderboard_channel(self) -> None:
        assert CHANNEL_MAP["pubsub:leaderboard_update"] == "leaderboard"

    @pytest.mark.parametrize(
        ("event", "channel"),
        [
            ("points_changed", "points"),
            ("task_completed", "tasks"),
            ("task_uncompleted", "tasks"),
            ("task_created", "tasks"),
            ("daily_challenge_settled", "challenges"),
            ("player_challenge_accepted", "challenges"),
        ],
    )
    def test_event_channels(self, event, channel) -> None:
        assert channel_for_event(event) == channel

    def test_unknown_event(self) -> None:
        assert channel_for_event("something_else") is None


@pytest.mark.asyncio
class TestHandleMessage:
    async def test_user_event_sent_to_user(self) -> None:
        bridge = PubSubBridge(AsyncMock())
        message = {
            "type": "pmessage",
            "channel": "ws:user:alice",
            "data": json.dumps({"event": "points_changed", "data": {"points": 120}}),
        }

        with patch("taskstake.ws.bridge.manager") as mock_manager:
            mock_manager.send_to_user = AsyncMock(return_value=1)
            sent = await bridge.handle_message(message)

        assert sent == 1
        mock_manager.send_to_user.assert_awaited_once_with(
            "alice", "points", {"type": "points_changed", "payload": {"points": 120}},
        )

    async def test_leaderboard_broadcast(self) -> None:
        bridge = PubSubBridge(AsyncMock())
        message = {
            "type": "message",
            "channel": b"pubsub:leaderboard_update",
            "data": json.dumps({"user_id": "alice", "points": 120}).encode(),
        }

        with patch("taskstake.ws.bridge.manager") as mock_manager:
            mock_manager.broadcast_to_channel = AsyncMock(return_value=3)
            sent = await bridge.handle_message(message)

        assert sent == 3
        mock_manager.broadcast_to_channel.assert_awaited_once_with(
            "leaderboard", {"type": "leaderboard_update", "user_id": "alice", "points": 120},
        )

    async def test_invalid_json_ignored(self) -> None:
        bridge = PubSubBridge(AsyncMock())
        with patch("taskstake.ws.bridge.manager") as mock_manager:
            sent = await bridge.handle_message({"type": "message", "channel": "pubsub:leaderboard_update", "data": "{"})
        assert sent == 0
        mock_manager.broadcast_to_channel.assert_not_called()

    async def test_unrouted_user_event_dropped(self) -> None:
        bridge = PubSubBridge(AsyncMock())
        message = {
            "type": "pmessage",
            "channel": "ws:user:alice",
            "data": json.dumps({"event": "mystery", "data": {}}),
        }
        with patch("taskstake.ws.bridge.manager") as mock_manager:
            mock_manager.send_to_user = AsyncMock()
            assert await bridge.handle_message(message) == 0
        mock_manager.send_to_user.assert_not_awaited()

    async def test_offline_user_skipped(self) -> None:
        bridge = PubSubBridge(AsyncMock())
        message = {
            "type": "pmessage",
            "channel": "ws:user:carol",
            "data": json.dumps({"event": "points_changed", "data": {"points": 5}}),
        }
        with patch("taskstake.ws.bridge.manager") as mock_manager:
            mock_manager.is_online.return_value = False
            mock_manager.send_to_user = AsyncMock()
            assert await bridge.handle_message(message) == 0
        mock_manager.is_online.assert_called_once_with("carol")
        mock_manager.send_to_user.assert_not_awaited()

    async def test_broadcast_without_subscribers_skipped(self) -> None:
        bridge = PubSubBridge(AsyncMock())
        message = {"type": "message", "channel": "pubsub:leaderboard_update", "data": "{}"}
        with patch("taskstake.ws.bridge.manager") as mock_manager:
            mock_manager.subscribers.return_value = 0
            mock_manager.broadcast_to_channel = AsyncMock()
            assert await bridge.handle_message(message) == 0
        mock_manager.broadcast_to_channel.assert_not_awaited()

    async def test_non_object_payload_ignored(self) -> None:
        bridge = PubSubBridge(AsyncMock())
        message = {"type": "pmessage", "channel": "ws:user:alice", "data": "[1, 2]"}
        with patch("taskstake.ws.bridge.manager") as mock_manager:
            mock_manager.send_to_user = AsyncMock()
            assert await bridge.handle_message(message) == 0
        mock_manager.send_to_user.assert_not_awaited()


class _FakePubSub:
    """Replays a fixed list of messages, then stops the bridge."""

    def __init__(self, messages: list[dict]) -> None:
        self.messages = list(messages)
        self.bridge: PubSubBridge | None = None
        self.closed = False
        self.subscribe = AsyncMock()
        self.psubscribe = AsyncMock()
        self.unsubscribe = AsyncMock()
        self.punsubscribe = AsyncMock()

    async def get_message(self, **_kwargs) -> dict | None:
        if self.messages:
            return self.messages.pop(0)
        await self.bridge.stop()
        return None

    async def aclose(self) -> None:
        self.closed = True


def _user_message(user_id: str, event: str, data: dict) -> dict:
    return {
        "type": "pmessage",
        "pattern": "ws:user:*",
        "channel": f"ws:user:{user_id}",
        "data": json.dumps({"event": event, "data": data}),
    }


@pytest.mark.asyncio
class TestBridgeLoop:
    async def test_keeps_routing_after_a_failed_message(self) -> None:
        pubsub = _FakePubSub([
            _user_message("alice", "notification", {}),
            _user_message("alice", "task_completed", {"task_id": "t1"}),
            _user_message("alice", "points_changed", {"points": 130}),
        ])
        redis = MagicMock()
        redis.pubsub.return_value = pubsub
        bridge = PubSubBridge(redis)
        pubsub.bridge = bridge

        with patch("taskstake.ws.bridge.manager") as mock_manager:
            mock_manager.send_to_user = AsyncMock(side_effect=[RuntimeError("socket gone"), 1])
            await bridge.start()

        assert mock_manager.send_to_user.await_count == 2
        mock_manager.send_to_user.assert_awaited_with(
            "alice", "points", {"type": "points_changed", "payload": {"points": 130}},
        )
        pubsub.psubscribe.assert_awaited_once_with("ws:user:*")
        assert pubsub.closed is True
