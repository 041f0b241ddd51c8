"""Registry of live WebSocket clients, indexed by user and by channel.

Points, task and challenge updates are private to one user, so they are
delivered through the user index. Only the leaderboard is broadcast.
"""

import json
from collections import defaultdict
from dataclasses import dataclass, field

import structlog
from fastapi import WebSocket

logger = structlog.get_logger()

POINTS = "points"
TASKS = "tasks"
CHALLENGES = "challenges"
LEADERBOARD = "leaderboard"

VALID_CHANNELS = {POINTS, TASKS, CHALLENGES, LEADERBOARD}


@dataclass
class ClientConnection:
    websocket: WebSocket
    user_id: str
    subscriptions: set[str] = field(default_factory=set)


class ConnectionManager:
    """Tracks connections for the single-threaded event loop; no locking needed."""

    def __init__(self) -> None:
        self._connections: dict[str, ClientConnection] = {}  # conn_id -> client
        self._channels: dict[str, set[str]] = defaultdict(set)  # channel -> {conn_ids}
        self._user_connections: dict[str, set[str]] = defaultdict(set)  # user_id -> {conn_ids}

    def is_online(self, user_id: str) -> bool:
        """Whether the user has at least one open connection."""
        return bool(self._user_connections.get(user_id))

    def subscribers(self, channel: str) -> int:
        return len(self._channels.get(channel, ()))

    async def connect(self, websocket: WebSocket, conn_id: str, user_id: str) -> None:
        await websocket.accept()
        self._connections[conn_id] = ClientConnection(websocket=websocket, user_id=user_id)
        self._user_connections[user_id].add(conn_id)
        logger.info("ws_connected", conn_id=conn_id, user_id=user_id)

    async def disconnect(self, conn_id: str) -> None:
        """Forget a connection and every channel it was subscribed to."""
        client = self._connections.pop(conn_id, None)
        if client is None:
            return

        for channel in client.subscriptions:
            self._channels[channel].discard(conn_id)
            if not self._channels[channel]:
                del self._channels[channel]

        self._user_connections[client.user_id].discard(conn_id)
        if not self._user_connections[client.user_id]:
            del self._user_connections[client.user_id]

        logger.info("ws_disconnected", conn_id=conn_id, user_id=client.user_id)

    async def subscribe(self, conn_id: str, channel: str) -> bool:
        """Returns False for an unknown connection or channel."""
        client = self._connections.get(conn_id)
        if client is None or channel not in VALID_CHANNELS:
            return False

        client.subscriptions.add(channel)
        self._channels[channel].add(conn_id)
        logger.debug("ws_subscribed", conn_id=conn_id, user_id=client.user_id, channel=channel)
        return True

    async def unsubscribe(self, conn_id: str, channel: str) -> bool:
        client = self._connections.get(conn_id)
        if client is None:
            return False

        client.subscriptions.discard(channel)
        if channel in self._channels:
            self._channels[channel].discard(conn_id)
            if not self._channels[channel]:
                del self._channels[channel]
        return True

    async def _deliver(self, conn_ids: list[str], channel: str, message: dict) -> int:
        """Send one envelope to each connection; connections that fail are dropped."""
        payload = json.dumps({"channel": channel, "data": message})
        sent = 0
        dead: list[str] = []

        for conn_id in conn_ids:
            client = self._connections.get(conn_id)
            if client is None:
                continue
            try:
                await client.websocket.send_text(payload)
                sent += 1
            except Exception:
                dead.append(conn_id)

        for conn_id in dead:
            logger.info("ws_send_failed", conn_id=conn_id, channel=channel)
            await self.disconnect(conn_id)
        return sent

    async def broadcast_to_channel(self, channel: str, message: dict) -> int:
        """Send to every subscriber of ``channel``. Returns the number reached."""
        return await self._deliver(list(self._channels.get(channel, ())), channel, message)

    async def send_to_user(self, user_id: str, channel: str, message: dict) -> int:
        """Send to the user's connections that subscribed to ``channel``."""
        conn_ids = [
            conn_id
            for conn_id in self._user_connections.get(user_id, ())
            if channel in self._connections[conn_id].subscriptions
        ]
        return await self._deliver(conn_ids, channel, message)


manager = ConnectionManager()
