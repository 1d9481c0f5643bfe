"""In-process presence registry backing the real-time notification channel."""

from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from marketplace_service.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


def user_room(user_id: str) -> str:
    """Room name addressing every live connection of one user."""
    return f"user:{user_id}"


@dataclass
class Connection:
    """One live subscriber connection and its outbound queue."""

    user_id: str
    queue: asyncio.Queue[dict[str, Any]]
    connection_id: str = field(default_factory=lambda: f"conn-{uuid.uuid4()}")


class PresenceRegistry:
    """
    Maps rooms to live connections.

    Connects and disconnects race with publishes, so every access to the
    map happens under a single asyncio lock. A user is online while at
    least one of their connections is registered.
    """

    def __init__(self, queue_size: int) -> None:
        self._queue_size = queue_size
        self._lock = asyncio.Lock()
        self._rooms: dict[str, dict[str, Connection]] = {}
        self._logger = get_logger(__name__)

    async def connect(self, user_id: str) -> Connection:
        """Register a new connection for a user."""
        connection = Connection(user_id=user_id, queue=asyncio.Queue(maxsize=self._queue_size))
        async with self._lock:
            self._rooms.setdefault(user_room(user_id), {})[connection.connection_id] = connection
        self._logger.info(
            "Presence connected",
            extra={"user_id": user_id, "connection_id": connection.connection_id},
        )
        return connection

    async def disconnect(self, connection: Connection) -> None:
        """Remove a connection. Removing an unknown connection is a no-op."""
        room = user_room(connection.user_id)
        async with self._lock:
            members = self._rooms.get(room)
            if members is None:
                return
            members.pop(connection.connection_id, None)
            if not members:
                del self._rooms[room]
        self._logger.info(
            "Presence disconnected",
            extra={"user_id": connection.user_id, "connection_id": connection.connection_id},
        )

    async def online_users(self) -> list[str]:
        """Sorted ids of every user with a live connection."""
        async with self._lock:
            return sorted(
                next(iter(members.values())).user_id for members in self._rooms.values()
            )

    async def publish(self, user_id: str, event: str, data: dict[str, Any]) -> int:
        """
        Queue an event for every connection of a user.

        Delivery is at-most-once: a connection whose queue is full misses the
        event. Returns the number of connections the event was queued on.
        """
        message = {"event": event, "data": data}
        delivered = 0
        async with self._lock:
            connections = list(self._rooms.get(user_room(user_id), {}).values())
            for connection in connections:
                try:
                    connection.queue.put_nowait(message)
                except asyncio.QueueFull:
                    self._logger.warning(
                        "Presence queue full, dropping event",
                        extra={
                            "user_id": user_id,
                            "connection_id": connection.connection_id,
                            "event": event,
                        },
                    )
                    continue
                delivered += 1
        return delivered

    async def stream(
        self,
        connection: Connection,
        keepalive_seconds: int,
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Async generator of SSE messages for one connection.

        The connection is removed from the registry when the consumer stops
        iterating, whether the client disconnected or the server shut down.
        """
        try:
            yield {"retry": 3000}
            while True:
                try:
                    message = await asyncio.wait_for(
                        connection.queue.get(),
                        timeout=keepalive_seconds,
                    )
                except TimeoutError:
                    yield {"comment": "keepalive"}
                    continue
                yield {
                    "event": message["event"],
                    "data": json.dumps(message["data"], default=str),
                }
        finally:
            await self.disconnect(connection)
