# schoolchat/infrastructure/connection_registry.py
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from typing import Any, Protocol

from schoolchat.domain.entities import utcnow


class Connection(Protocol):
    async def send_json(self, data: Any, mode: str = "text") -> None: ...


class ConnectionRegistry(ABC):
    """Who is reachable over the realtime channel right now."""

    @abstractmethod
    async def connect(self, user_id: int, connection: Connection) -> None:
        pass

    @abstractmethod
    async def disconnect(self, user_id: int, connection: Connection) -> None:
        pass

    @abstractmethod
    def is_connected(self, user_id: int) -> bool:
        pass

    @abstractmethod
    async def send_to_user(self, user_id: int, payload: dict) -> int:
        """Send to every live connection of the user; returns successful sends."""

    @abstractmethod
    def subscribe(self, user_id: int, thread_id: int) -> None:
        pass

    @abstractmethod
    def unsubscribe(self, user_id: int, thread_id: int) -> None:
        pass

    @abstractmethod
    def subscribers(self, thread_id: int) -> set[int]:
        pass

    @abstractmethod
    def heartbeat(self, user_id: int) -> None:
        pass


class InMemoryConnectionRegistry(ConnectionRegistry):
    """Process-local registry, one instance per application.

    Only the WebSocket handlers mutate it; the fan-out only reads and sends.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.active_connections: dict[int, list[Connection]] = {}
        self.thread_subscriptions: dict[int, set[int]] = defaultdict(set)
        self.last_seen: dict[int, datetime] = {}

    async def connect(self, user_id: int, connection: Connection) -> None:
        self.active_connections.setdefault(user_id, []).append(connection)
        self.last_seen[user_id] = utcnow()
        self.logger.info(
            f"User {user_id} connected "
            f"({len(self.active_connections[user_id])} connection(s))"
        )

    async def disconnect(self, user_id: int, connection: Connection) -> None:
        connections = self.active_connections.get(user_id)
        if not connections:
            return
        if connection in connections:
            connections.remove(connection)
        if not connections:
            del self.active_connections[user_id]
            self.last_seen.pop(user_id, None)
            for thread_id in list(self.thread_subscriptions):
                self.unsubscribe(user_id, thread_id)
            self.logger.info(f"User {user_id} disconnected")

    def is_connected(self, user_id: int) -> bool:
        return bool(self.active_connections.get(user_id))

    async def send_to_user(self, user_id: int, payload: dict) -> int:
        sent = 0
        stale = []
        for connection in list(self.active_connections.get(user_id, [])):
            try:
                await connection.send_json(payload)
                sent += 1
            except Exception as e:
                self.logger.warning(f"Realtime send to user {user_id} failed: {e!s}")
                stale.append(connection)
        for connection in stale:
            await self.disconnect(user_id, connection)
        return sent

    def subscribe(self, user_id: int, thread_id: int) -> None:
        self.thread_subscriptions[thread_id].add(user_id)

    def unsubscribe(self, user_id: int, thread_id: int) -> None:
        subscribers = self.thread_subscriptions.get(thread_id)
        if subscribers is None:
            return
        subscribers.discard(user_id)
        if not subscribers:
            del self.thread_subscriptions[thread_id]

    def subscribers(self, thread_id: int) -> set[int]:
        return set(self.thread_subscriptions.get(thread_id, ()))

    def heartbeat(self, user_id: int) -> None:
        if self.is_connected(user_id):
            self.last_seen[user_id] = utcnow()

    def get_connected_users(self) -> list[int]:
        return list(self.active_connections.keys())
