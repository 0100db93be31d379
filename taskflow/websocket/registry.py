"""Connection registry.

Tracks each live connection's authenticated user, the rooms it has
joined and its heartbeat. The registry only refers to rooms by ID; room
membership itself is owned by the room manager, which plugs into the
registry's lifecycle hooks.
"""

import dataclasses
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional
from uuid import UUID

from .errors import ConnectionNotFound, DuplicateConnection
from .events import PresenceStatus
from .locks import KeyedLock

logger = logging.getLogger(__name__)


@dataclass
class ConnectionRecord:
    """
    One live authenticated client session.

    Attributes:
        connection_id: Transport-assigned connection identifier
        user_id: The authenticated user's ID
        rooms: IDs of rooms this connection has joined
        connected_at: When the connection was registered
        last_seen: Monotonic time of the last heartbeat
    """

    connection_id: str
    user_id: UUID
    rooms: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=datetime.utcnow)
    last_seen: float = field(default_factory=time.monotonic)


ConnectionHook = Callable[[ConnectionRecord], Awaitable[None]]
PresenceHook = Callable[[UUID, PresenceStatus], Awaitable[None]]


class ConnectionRegistry:
    """
    Registry of live connections.

    Hooks:
    - register hooks run after a connection is added (inbox auto-join)
    - unregister hooks run before a connection is removed (room eviction)
    - presence hooks run when a user goes from 0 to 1 connections
      (online) or from 1 to 0 (offline), never on other transitions
    """

    def __init__(self) -> None:
        """Initialize the connection registry."""
        # Map of connection_id -> record
        self._connections: dict[str, ConnectionRecord] = {}
        # Map of user_id -> connection ids (a user may have several tabs/devices)
        self._user_connections: dict[UUID, set[str]] = {}
        self.locks = KeyedLock()
        self._register_hooks: list[ConnectionHook] = []
        self._unregister_hooks: list[ConnectionHook] = []
        self._presence_hooks: list[PresenceHook] = []
        # Serializes online/offline broadcasts per user so they go out in transition order
        self._presence_locks = KeyedLock()

    def on_register(self, hook: ConnectionHook) -> None:
        self._register_hooks.append(hook)

    def on_unregister(self, hook: ConnectionHook) -> None:
        self._unregister_hooks.append(hook)

    def on_presence(self, hook: PresenceHook) -> None:
        self._presence_hooks.append(hook)

    @property
    def total_connections(self) -> int:
        """Get total number of registered connections."""
        return len(self._connections)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def get(self, connection_id: str) -> Optional[ConnectionRecord]:
        return self._connections.get(connection_id)

    def lookup(self, connection_id: str) -> ConnectionRecord:
        """
        Get a registered connection.

        Raises:
            ConnectionNotFound: If the connection is not registered
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            raise ConnectionNotFound(
                f"Connection {connection_id} is not registered",
                connection_id=connection_id,
            )
        return connection

    def connections_of(self, user_id: UUID) -> set[str]:
        """Get the IDs of every live connection for a user."""
        return set(self._user_connections.get(user_id, ()))

    def is_online(self, user_id: UUID) -> bool:
        return bool(self._user_connections.get(user_id))

    async def register(self, connection_id: str, user_id: UUID) -> ConnectionRecord:
        """
        Register a new connection for an authenticated user.

        Args:
            connection_id: Transport-assigned connection identifier
            user_id: The authenticated user's ID

        Returns:
            ConnectionRecord: The new connection

        Raises:
            DuplicateConnection: If connection_id is already registered
        """
        async with self.locks.hold(connection_id):
            if connection_id in self._connections:
                raise DuplicateConnection(
                    f"Connection {connection_id} is already registered",
                    connection_id=connection_id,
                )

            connection = ConnectionRecord(connection_id=connection_id, user_id=user_id)
            self._connections[connection_id] = connection

            user_connections = self._user_connections.setdefault(user_id, set())
            user_connections.add(connection_id)
            # Decided before any await so concurrent registrations see one 0 -> 1 transition
            came_online = len(user_connections) == 1

            for hook in self._register_hooks:
                await hook(connection)

        logger.info(
            f"Connection registered: id={connection_id}, user={user_id}, "
            f"total_connections={self.total_connections}"
        )

        if came_online:
            await self._fire_presence(user_id, PresenceStatus.ONLINE)

        return connection

    async def unregister(self, connection_id: str) -> Optional[ConnectionRecord]:
        """
        Remove a connection and every room membership it holds.

        Idempotent: unregistering an unknown connection is a no-op.

        Returns:
            The removed connection as it stood before cleanup (its rooms
            are the rooms it was evicted from), or None if not registered
        """
        async with self.locks.hold(connection_id):
            connection = self._connections.get(connection_id)
            if connection is None:
                return None

            snapshot = dataclasses.replace(connection, rooms=set(connection.rooms))

            for hook in self._unregister_hooks:
                await hook(connection)

            del self._connections[connection_id]

            user_connections = self._user_connections.get(connection.user_id, set())
            user_connections.discard(connection_id)
            went_offline = not user_connections
            if went_offline:
                self._user_connections.pop(connection.user_id, None)

        logger.info(
            f"Connection unregistered: id={connection_id}, user={connection.user_id}, "
            f"total_connections={self.total_connections}"
        )

        if went_offline:
            await self._fire_presence(connection.user_id, PresenceStatus.OFFLINE)

        return snapshot

    def touch(self, connection_id: str) -> None:
        """Record a heartbeat for a connection."""
        self.lookup(connection_id).last_seen = time.monotonic()

    def stale(self, cutoff: float) -> list[str]:
        """Get IDs of connections whose last heartbeat is older than ``cutoff`` (monotonic)."""
        return [
            connection_id
            for connection_id, connection in self._connections.items()
            if connection.last_seen < cutoff
        ]

    async def _fire_presence(self, user_id: UUID, status: PresenceStatus) -> None:
        async with self._presence_locks.hold(user_id):
            for hook in self._presence_hooks:
                try:
                    await hook(user_id, status)
                except Exception as e:
                    # Presence is best-effort; a failed broadcast must not undo registration
                    logger.error(f"Presence hook failed for user {user_id} ({status.value}): {e}")
