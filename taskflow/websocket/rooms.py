"""Room membership management.

Owns the room -> connection IDs map. Connections refer back to rooms only
by ID (ConnectionRecord.rooms), so either side can be mutated under its
own lock. Lock order is always connection lock, then room lock.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from ..services.task_store import TaskStore
from .errors import (
    CollaborationError,
    ConnectionNotFound,
    RegistryInvariantError,
)
from .locks import KeyedLock
from .registry import ConnectionRecord, ConnectionRegistry
from .room_auth import USER_ROOM, canonical_room, check_room_access, get_user_room

logger = logging.getLogger(__name__)


@dataclass
class JoinResult:
    """Outcome of a join request."""

    room_id: str
    joined: bool
    already_member: bool = False
    error: Optional[CollaborationError] = None

    @property
    def reason(self) -> Optional[str]:
        return self.error.code if self.error else None

    @property
    def retryable(self) -> bool:
        return bool(self.error and self.error.retryable)


class RoomManager:
    """
    Room membership manager.

    Features:
    - Lazy room creation on first join, removal when the last member leaves
    - Task room joins gated by a fresh view-access check
    - Inbox rooms restricted to their own user
    - Idempotent joins and leaves
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: TaskStore,
        access_check_timeout: Optional[float] = None,
    ) -> None:
        """
        Initialize the room manager and attach it to the registry.

        Args:
            registry: The connection registry whose connections join rooms
            store: Task store used for join-time access checks
            access_check_timeout: Seconds to wait for the store before denying
        """
        # Map of room_id -> connection ids
        self._rooms: dict[str, set[str]] = {}
        self._locks = KeyedLock()
        self._registry = registry
        self._store = store
        self._timeout = access_check_timeout

        registry.on_register(self._join_inbox)
        registry.on_unregister(self._evict)

    @property
    def total_rooms(self) -> int:
        """Get total number of active rooms."""
        return len(self._rooms)

    def members_of(self, room_id: str) -> set[str]:
        """Get the connection IDs in a room."""
        return set(self._rooms.get(room_id, ()))

    def get_room_count(self, room_id: str) -> int:
        """Get number of connections in a room."""
        return len(self._rooms.get(room_id, ()))

    def get_room_users(self, room_id: str) -> set[UUID]:
        """Get the unique user IDs with a connection in a room."""
        users = set()
        for connection_id in self._rooms.get(room_id, ()):
            connection = self._registry.get(connection_id)
            if connection is not None:
                users.add(connection.user_id)
        return users

    async def join(self, connection_id: str, room_id: str) -> JoinResult:
        """
        Add a connection to a room after checking access.

        The access check is awaited before any lock is taken; a denied or
        timed-out check leaves membership untouched.

        Args:
            connection_id: The joining connection
            room_id: The room identifier

        Returns:
            JoinResult: joined, or denied with the error that caused it
        """
        try:
            room_id = canonical_room(room_id)
        except CollaborationError as e:
            logger.warning(f"Room join rejected: connection={connection_id}, {e.message}")
            return JoinResult(room_id=room_id, joined=False, error=e)

        connection = self._registry.get(connection_id)
        if connection is None:
            return JoinResult(
                room_id=room_id,
                joined=False,
                error=ConnectionNotFound(
                    f"Connection {connection_id} is not registered",
                    connection_id=connection_id,
                ),
            )

        try:
            await check_room_access(self._store, connection.user_id, room_id, self._timeout)
        except CollaborationError as e:
            logger.warning(
                f"Room join denied: user={connection.user_id}, room={room_id}, reason={e.code}"
            )
            return JoinResult(room_id=room_id, joined=False, error=e)

        async with self._registry.locks.hold(connection_id):
            # The connection may have disconnected while the access check was pending
            if connection_id not in self._registry:
                return JoinResult(
                    room_id=room_id,
                    joined=False,
                    error=ConnectionNotFound(
                        f"Connection {connection_id} closed during join",
                        connection_id=connection_id,
                    ),
                )
            async with self._locks.hold(room_id):
                already_member = self._add(connection, room_id)

        if not already_member:
            logger.info(
                f"User {connection.user_id} joined room {room_id} "
                f"(room_size={self.get_room_count(room_id)})"
            )
        return JoinResult(room_id=room_id, joined=True, already_member=already_member)

    async def leave(self, connection_id: str, room_id: str) -> bool:
        """
        Remove a connection from a room.

        Inbox rooms are kept for the life of the connection, so leaving
        one is a no-op. So is leaving a malformed room ID.

        Returns:
            bool: True if the connection was a member and has been removed
        """
        try:
            room_id = canonical_room(room_id)
        except CollaborationError:
            return False
        if room_id.startswith(f"{USER_ROOM}:"):
            return False

        async with self._registry.locks.hold(connection_id):
            connection = self._registry.get(connection_id)
            if connection is None:
                return False
            async with self._locks.hold(room_id):
                removed = self._remove(connection, room_id)

        if removed:
            logger.info(
                f"User {connection.user_id} left room {room_id} "
                f"(room_size={self.get_room_count(room_id)})"
            )
        return removed

    async def close_room(self, room_id: str) -> set[str]:
        """
        Tear down a room, forcing every member out.

        Returns:
            set[str]: The connection IDs that were members
        """
        async with self._locks.hold(room_id):
            members = self._rooms.pop(room_id, set())
            for connection_id in members:
                connection = self._registry.get(connection_id)
                if connection is not None:
                    connection.rooms.discard(room_id)

        if members:
            logger.info(f"Room {room_id} closed, {len(members)} members removed")
        return members

    def _add(self, connection: ConnectionRecord, room_id: str) -> bool:
        """Add membership on both sides. Caller holds the room lock. Returns True if already a member."""
        if connection.connection_id not in self._registry:
            raise RegistryInvariantError(
                f"Refusing to add unregistered connection {connection.connection_id} to {room_id}",
                room_id=room_id,
            )
        members = self._rooms.setdefault(room_id, set())
        already_member = connection.connection_id in members
        members.add(connection.connection_id)
        connection.rooms.add(room_id)
        return already_member

    def _remove(self, connection: ConnectionRecord, room_id: str) -> bool:
        """Remove membership on both sides. Caller holds the room lock."""
        connection.rooms.discard(room_id)
        members = self._rooms.get(room_id)
        if not members or connection.connection_id not in members:
            return False
        members.discard(connection.connection_id)
        if not members:
            del self._rooms[room_id]
        return True

    async def _join_inbox(self, connection: ConnectionRecord) -> None:
        """Registry hook: every connection joins its own user's inbox."""
        room_id = get_user_room(connection.user_id)
        async with self._locks.hold(room_id):
            self._add(connection, room_id)

    async def _evict(self, connection: ConnectionRecord) -> None:
        """Registry hook: remove a departing connection from every room it joined."""
        for room_id in list(connection.rooms):
            async with self._locks.hold(room_id):
                if not self._remove(connection, room_id):
                    # Connection listed a room that did not list it back
                    logger.error(
                        f"Registry invariant violated: connection "
                        f"{connection.connection_id} not in room {room_id}"
                    )
        connection.rooms.clear()

