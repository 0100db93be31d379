"""Collaboration hub.

Wires the connection registry, room manager, fan-out router and presence
broadcaster together and exposes the operations the transport calls:
connect/disconnect, join/leave, heartbeat, and publishing of client-pushed
and server-side events.

Client-pushed events are authorized here against a fresh read of the
task; server-side events come from the request path after the change was
committed and are published as-is.
"""

import asyncio
import dataclasses
import logging
import time
from typing import Optional
from uuid import UUID

from ..schemas.task import Permission, TaskRecord
from ..services.permission_service import TaskAction
from ..services.task_store import TaskStore
from .errors import AccessDenied, CollaborationError, InvalidMessage
from .events import (
    CollaborationInvited,
    CommentAdded,
    Event,
    MessageType,
    TaskEvent,
    TaskStatusChanged,
    TaskUpdated,
    TypingStatus,
    UserJoinedRoom,
    UserActivity,
    UserLeftRoom,
    control_message,
)
from .presence import PresenceBroadcaster
from .registry import ConnectionRecord, ConnectionRegistry
from .room_auth import (
    TASK_ROOM,
    authorize_task_action,
    canonical_room,
    check_user_active,
    parse_room,
)
from .rooms import JoinResult, RoomManager
from .router import BroadcastResult, EventRouter, Outbox

logger = logging.getLogger(__name__)

# Permission each client-pushed event needs on its task
CLIENT_EVENT_PERMISSIONS: dict[type[TaskEvent], Permission] = {
    TaskUpdated: TaskAction.UPDATE,
    TaskStatusChanged: TaskAction.CHANGE_STATUS,
    CommentAdded: TaskAction.COMMENT,
    CollaborationInvited: TaskAction.INVITE,
}

# WebSocket close codes
CLOSE_HEARTBEAT_TIMEOUT = 4008
CLOSE_DUPLICATE_CONNECTION = 4009


class CollaborationHub:
    """
    Entry point of the real-time collaboration core.

    One hub per server instance. All shared mutable state (connections
    and room membership) lives in the registry and room manager and is
    only mutated through their APIs.
    """

    def __init__(
        self,
        store: TaskStore,
        outbox: Outbox,
        access_check_timeout: Optional[float] = None,
        heartbeat_timeout: Optional[float] = None,
        sweep_interval: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
    ) -> None:
        """
        Initialize the hub.

        Args:
            store: Task store used for access checks and collaborator queries
            outbox: Transport that writes queued messages to connections
            access_check_timeout: Seconds to wait for task store reads
            heartbeat_timeout: Seconds without heartbeat before a connection is dropped
            sweep_interval: Seconds between stale-connection sweeps
            heartbeat_interval: Ping cadence advertised to clients on connect
        """
        self.store = store
        self.registry = ConnectionRegistry()
        self.rooms = RoomManager(self.registry, store, access_check_timeout)
        self.router = EventRouter(self.rooms, outbox)
        self.presence = PresenceBroadcaster(
            self.registry, store, self.router, access_check_timeout
        )
        self._outbox = outbox
        self._timeout = access_check_timeout
        self._heartbeat_timeout = heartbeat_timeout
        self._heartbeat_interval = heartbeat_interval
        self._sweep_interval = sweep_interval or (heartbeat_timeout / 3 if heartbeat_timeout else None)
        self._sweeper: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self, connection_id: str, user_id: UUID) -> ConnectionRecord:
        """
        Register an authenticated connection.

        The connection joins its inbox room, collaborators are told the
        user is online if this is the user's first connection, and the
        client receives a ``connected`` message.

        Raises:
            DuplicateConnection: If connection_id is already registered
        """
        connection = await self.registry.register(connection_id, user_id)

        self.router.send(
            connection_id,
            control_message(
                MessageType.CONNECTED,
                connection_id=connection_id,
                user_id=str(user_id),
                connected_at=connection.connected_at.isoformat(),
                rooms=sorted(connection.rooms),
                heartbeat_interval=self._heartbeat_interval,
            ),
        )
        return connection

    async def disconnect(
        self,
        connection_id: str,
        reason: str = "disconnected",
    ) -> Optional[ConnectionRecord]:
        """
        Unregister a connection and tell its task rooms it left.

        Idempotent. Collaborators are told the user went offline when
        this was the user's last connection.

        Returns:
            The removed connection as it stood before cleanup, or None
        """
        removed = await self.registry.unregister(connection_id)
        if removed is None:
            return None

        for room_id in sorted(removed.rooms):
            room_type, task_id = parse_room(room_id)
            if room_type == TASK_ROOM:
                await self.router.publish(
                    UserLeftRoom(
                        user_id=removed.user_id,
                        connection_id=connection_id,
                        task_id=task_id,
                        reason=reason,
                    )
                )

        logger.info(
            f"Connection closed: id={connection_id}, user={removed.user_id}, "
            f"reason={reason}, rooms_left={len(removed.rooms)}"
        )
        return removed

    async def is_user_active(self, user_id: UUID) -> bool:
        """
        Whether a user may open a connection at all.

        Raises:
            AccessCheckTimeout, StoreUnavailable
        """
        return await check_user_active(self.store, user_id, self._timeout)

    def heartbeat(self, connection_id: str) -> None:
        """
        Record a client heartbeat and answer with ``pong``.

        Raises:
            ConnectionNotFound: If the connection is not registered
        """
        self.registry.touch(connection_id)
        self.router.send(connection_id, control_message(MessageType.PONG))

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    async def join(self, connection_id: str, room_id: str) -> JoinResult:
        """
        Join a room and reply to the requester.

        Sends ``room_joined`` on success or ``join_denied`` on failure to
        the requesting connection only. Other task room members are told
        about first-time joins.
        """
        result = await self.rooms.join(connection_id, room_id)

        if not result.joined:
            self.router.send(
                connection_id,
                control_message(
                    MessageType.JOIN_DENIED,
                    room_id=result.room_id,
                    reason=result.reason,
                    message=result.error.message if result.error else None,
                    retryable=result.retryable,
                ),
            )
            return result

        self.router.send(
            connection_id,
            control_message(
                MessageType.ROOM_JOINED,
                room_id=result.room_id,
                user_count=len(self.rooms.get_room_users(result.room_id)),
            ),
        )

        room_type, resource_id = parse_room(result.room_id)
        if room_type == TASK_ROOM and not result.already_member:
            connection = self.registry.lookup(connection_id)
            await self.router.publish(
                UserJoinedRoom(
                    user_id=connection.user_id,
                    connection_id=connection_id,
                    task_id=resource_id,
                )
            )
        return result

    async def leave(self, connection_id: str, room_id: str) -> bool:
        """
        Leave a room. No-op if the connection is not a member.

        Returns:
            bool: True if the connection left the room
        """
        connection = self.registry.get(connection_id)
        left = await self.rooms.leave(connection_id, room_id)
        if not left:
            return False

        room_id = canonical_room(room_id)
        self.router.send(connection_id, control_message(MessageType.ROOM_LEFT, room_id=room_id))

        room_type, resource_id = parse_room(room_id)
        if room_type == TASK_ROOM:
            await self.router.publish(
                UserLeftRoom(
                    user_id=connection.user_id,
                    connection_id=connection_id,
                    task_id=resource_id,
                )
            )
        return True

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish(self, event: Event) -> BroadcastResult:
        """Publish a server-side event for a change that is already committed."""
        return await self.router.publish(event)

    async def publish_from_client(self, connection_id: str, event: TaskEvent) -> BroadcastResult:
        """
        Authorize and publish an event pushed by a client.

        Typing indicators and activity updates only require membership of
        the task room.
        Other events need the permission listed in
        CLIENT_EVENT_PERMISSIONS, checked against a fresh read of the task.

        Raises:
            AccessDenied, TaskNotFound, AccessCheckTimeout, StoreUnavailable,
            InvalidMessage, ConnectionNotFound
        """
        connection = self.registry.lookup(connection_id)
        if event.user_id != connection.user_id or event.connection_id != connection_id:
            raise AccessDenied("Event originator does not match connection")

        if isinstance(event, (TypingStatus, UserActivity)):
            if event.room_id not in connection.rooms:
                raise AccessDenied(
                    f"Join {event.room_id} before sending {event.type.value}",
                    task_id=event.task_id,
                )
            return await self.router.publish(event)

        required = CLIENT_EVENT_PERMISSIONS.get(type(event))
        if required is None:
            raise InvalidMessage(f"Clients cannot publish {event.type.value} events")

        task = await authorize_task_action(
            self.store, connection.user_id, event.task_id, required, self._timeout
        )

        if isinstance(event, CollaborationInvited):
            event = dataclasses.replace(event, task_title=task.title)

        result = await self.router.publish(event)

        if isinstance(event, TaskStatusChanged):
            self._notify_status_change(task, event)
        elif isinstance(event, CollaborationInvited):
            self.router.send(
                connection_id,
                control_message(
                    MessageType.INVITE_SENT,
                    task_id=str(event.task_id),
                    invited_user_id=str(event.invited_user_id),
                    delivered=result.recipients,
                ),
            )

        logger.info(
            f"Client event {event.type.value} on task {event.task_id} "
            f"by user {connection.user_id}: recipients={result.recipients}"
        )
        return result

    def send_error(self, connection_id: str, error: CollaborationError) -> bool:
        """Report a failed operation to the requesting connection only."""
        return self.router.send(connection_id, control_message(MessageType.ERROR, **error.to_payload()))

    def _notify_status_change(self, task: TaskRecord, event: TaskStatusChanged) -> int:
        """Send a status-change notification to every other participant's inbox."""
        message = control_message(
            MessageType.NOTIFICATION,
            notification_type="task_status_changed",
            message=f'Task "{task.title}" status changed to {event.to_status}',
            task_id=str(task.id),
            from_user_id=str(event.user_id),
            timestamp=event.timestamp.isoformat(),
        )
        recipients = 0
        for user_id in sorted(task.participants() - {event.user_id}, key=str):
            recipients += self.router.send_to_user(user_id, message)
        return recipients

    # ------------------------------------------------------------------
    # Heartbeat sweeping
    # ------------------------------------------------------------------

    async def sweep_stale(self) -> list[str]:
        """
        Drop connections whose heartbeat is older than the timeout.

        Timed-out connections get the same cleanup as an explicit
        disconnect, and their transport is closed.

        Returns:
            list[str]: IDs of the connections that were dropped
        """
        if not self._heartbeat_timeout:
            return []

        cutoff = time.monotonic() - self._heartbeat_timeout
        stale = self.registry.stale(cutoff)
        for connection_id in stale:
            logger.info(f"Heartbeat timeout: connection={connection_id}")
            await self.disconnect(connection_id, reason="timeout")
            await self._outbox.close(connection_id, CLOSE_HEARTBEAT_TIMEOUT, "Heartbeat timeout")
        return stale

    @property
    def is_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    async def start(self) -> None:
        """Start the background heartbeat sweeper."""
        if self.is_running or not self._sweep_interval:
            return
        self._sweeper = asyncio.create_task(self._sweep_loop())
        logger.info(f"Heartbeat sweeper started (interval={self._sweep_interval}s)")

    async def stop(self) -> None:
        """Stop the background heartbeat sweeper."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
        logger.info("Heartbeat sweeper stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.sweep_stale()
            except Exception as e:
                logger.error(f"Heartbeat sweep failed: {e}")
