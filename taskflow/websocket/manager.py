"""WebSocket transport for the collaboration hub.

This module binds FastAPI WebSockets to hub connections:
- Accepts sockets and registers them with the hub under a fresh ID
- Per-user connection limit (DDoS protection)
- One outbound queue and writer task per socket, so each connection
  receives messages in exactly the order the hub queued them
- Graceful disconnect handling
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID, uuid4

from fastapi import WebSocket

from ..config import settings
from ..database import async_session_maker
from ..services.task_store import SqlTaskStore
from .errors import DuplicateConnection
from .hub import CLOSE_DUPLICATE_CONNECTION, CollaborationHub
from .locks import KeyedLock

logger = logging.getLogger(__name__)

CLOSE_TOO_MANY_CONNECTIONS = 4029
CLOSE_INTERNAL_ERROR = 1011


@dataclass
class WebSocketConnection:
    """A live socket bound to a hub connection ID."""

    websocket: WebSocket
    connection_id: str
    user_id: UUID
    queue: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(settings.ws_outbound_queue_size))
    writer: Optional[asyncio.Task] = None

    def __hash__(self) -> int:
        return hash(self.connection_id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WebSocketConnection):
            return False
        return self.connection_id == other.connection_id


class ConnectionManager:
    """
    WebSocket connection manager.

    Implements the hub's outbox: ``deliver`` only enqueues, and a writer
    task per socket drains the queue with ``send_json``. A full queue
    means the client is not keeping up; the message is dropped and
    counted as a failed delivery.
    """

    def __init__(self, hub: Optional[CollaborationHub] = None) -> None:
        """Initialize the connection manager."""
        # Map of connection_id -> socket wrapper
        self._sockets: dict[str, WebSocketConnection] = {}
        # Serializes the limit check and registration of one user's handshakes
        self._handshakes = KeyedLock()
        self.hub = hub

    def bind(self, hub: CollaborationHub) -> None:
        """Attach the hub this manager delivers for."""
        self.hub = hub

    @property
    def total_connections(self) -> int:
        """Get total number of open sockets."""
        return len(self._sockets)

    def get_connection(self, connection_id: str) -> Optional[WebSocketConnection]:
        return self._sockets.get(connection_id)

    async def connect(
        self,
        websocket: WebSocket,
        user_id: UUID,
    ) -> Optional[WebSocketConnection]:
        """
        Accept a WebSocket and register it with the hub.

        Args:
            websocket: The WebSocket instance
            user_id: The authenticated user's ID

        Returns:
            WebSocketConnection, or None if the connection was rejected
        """
        async with self._handshakes.hold(user_id):
            current_connections = len(self.hub.registry.connections_of(user_id))
            if current_connections >= settings.ws_max_connections_per_user:
                logger.warning(
                    f"DDoS protection: connection limit reached for user {user_id}: "
                    f"{current_connections}/{settings.ws_max_connections_per_user}"
                )
                await websocket.close(code=CLOSE_TOO_MANY_CONNECTIONS, reason="Too many connections")
                return None

            await websocket.accept()

            connection = WebSocketConnection(
                websocket=websocket,
                connection_id=uuid4().hex,
                user_id=user_id,
            )
            self._sockets[connection.connection_id] = connection
            connection.writer = asyncio.create_task(self._write_loop(connection))

            try:
                await self.hub.connect(connection.connection_id, user_id)
            except DuplicateConnection as e:
                logger.error(f"Rejecting connection for user {user_id}: {e.message}")
                await self.close(connection.connection_id, CLOSE_DUPLICATE_CONNECTION, e.code)
                return None
            except Exception as e:
                logger.error(f"Registering connection for user {user_id} failed: {e}", exc_info=True)
                await self.hub.disconnect(connection.connection_id, reason="error")
                await self.close(connection.connection_id, CLOSE_INTERNAL_ERROR, "Internal error")
                return None

        logger.info(
            f"WebSocket connected: user={user_id}, connection={connection.connection_id}, "
            f"total_connections={self.total_connections}"
        )
        return connection

    async def disconnect(self, connection_id: str, reason: str = "disconnected") -> None:
        """
        Unregister a socket from the hub and stop its writer.

        Args:
            connection_id: The connection to disconnect
            reason: Reported to the task rooms the connection leaves
        """
        await self.hub.disconnect(connection_id, reason=reason)
        await self._drop(connection_id)

    def deliver(self, connection_id: str, message: dict[str, Any]) -> bool:
        """
        Queue a message for a socket.

        Returns:
            bool: True if queued, False if the socket is gone or backed up
        """
        connection = self._sockets.get(connection_id)
        if connection is None:
            return False
        try:
            connection.queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                f"Outbound queue full for connection {connection_id}, "
                f"dropping {message.get('type')}"
            )
            return False
        return True

    async def close(self, connection_id: str, code: int, reason: str) -> None:
        """Close a socket from the server side."""
        connection = await self._drop(connection_id)
        if connection is None:
            return
        try:
            await connection.websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Close failed for connection {connection_id}: {e}")

    async def send_personal(self, connection: WebSocketConnection, message: dict[str, Any]) -> bool:
        """
        Send a message directly, bypassing the queue.

        Returns:
            bool: True if sent successfully, False otherwise
        """
        try:
            await connection.websocket.send_json(message)
            return True
        except Exception:
            return False

    async def _write_loop(self, connection: WebSocketConnection) -> None:
        while True:
            message = await connection.queue.get()
            if not await self.send_personal(connection, message):
                logger.debug(f"Writer stopped for connection {connection.connection_id}")
                return

    async def _drop(self, connection_id: str) -> Optional[WebSocketConnection]:
        connection = self._sockets.pop(connection_id, None)
        if connection is None:
            return None
        if connection.writer is not None and connection.writer is not asyncio.current_task():
            connection.writer.cancel()
            try:
                await connection.writer
            except asyncio.CancelledError:
                pass
        return connection


# Global singleton instances
manager = ConnectionManager()
collaboration_hub = CollaborationHub(
    store=SqlTaskStore(async_session_maker),
    outbox=manager,
    access_check_timeout=settings.access_check_timeout,
    heartbeat_timeout=settings.heartbeat_timeout,
    heartbeat_interval=settings.heartbeat_interval,
)
manager.bind(collaboration_hub)
