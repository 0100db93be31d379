"""FastAPI application entry point."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from .config import settings
from .database import create_tables, engine
from .services.auth_service import authenticate_token
from .websocket import collaboration_hub, manager, route_incoming_message
from .websocket.errors import CollaborationError, InvalidMessage

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

CLOSE_UNAUTHENTICATED = 4001
CLOSE_TRY_AGAIN_LATER = 1013


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown tasks."""
    if settings.db_create_tables:
        await create_tables(engine)

    logger.info("Starting heartbeat sweeper...")
    await collaboration_hub.start()

    yield

    logger.info("Stopping heartbeat sweeper...")
    await collaboration_hub.stop()


app = FastAPI(
    title="TaskFlow Collaboration",
    description="Real-time task collaboration: rooms, presence and live task events",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    return {
        "status": "healthy",
        "websocket": {
            "connections": collaboration_hub.registry.total_connections,
            "rooms": collaboration_hub.rooms.total_rooms,
        },
        "sweeper": {
            "running": collaboration_hub.is_running,
        },
    }


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: str | None = None):
    """
    WebSocket endpoint for real-time collaboration.

    Authentication is done via query parameter since WebSocket
    doesn't support custom headers in the initial handshake
    from browser clients.

    Usage:
        ws://localhost:8000/ws?token=<jwt_token>
    """
    user_id = authenticate_token(token)
    if user_id is None:
        logger.debug("WebSocket connection attempt with missing or invalid token")
        await websocket.close(code=CLOSE_UNAUTHENTICATED, reason="Authentication required")
        return

    try:
        active = await collaboration_hub.is_user_active(user_id)
    except CollaborationError as e:
        logger.warning(f"Could not verify user {user_id} at handshake: {e.code}")
        await websocket.close(code=CLOSE_TRY_AGAIN_LATER, reason=e.code)
        return

    if not active:
        logger.info(f"WebSocket connection refused for unknown or inactive user: {user_id}")
        await websocket.close(code=CLOSE_UNAUTHENTICATED, reason="Invalid user")
        return

    connection = await manager.connect(websocket, user_id)
    if connection is None:
        return

    connection_id = connection.connection_id
    reason = "disconnected"

    try:
        while True:
            # Silent clients are dropped here as well as by the hub's sweeper
            try:
                raw_message = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=settings.heartbeat_timeout,
                )
            except asyncio.TimeoutError:
                logger.info(f"Connection timeout for user: {user_id}")
                reason = "timeout"
                break

            if len(raw_message) > settings.ws_max_message_size:
                logger.warning(
                    f"Message too large from user {user_id}: "
                    f"{len(raw_message)} bytes (max: {settings.ws_max_message_size})"
                )
                collaboration_hub.send_error(
                    connection_id,
                    InvalidMessage(
                        f"Message exceeds maximum size of {settings.ws_max_message_size} bytes"
                    ),
                )
                continue

            try:
                data = json.loads(raw_message)
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON from user {user_id}")
                collaboration_hub.send_error(connection_id, InvalidMessage("Invalid JSON format"))
                continue

            if not isinstance(data, dict):
                collaboration_hub.send_error(connection_id, InvalidMessage("Message must be an object"))
                continue

            await route_incoming_message(collaboration_hub, connection_id, data)

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnect for user: {user_id}")
    except Exception as e:
        logger.error(f"WebSocket exception for user {user_id}: {e}")
    finally:
        await manager.disconnect(connection_id, reason=reason)


def run() -> None:
    """Run the server with uvicorn."""
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
