"""Room identifiers and join authorization.

Room ID formats:
- user:{uuid} - A user's inbox room (only the user's own connections)
- task:{uuid} - A task collaboration room (requires view access)

Access is checked at join time only and never cached: the task is
re-read from the store on every join so sharing changes apply immediately.
"""

import asyncio
import logging
from typing import Optional
from uuid import UUID

from ..schemas.task import Permission, TaskRecord
from ..services.permission_service import evaluate
from ..services.task_store import TaskStore
from .errors import (
    AccessCheckTimeout,
    AccessDenied,
    CollaborationError,
    InvalidRoom,
    StoreUnavailable,
    TaskNotFound,
)

logger = logging.getLogger(__name__)

USER_ROOM = "user"
TASK_ROOM = "task"


def get_user_room(user_id: UUID | str) -> str:
    """
    Get the inbox room ID for a user.

    Returns:
        str: Room ID in format 'user:{uuid}'
    """
    return f"{USER_ROOM}:{user_id}"


def get_task_room(task_id: UUID | str) -> str:
    """
    Get the collaboration room ID for a task.

    Returns:
        str: Room ID in format 'task:{uuid}'
    """
    return f"{TASK_ROOM}:{task_id}"


def parse_room(room_id: str) -> tuple[str, UUID]:
    """
    Split a room ID into its type and resource UUID.

    Raises:
        InvalidRoom: If the format or room type is not recognised
    """
    if not room_id or ":" not in room_id:
        raise InvalidRoom(f"Invalid room format: {room_id}", room_id=room_id)

    room_type, resource_id_str = room_id.split(":", 1)
    if room_type not in (USER_ROOM, TASK_ROOM):
        raise InvalidRoom(f"Unknown room type: {room_type}", room_id=room_id)

    try:
        resource_id = UUID(resource_id_str)
    except ValueError:
        raise InvalidRoom(f"Invalid room ID format: {room_id}", room_id=room_id)

    return room_type, resource_id


def canonical_room(room_id: str) -> str:
    """
    Normalize a room ID to the form the router addresses.

    ``task:{UUID}`` in upper case, braces or ``urn:uuid:`` form all name the
    same room as the lowercase hyphenated ID.

    Raises:
        InvalidRoom: If the format or room type is not recognised
    """
    room_type, resource_id = parse_room(room_id)
    return f"{room_type}:{resource_id}"


async def _read_store(awaitable, timeout: Optional[float], description: str, **context):
    """Await a store read, turning timeouts and store failures into collaboration errors."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"[Room Auth] Task store timed out reading {description}")
        raise AccessCheckTimeout(f"Reading {description} timed out", **context)
    except CollaborationError:
        raise
    except Exception as e:
        logger.error(f"[Room Auth] Task store failed reading {description}: {e!r}")
        raise StoreUnavailable(f"Task store unavailable while reading {description}", **context)


async def fetch_task(
    store: TaskStore,
    task_id: UUID,
    timeout: Optional[float] = None,
) -> TaskRecord:
    """
    Read a task from the store within a bounded time.

    Raises:
        TaskNotFound: If the task does not exist
        AccessCheckTimeout: If the store did not answer within ``timeout``
        StoreUnavailable: If the store raised
    """
    task = await _read_store(
        store.find_by_id(task_id), timeout, f"task {task_id}", task_id=task_id
    )
    if task is None:
        raise TaskNotFound(f"Task {task_id} not found", task_id=task_id)
    return task


async def authorize_task_action(
    store: TaskStore,
    user_id: UUID,
    task_id: UUID,
    required: Permission,
    timeout: Optional[float] = None,
) -> TaskRecord:
    """
    Fetch a task and check that the user holds ``required`` on it.

    Returns:
        TaskRecord: The task snapshot the decision was made on

    Raises:
        TaskNotFound, AccessCheckTimeout, AccessDenied
    """
    task = await fetch_task(store, task_id, timeout)
    if not evaluate(task, user_id, required):
        logger.warning(
            f"[Room Auth] DENIED - user={user_id} lacks {required.value} on task={task_id}"
        )
        raise AccessDenied(
            f"Access denied: {required.value} permission required on task {task_id}",
            task_id=task_id,
        )
    return task


async def check_room_access(
    store: TaskStore,
    user_id: UUID,
    room_id: str,
    timeout: Optional[float] = None,
) -> None:
    """
    Check if a user may join a room.

    User rooms only admit their own user (no store read). Task rooms
    require view access on the task.

    Raises:
        InvalidRoom, AccessDenied, TaskNotFound, AccessCheckTimeout
    """
    room_type, resource_id = parse_room(room_id)

    if room_type == USER_ROOM:
        if resource_id != user_id:
            logger.warning(
                f"[Room Auth] DENIED - user={user_id} attempted foreign inbox {room_id}"
            )
            raise AccessDenied(f"Access denied to room: {room_id}", room_id=room_id)
        return

    await authorize_task_action(store, user_id, resource_id, Permission.VIEW, timeout)


async def check_user_active(
    store: TaskStore,
    user_id: UUID,
    timeout: Optional[float] = None,
) -> bool:
    """
    Whether a handshake user exists and has not been deactivated.

    Raises:
        AccessCheckTimeout, StoreUnavailable
    """
    return await _read_store(
        store.is_user_active(user_id), timeout, f"user {user_id}", user_id=user_id
    )
