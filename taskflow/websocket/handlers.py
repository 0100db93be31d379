"""WebSocket event handlers.

Two directions:
- ``route_incoming_message`` turns client frames into hub operations
- ``handle_*`` functions are called by the request path after a task
  change is committed, and publish the resulting event
"""

import logging
from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from ..schemas.task import Permission
from .errors import CollaborationError, InternalError, InvalidMessage, RegistryInvariantError
from .events import (
    CollaborationInvited,
    CommentAdded,
    MessageType,
    TaskCreated,
    TaskDeleted,
    TaskStatusChanged,
    TaskUpdated,
    TypingStatus,
    UserActivity,
)
from .hub import CollaborationHub
from .router import BroadcastResult

logger = logging.getLogger(__name__)


def _require(data: dict[str, Any], key: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        raise InvalidMessage(f"Missing field: {key}")
    return value


def _uuid(data: dict[str, Any], key: str) -> UUID:
    try:
        return UUID(str(_require(data, key)))
    except ValueError:
        raise InvalidMessage(f"Invalid UUID in field: {key}")


async def route_incoming_message(
    hub: CollaborationHub,
    connection_id: str,
    message: dict[str, Any],
) -> None:
    """
    Route an incoming WebSocket message to the hub.

    Any inbound message counts as a heartbeat. Failures are reported to
    the sending connection only and never propagate to the socket loop.

    Args:
        hub: The collaboration hub
        connection_id: The connection that sent the message
        message: The parsed ``{"type", "data"}`` message
    """
    message_type = message.get("type")
    data = message.get("data") or {}

    try:
        connection = hub.registry.lookup(connection_id)

        if message_type in (MessageType.PING.value, MessageType.HEARTBEAT.value):
            hub.heartbeat(connection_id)
            return

        hub.registry.touch(connection_id)

        if not isinstance(data, dict):
            raise InvalidMessage("Message data must be an object")

        logger.debug(f"Routing message: user={connection.user_id}, type={message_type}")

        if message_type == MessageType.JOIN_ROOM.value:
            await hub.join(connection_id, str(_require(data, "room_id")))

        elif message_type == MessageType.LEAVE_ROOM.value:
            await hub.leave(connection_id, str(_require(data, "room_id")))

        elif message_type == MessageType.TASK_UPDATE.value:
            updates = data.get("updates") or {}
            if not isinstance(updates, dict):
                raise InvalidMessage("updates must be an object")
            await hub.publish_from_client(
                connection_id,
                TaskUpdated(
                    user_id=connection.user_id,
                    connection_id=connection_id,
                    task_id=_uuid(data, "task_id"),
                    fields=updates,
                ),
            )

        elif message_type == MessageType.TASK_STATUS_CHANGE.value:
            await hub.publish_from_client(
                connection_id,
                TaskStatusChanged(
                    user_id=connection.user_id,
                    connection_id=connection_id,
                    task_id=_uuid(data, "task_id"),
                    from_status=str(data.get("from_status") or ""),
                    to_status=str(_require(data, "to_status")),
                ),
            )

        elif message_type == MessageType.TASK_COMMENT.value:
            content = str(_require(data, "content"))
            await hub.publish_from_client(
                connection_id,
                CommentAdded(
                    user_id=connection.user_id,
                    connection_id=connection_id,
                    task_id=_uuid(data, "task_id"),
                    comment={
                        "id": uuid4().hex,
                        "content": content,
                        "user_id": str(connection.user_id),
                        "created_at": datetime.utcnow().isoformat(),
                    },
                ),
            )

        elif message_type == MessageType.TASK_TYPING.value:
            await hub.publish_from_client(
                connection_id,
                TypingStatus(
                    user_id=connection.user_id,
                    connection_id=connection_id,
                    task_id=_uuid(data, "task_id"),
                    is_typing=bool(data.get("is_typing", False)),
                ),
            )

        elif message_type == MessageType.TASK_ACTIVITY.value:
            metadata = data.get("metadata") or {}
            if not isinstance(metadata, dict):
                raise InvalidMessage("metadata must be an object")
            await hub.publish_from_client(
                connection_id,
                UserActivity(
                    user_id=connection.user_id,
                    connection_id=connection_id,
                    task_id=_uuid(data, "task_id"),
                    activity=str(_require(data, "activity")),
                    metadata=metadata,
                ),
            )

        elif message_type == MessageType.COLLABORATION_INVITE.value:
            try:
                permission = Permission(data.get("permission", Permission.VIEW.value))
            except ValueError:
                raise InvalidMessage(f"Invalid permission: {data.get('permission')}")
            await hub.publish_from_client(
                connection_id,
                CollaborationInvited(
                    user_id=connection.user_id,
                    connection_id=connection_id,
                    task_id=_uuid(data, "task_id"),
                    invited_user_id=_uuid(data, "invited_user_id"),
                    permission=permission,
                ),
            )

        else:
            raise InvalidMessage(f"Unhandled message type: {message_type}")

    except RegistryInvariantError as e:
        logger.error(f"Registry invariant violated handling {message_type} from {connection_id}: {e.message}")
        hub.send_error(connection_id, e)
    except CollaborationError as e:
        logger.warning(
            f"Rejected {message_type} from connection {connection_id}: {e.code} {e.message}"
        )
        hub.send_error(connection_id, e)
    except Exception as e:
        logger.error(f"Unexpected error handling {message_type} from {connection_id}: {e}", exc_info=True)
        hub.send_error(connection_id, InternalError(f"Failed to handle {message_type}"))


# =============================================================================
# Server-side hooks (called after a task change is committed)
# =============================================================================


async def handle_task_created(
    hub: CollaborationHub,
    task_id: UUID | str,
    user_id: UUID,
    task_data: Optional[dict[str, Any]] = None,
) -> BroadcastResult:
    """
    Announce a new task to its creator's connections.

    Other users learn about the task when they are assigned or shared.
    """
    return await hub.publish(
        TaskCreated(user_id=user_id, task_id=UUID(str(task_id)), task=task_data or {})
    )


async def handle_task_update(
    hub: CollaborationHub,
    task_id: UUID | str,
    user_id: UUID,
    fields: dict[str, Any],
    connection_id: Optional[str] = None,
) -> BroadcastResult:
    """
    Broadcast updated task fields to the task room.

    Args:
        hub: The collaboration hub
        task_id: The task's UUID
        user_id: The user who made the change
        fields: The changed fields
        connection_id: The originating connection, left out of delivery

    Returns:
        BroadcastResult: Result of the broadcast operation
    """
    result = await hub.publish(
        TaskUpdated(
            user_id=user_id,
            connection_id=connection_id,
            task_id=UUID(str(task_id)),
            fields=fields,
        )
    )
    logger.info(f"Task updated: task_id={task_id}, recipients={result.recipients}")
    return result


async def handle_task_status_changed(
    hub: CollaborationHub,
    task_id: UUID | str,
    user_id: UUID,
    old_status: str,
    new_status: str,
    connection_id: Optional[str] = None,
) -> BroadcastResult:
    """Broadcast a status transition to the task room."""
    return await hub.publish(
        TaskStatusChanged(
            user_id=user_id,
            connection_id=connection_id,
            task_id=UUID(str(task_id)),
            from_status=old_status,
            to_status=new_status,
        )
    )


async def handle_task_deleted(
    hub: CollaborationHub,
    task_id: UUID | str,
    user_id: UUID,
) -> BroadcastResult:
    """
    Tell every task room member the task is gone, then close the room.

    The originator's own connections are included.
    """
    result = await hub.publish(TaskDeleted(user_id=user_id, task_id=UUID(str(task_id))))
    logger.info(f"Task deleted: task_id={task_id}, recipients={result.recipients}")
    return result


async def handle_comment_added(
    hub: CollaborationHub,
    task_id: UUID | str,
    user_id: UUID,
    comment: dict[str, Any],
    connection_id: Optional[str] = None,
) -> BroadcastResult:
    """Broadcast a persisted comment to the task room."""
    return await hub.publish(
        CommentAdded(
            user_id=user_id,
            connection_id=connection_id,
            task_id=UUID(str(task_id)),
            comment=comment,
        )
    )


async def handle_task_shared(
    hub: CollaborationHub,
    task_id: UUID | str,
    user_id: UUID,
    shared_with: UUID,
    permission: Permission,
    task_title: Optional[str] = None,
) -> BroadcastResult:
    """
    Invite a user after a share grant was committed.

    The request path has already checked that ``user_id`` holds admin.
    """
    result = await hub.publish(
        CollaborationInvited(
            user_id=user_id,
            task_id=UUID(str(task_id)),
            invited_user_id=shared_with,
            permission=permission,
            task_title=task_title,
        )
    )
    logger.info(
        f"Task shared: task_id={task_id}, with={shared_with}, "
        f"permission={permission.value}, recipients={result.recipients}"
    )
    return result
