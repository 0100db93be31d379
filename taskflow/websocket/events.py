"""Collaboration events and WebSocket message types.

Events are transient: the core never stores them. Each event knows its
message type and how to render itself as the ``{"type", "data"}`` wire
message; who receives it is decided by the router.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional
from uuid import UUID

from ..schemas.task import Permission
from .room_auth import get_task_room, get_user_room


class MessageType(str, Enum):
    """WebSocket message types."""

    # Connection events
    CONNECTED = "connected"
    ERROR = "error"

    # Room events (inbound requests and their replies)
    JOIN_ROOM = "join_room"
    LEAVE_ROOM = "leave_room"
    ROOM_JOINED = "room_joined"
    JOIN_DENIED = "join_denied"
    ROOM_LEFT = "room_left"

    # Task events
    TASK_CREATED = "task_created"
    TASK_UPDATED = "task_updated"
    TASK_DELETED = "task_deleted"
    TASK_STATUS_CHANGED = "task_status_changed"
    COMMENT_ADDED = "comment_added"

    # Collaboration events
    USER_TYPING = "user_typing"
    USER_ACTIVITY = "user_activity"
    USER_JOINED_ROOM = "user_joined_room"
    USER_LEFT_ROOM = "user_left_room"
    COLLABORATION_INVITED = "collaboration_invited"
    INVITE_SENT = "invite_sent"
    PRESENCE_CHANGED = "presence_changed"

    # Notification events
    NOTIFICATION = "notification"

    # Client-pushed requests
    TASK_UPDATE = "task_update"
    TASK_STATUS_CHANGE = "task_status_change"
    TASK_COMMENT = "task_comment"
    TASK_TYPING = "task_typing"
    TASK_ACTIVITY = "task_activity"
    COLLABORATION_INVITE = "collaboration_invite"

    # Keepalive
    PING = "ping"
    PONG = "pong"
    HEARTBEAT = "heartbeat"


class PresenceStatus(str, Enum):
    """Online status of a user as seen by collaborators."""

    ONLINE = "online"
    OFFLINE = "offline"


def utcnow() -> datetime:
    return datetime.utcnow()


@dataclass(frozen=True, kw_only=True)
class Event:
    """
    Base event.

    Attributes:
        user_id: The user who originated the event
        connection_id: The originating connection, if the event came from a client
        timestamp: When the event was generated
    """

    type: ClassVar[MessageType]

    user_id: UUID
    connection_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    def payload(self) -> dict[str, Any]:
        return {}

    def to_message(self) -> dict[str, Any]:
        """Render the event as an outbound WebSocket message."""
        return {
            "type": self.type.value,
            "data": {
                **self.payload(),
                "user_id": str(self.user_id),
                "timestamp": self.timestamp.isoformat(),
            },
        }


@dataclass(frozen=True, kw_only=True)
class TaskEvent(Event):
    """Event scoped to one task."""

    task_id: UUID

    @property
    def room_id(self) -> str:
        return get_task_room(self.task_id)

    def payload(self) -> dict[str, Any]:
        return {"task_id": str(self.task_id)}


@dataclass(frozen=True, kw_only=True)
class TaskCreated(TaskEvent):
    type: ClassVar[MessageType] = MessageType.TASK_CREATED

    task: dict[str, Any] = field(default_factory=dict)

    def payload(self) -> dict[str, Any]:
        return {**super().payload(), "task": self.task}


@dataclass(frozen=True, kw_only=True)
class TaskUpdated(TaskEvent):
    type: ClassVar[MessageType] = MessageType.TASK_UPDATED

    fields: dict[str, Any] = field(default_factory=dict)

    def payload(self) -> dict[str, Any]:
        return {**super().payload(), "fields": self.fields}


@dataclass(frozen=True, kw_only=True)
class TaskDeleted(TaskEvent):
    type: ClassVar[MessageType] = MessageType.TASK_DELETED


@dataclass(frozen=True, kw_only=True)
class TaskStatusChanged(TaskEvent):
    type: ClassVar[MessageType] = MessageType.TASK_STATUS_CHANGED

    from_status: str
    to_status: str

    def payload(self) -> dict[str, Any]:
        return {
            **super().payload(),
            "from_status": self.from_status,
            "to_status": self.to_status,
        }


@dataclass(frozen=True, kw_only=True)
class CommentAdded(TaskEvent):
    type: ClassVar[MessageType] = MessageType.COMMENT_ADDED

    comment: dict[str, Any] = field(default_factory=dict)

    def payload(self) -> dict[str, Any]:
        return {**super().payload(), "comment": self.comment}


@dataclass(frozen=True, kw_only=True)
class TypingStatus(TaskEvent):
    """Ephemeral typing indicator. Never persisted."""

    type: ClassVar[MessageType] = MessageType.USER_TYPING

    is_typing: bool = False

    def payload(self) -> dict[str, Any]:
        return {**super().payload(), "is_typing": self.is_typing}


@dataclass(frozen=True, kw_only=True)
class UserActivity(TaskEvent):
    """What a room member is doing on the task, e.g. ``task_view``."""

    type: ClassVar[MessageType] = MessageType.USER_ACTIVITY

    activity: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def payload(self) -> dict[str, Any]:
        return {**super().payload(), "activity": self.activity, "metadata": self.metadata}


@dataclass(frozen=True, kw_only=True)
class UserJoinedRoom(TaskEvent):
    type: ClassVar[MessageType] = MessageType.USER_JOINED_ROOM

    def payload(self) -> dict[str, Any]:
        return {**super().payload(), "room_id": self.room_id}


@dataclass(frozen=True, kw_only=True)
class UserLeftRoom(TaskEvent):
    type: ClassVar[MessageType] = MessageType.USER_LEFT_ROOM

    reason: str = "left"

    def payload(self) -> dict[str, Any]:
        return {**super().payload(), "room_id": self.room_id, "reason": self.reason}


@dataclass(frozen=True, kw_only=True)
class CollaborationInvited(TaskEvent):
    """Invitation delivered to the invited user's inbox only."""

    type: ClassVar[MessageType] = MessageType.COLLABORATION_INVITED

    invited_user_id: UUID
    permission: Permission = Permission.VIEW
    task_title: Optional[str] = None

    @property
    def inbox_room_id(self) -> str:
        return get_user_room(self.invited_user_id)

    def payload(self) -> dict[str, Any]:
        return {
            **super().payload(),
            "invited_user_id": str(self.invited_user_id),
            "permission": self.permission.value,
            "task_title": self.task_title,
        }


@dataclass(frozen=True, kw_only=True)
class PresenceChanged(Event):
    """
    Online/offline change of ``user_id``.

    ``recipients`` is the collaborator set computed by the presence
    broadcaster; the event goes to each recipient's inbox.
    """

    type: ClassVar[MessageType] = MessageType.PRESENCE_CHANGED

    status: PresenceStatus
    recipients: frozenset[UUID] = frozenset()

    def payload(self) -> dict[str, Any]:
        return {"status": self.status.value}


def control_message(message_type: MessageType, **data: Any) -> dict[str, Any]:
    """Build a control message (acks, errors, pongs) sent to a single connection."""
    return {"type": message_type.value, "data": data}
