"""WebSocket module for real-time collaboration."""

from .errors import (
    AccessCheckTimeout,
    AccessDenied,
    CollaborationError,
    ConnectionNotFound,
    DuplicateConnection,
    InternalError,
    InvalidMessage,
    InvalidRoom,
    RegistryInvariantError,
    StoreUnavailable,
    TaskNotFound,
)
from .events import (
    CollaborationInvited,
    CommentAdded,
    Event,
    MessageType,
    PresenceChanged,
    PresenceStatus,
    TaskCreated,
    TaskDeleted,
    TaskEvent,
    TaskStatusChanged,
    TaskUpdated,
    TypingStatus,
    UserActivity,
    UserJoinedRoom,
    UserLeftRoom,
)
from .handlers import (
    handle_comment_added,
    handle_task_created,
    handle_task_deleted,
    handle_task_shared,
    handle_task_status_changed,
    handle_task_update,
    route_incoming_message,
)
from .hub import CollaborationHub
from .manager import ConnectionManager, WebSocketConnection, collaboration_hub, manager
from .presence import PresenceBroadcaster
from .registry import ConnectionRecord, ConnectionRegistry
from .room_auth import (
    canonical_room,
    check_room_access,
    check_user_active,
    get_task_room,
    get_user_room,
    parse_room,
)
from .rooms import JoinResult, RoomManager
from .router import BroadcastResult, EventRouter, Outbox

__all__ = [
    # Errors
    "AccessCheckTimeout",
    "AccessDenied",
    "CollaborationError",
    "ConnectionNotFound",
    "DuplicateConnection",
    "InternalError",
    "InvalidMessage",
    "InvalidRoom",
    "RegistryInvariantError",
    "StoreUnavailable",
    "TaskNotFound",
    # Events
    "CollaborationInvited",
    "CommentAdded",
    "Event",
    "MessageType",
    "PresenceChanged",
    "PresenceStatus",
    "TaskCreated",
    "TaskDeleted",
    "TaskEvent",
    "TaskStatusChanged",
    "TaskUpdated",
    "TypingStatus",
    "UserActivity",
    "UserJoinedRoom",
    "UserLeftRoom",
    # Handlers
    "handle_comment_added",
    "handle_task_created",
    "handle_task_deleted",
    "handle_task_shared",
    "handle_task_status_changed",
    "handle_task_update",
    "route_incoming_message",
    # Core components
    "BroadcastResult",
    "CollaborationHub",
    "ConnectionRecord",
    "ConnectionRegistry",
    "EventRouter",
    "JoinResult",
    "Outbox",
    "PresenceBroadcaster",
    "RoomManager",
    # Transport
    "ConnectionManager",
    "WebSocketConnection",
    "collaboration_hub",
    "manager",
    # Room helpers
    "canonical_room",
    "check_room_access",
    "check_user_active",
    "get_task_room",
    "get_user_room",
    "parse_room",
]
