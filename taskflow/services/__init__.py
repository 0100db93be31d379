"""Business logic services."""

from .auth_service import (
    TokenData,
    authenticate_token,
    create_access_token,
    decode_access_token,
)
from .permission_service import (
    PERMISSION_RANK,
    TaskAction,
    effective_permission,
    evaluate,
)
from .task_store import SqlTaskStore, TaskStore, task_to_record

__all__ = [
    # Auth
    "TokenData",
    "authenticate_token",
    "create_access_token",
    "decode_access_token",
    # Access policy
    "PERMISSION_RANK",
    "TaskAction",
    "effective_permission",
    "evaluate",
    # Task store
    "SqlTaskStore",
    "TaskStore",
    "task_to_record",
]
