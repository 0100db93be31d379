"""Access policy for task collaboration.

Permission Model:
- Owner: implicitly admin, every action is granted
- Assignee: view and edit, never admin (assignees cannot be restricted below edit)
- Shared user: granted when the share permission ranks at or above the
  required one (view < edit < admin)
- Anyone else: denied

Decisions are pure functions of the task snapshot and are never cached,
since sharing can change between two requests.
"""

from typing import Union
from uuid import UUID

from ..schemas.task import Permission, TaskRecord

PERMISSION_RANK: dict[Permission, int] = {
    Permission.VIEW: 0,
    Permission.EDIT: 1,
    Permission.ADMIN: 2,
}

# Permissions an assignee holds regardless of any share grant
ASSIGNEE_PERMISSIONS = frozenset({Permission.VIEW, Permission.EDIT})


class TaskAction:
    """Permission required by each privileged task action."""

    VIEW = Permission.VIEW
    COMMENT = Permission.VIEW
    UPDATE = Permission.EDIT
    CHANGE_STATUS = Permission.EDIT
    DELETE = Permission.ADMIN
    SHARE = Permission.ADMIN
    INVITE = Permission.ADMIN


def evaluate(
    task: TaskRecord,
    actor_id: UUID,
    required: Union[Permission, str],
) -> bool:
    """
    Decide whether an actor may perform an action on a task.

    Rules are checked in order and the first match wins.

    Args:
        task: The task snapshot fetched from the task store
        actor_id: The requesting user's ID
        required: The permission the action needs

    Returns:
        bool: True if the action is permitted
    """
    required = Permission(required)

    if actor_id == task.owner_id:
        return True

    if any(a.user_id == actor_id for a in task.assignees):
        return required in ASSIGNEE_PERMISSIONS

    for share in task.shared_with:
        if share.user_id == actor_id:
            return PERMISSION_RANK[share.permission] >= PERMISSION_RANK[required]

    return False


def effective_permission(task: TaskRecord, actor_id: UUID) -> Permission | None:
    """
    Get the highest permission an actor holds on a task.

    Returns:
        The highest granted Permission, or None if the actor has no access.
    """
    for permission in sorted(PERMISSION_RANK, key=PERMISSION_RANK.get, reverse=True):
        if evaluate(task, actor_id, permission):
            return permission
    return None
