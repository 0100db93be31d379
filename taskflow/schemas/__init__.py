"""Pydantic schemas."""

from .task import (
    AssigneeRole,
    Permission,
    TaskAssigneeRecord,
    TaskRecord,
    TaskShareRecord,
    TaskStatus,
)

__all__ = [
    "AssigneeRole",
    "Permission",
    "TaskAssigneeRecord",
    "TaskRecord",
    "TaskShareRecord",
    "TaskStatus",
]
