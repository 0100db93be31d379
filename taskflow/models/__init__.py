"""SQLAlchemy ORM models package."""

from .task import Task, TaskAssignee, TaskShare
from .user import User

__all__ = [
    "Task",
    "TaskAssignee",
    "TaskShare",
    "User",
]
