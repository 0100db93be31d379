"""Pydantic schemas for the task view consumed by the collaboration core."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class Permission(str, Enum):
    """Share permission levels, lowest first."""

    VIEW = "view"
    EDIT = "edit"
    ADMIN = "admin"


class AssigneeRole(str, Enum):
    """Role of an assigned user."""

    ASSIGNEE = "assignee"
    REVIEWER = "reviewer"
    OBSERVER = "observer"


class TaskStatus(str, Enum):
    """Task status enumeration."""

    TODO = "todo"
    IN_PROGRESS = "in-progress"
    REVIEW = "review"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskAssigneeRecord(BaseModel):
    """An assigned user and their role."""

    user_id: UUID = Field(..., description="Assigned user ID")
    role: AssigneeRole = Field(AssigneeRole.ASSIGNEE, description="Assignment role")

    model_config = ConfigDict(from_attributes=True)


class TaskShareRecord(BaseModel):
    """A share grant and its permission level."""

    user_id: UUID = Field(..., description="User the task is shared with")
    permission: Permission = Field(Permission.VIEW, description="Granted permission")

    model_config = ConfigDict(from_attributes=True)


class TaskRecord(BaseModel):
    """
    Read-only snapshot of a task as the collaboration core sees it.

    Ownership, assignment and sharing drive access decisions; title,
    status and due date are only used to render notifications.
    """

    id: UUID
    owner_id: UUID
    title: str = Field(..., min_length=1, max_length=200)
    status: TaskStatus = TaskStatus.TODO
    due_date: Optional[datetime] = None
    assignees: list[TaskAssigneeRecord] = Field(default_factory=list)
    shared_with: list[TaskShareRecord] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True, frozen=True)

    def participants(self) -> set[UUID]:
        """Owner, assignees and shared-with users of this task."""
        users = {self.owner_id}
        users.update(a.user_id for a in self.assignees)
        users.update(s.user_id for s in self.shared_with)
        return users
