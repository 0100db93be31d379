"""Task SQLAlchemy models: tasks, assignees and share grants."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from ..database import Base


class Task(Base):
    """
    Task model.

    Only the columns the collaboration core reads are mapped here:
    ownership, assignment and sharing for access decisions, plus
    title/status/due date for notification payloads.

    Attributes:
        id: Unique identifier (UUID)
        owner_id: FK to the owning user
        title: Task title
        status: One of todo, in-progress, review, completed, cancelled
        due_date: Optional due date
        assignees: Assigned users with their role
        shares: Share grants with their permission level
    """

    __tablename__ = "tasks"
    __allow_unmapped__ = True

    id = Column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )
    owner_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    title = Column(
        String(200),
        nullable=False,
    )
    status = Column(
        String(20),
        nullable=False,
        default="todo",
    )
    due_date = Column(
        DateTime,
        nullable=True,
    )

    created_at = Column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    assignees = relationship(
        "TaskAssignee",
        back_populates="task",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    shares = relationship(
        "TaskShare",
        back_populates="task",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        """String representation of Task."""
        return f"<Task(id={self.id}, title={self.title}, status={self.status})>"


class TaskAssignee(Base):
    """Assignment of a user to a task (role: assignee, reviewer, observer)."""

    __tablename__ = "task_assignees"
    __table_args__ = (UniqueConstraint("task_id", "user_id"),)

    id = Column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )
    task_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role = Column(
        String(20),
        nullable=False,
        default="assignee",
    )
    assigned_at = Column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    task = relationship("Task", back_populates="assignees")


class TaskShare(Base):
    """Share grant on a task (permission: view, edit, admin)."""

    __tablename__ = "task_shares"
    __table_args__ = (UniqueConstraint("task_id", "user_id"),)

    id = Column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )
    task_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    permission = Column(
        String(10),
        nullable=False,
        default="view",
    )
    shared_by = Column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    shared_at = Column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    task = relationship("Task", back_populates="shares")
