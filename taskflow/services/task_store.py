"""Task store boundary used by the collaboration core.

The core only reads tasks: it never writes task fields. Writes happen in
the request path outside the core, which reacts to committed changes.
"""

import logging
from typing import Optional, Protocol
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ..models.task import Task, TaskAssignee, TaskShare
from ..models.user import User
from ..schemas.task import TaskAssigneeRecord, TaskRecord, TaskShareRecord

logger = logging.getLogger(__name__)


class TaskStore(Protocol):
    """Read interface the collaboration core requires from the task store."""

    async def find_by_id(self, task_id: UUID) -> Optional[TaskRecord]:
        """Return the task snapshot, or None if it does not exist."""
        ...

    async def collaborators_of(self, user_id: UUID) -> set[UUID]:
        """Return every user sharing ownership, assignment or a share grant with user_id."""
        ...

    async def is_user_active(self, user_id: UUID) -> bool:
        """Return True if the user exists and is active."""
        ...


def task_to_record(task: Task) -> TaskRecord:
    """Convert an ORM task (with assignees and shares loaded) to a TaskRecord."""
    return TaskRecord(
        id=task.id,
        owner_id=task.owner_id,
        title=task.title,
        status=task.status,
        due_date=task.due_date,
        assignees=[
            TaskAssigneeRecord(user_id=a.user_id, role=a.role)
            for a in task.assignees
        ],
        shared_with=[
            TaskShareRecord(user_id=s.user_id, permission=s.permission)
            for s in task.shares
        ],
    )


class SqlTaskStore:
    """
    SQLAlchemy-backed task store.

    Each call opens its own short-lived session so reads always see the
    latest committed sharing state.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        """
        Initialize the SqlTaskStore.

        Args:
            session_maker: Async session factory bound to the task database
        """
        self._session_maker = session_maker

    async def find_by_id(self, task_id: UUID) -> Optional[TaskRecord]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(Task)
                .where(Task.id == task_id)
                .options(selectinload(Task.assignees), selectinload(Task.shares))
            )
            task = result.scalar_one_or_none()
            if task is None:
                return None
            return task_to_record(task)

    async def collaborators_of(self, user_id: UUID) -> set[UUID]:
        """
        Collect collaborators across every task the user owns, is assigned
        to, or has been shared.

        Recomputed on each call; stale collaborator sets would silently
        suppress presence notifications.
        """
        async with self._session_maker() as db:
            assigned = select(TaskAssignee.task_id).where(TaskAssignee.user_id == user_id)
            shared = select(TaskShare.task_id).where(TaskShare.user_id == user_id)
            result = await db.execute(
                select(Task)
                .where(
                    or_(
                        Task.owner_id == user_id,
                        Task.id.in_(assigned),
                        Task.id.in_(shared),
                    )
                )
                .options(selectinload(Task.assignees), selectinload(Task.shares))
            )
            tasks = result.scalars().all()

        collaborators: set[UUID] = set()
        for task in tasks:
            collaborators.add(task.owner_id)
            collaborators.update(a.user_id for a in task.assignees)
            collaborators.update(s.user_id for s in task.shares)
        collaborators.discard(user_id)

        logger.debug(
            f"Collaborators of user {user_id}: {len(collaborators)} across {len(tasks)} tasks"
        )
        return collaborators

    async def is_user_active(self, user_id: UUID) -> bool:
        async with self._session_maker() as db:
            result = await db.execute(select(User.is_active).where(User.id == user_id))
            return bool(result.scalar_one_or_none())
