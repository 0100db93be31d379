"""Shared pytest fixtures for collaboration tests."""

import asyncio
import os
import sys
from collections import defaultdict
from typing import Any, Optional
from uuid import UUID, uuid4

import pytest

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from taskflow.schemas.task import (
    Permission,
    TaskAssigneeRecord,
    TaskRecord,
    TaskShareRecord,
)
from taskflow.websocket.hub import CollaborationHub


class FakeTaskStore:
    """
    In-memory task store.

    ``delay`` makes every read sleep first, to exercise access-check
    timeouts. ``failure`` makes every read raise it instead of answering.
    """

    def __init__(self) -> None:
        self.tasks: dict[UUID, TaskRecord] = {}
        self.delay: Optional[float] = None
        self.reads = 0
        self.failure: Optional[Exception] = None
        self.inactive_users: set[UUID] = set()

    def add(self, task: TaskRecord) -> TaskRecord:
        self.tasks[task.id] = task
        return task

    def remove(self, task_id: UUID) -> None:
        self.tasks.pop(task_id, None)

    async def find_by_id(self, task_id: UUID) -> Optional[TaskRecord]:
        self.reads += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failure:
            raise self.failure
        return self.tasks.get(task_id)

    async def collaborators_of(self, user_id: UUID) -> set[UUID]:
        if self.delay:
            await asyncio.sleep(self.delay)
        collaborators: set[UUID] = set()
        for task in self.tasks.values():
            participants = task.participants()
            if user_id in participants:
                collaborators |= participants
        collaborators.discard(user_id)
        return collaborators

    async def is_user_active(self, user_id: UUID) -> bool:
        if self.failure:
            raise self.failure
        return user_id not in self.inactive_users


class RecordingOutbox:
    """Outbox that records every queued message per connection."""

    def __init__(self) -> None:
        self.messages: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.closed: dict[str, tuple[int, str]] = {}
        self.unreachable: set[str] = set()

    def deliver(self, connection_id: str, message: dict[str, Any]) -> bool:
        if connection_id in self.unreachable:
            return False
        self.messages[connection_id].append(message)
        return True

    async def close(self, connection_id: str, code: int, reason: str) -> None:
        self.closed[connection_id] = (code, reason)

    def types(self, connection_id: str) -> list[str]:
        return [m["type"] for m in self.messages[connection_id]]

    def of_type(self, connection_id: str, message_type: str) -> list[dict[str, Any]]:
        return [m for m in self.messages[connection_id] if m["type"] == message_type]

    def clear(self) -> None:
        self.messages.clear()


@pytest.fixture
def store() -> FakeTaskStore:
    """Create an empty in-memory task store."""
    return FakeTaskStore()


@pytest.fixture
def outbox() -> RecordingOutbox:
    """Create a recording outbox."""
    return RecordingOutbox()


@pytest.fixture
def hub(store: FakeTaskStore, outbox: RecordingOutbox) -> CollaborationHub:
    """Create a hub over the fake store, without heartbeat sweeping."""
    return CollaborationHub(store, outbox, access_check_timeout=0.5)


@pytest.fixture
def make_task(store: FakeTaskStore):
    """Factory that builds a task and adds it to the store."""

    def _make_task(
        owner_id: UUID,
        assignees: tuple[UUID, ...] = (),
        shares: Optional[dict[UUID, Permission]] = None,
        title: str = "Write release notes",
    ) -> TaskRecord:
        return store.add(
            TaskRecord(
                id=uuid4(),
                owner_id=owner_id,
                title=title,
                assignees=[TaskAssigneeRecord(user_id=uid) for uid in assignees],
                shared_with=[
                    TaskShareRecord(user_id=uid, permission=permission)
                    for uid, permission in (shares or {}).items()
                ],
            )
        )

    return _make_task
