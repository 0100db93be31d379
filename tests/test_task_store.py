"""Tests for the SQLAlchemy task store against an in-memory SQLite database."""

from dataclasses import dataclass
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

from taskflow.database import build_engine, build_session_maker, create_tables
from taskflow.models import Task, TaskAssignee, TaskShare, User
from taskflow.schemas.task import AssigneeRole, Permission, TaskStatus
from taskflow.services.permission_service import evaluate
from taskflow.services.task_store import SqlTaskStore


@dataclass
class Seed:
    alice: UUID
    bob: UUID
    carol: UUID
    dave: UUID
    shared_task: UUID
    private_task: UUID


@pytest_asyncio.fixture
async def session_maker():
    """Create an in-memory database with all tables."""
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(engine)

    yield build_session_maker(engine)

    await engine.dispose()


@pytest_asyncio.fixture
async def seed(session_maker) -> Seed:
    """
    alice owns a task assigned to bob (reviewer) and shared with carol (edit).
    dave owns a private task.
    """
    users = {name: User(id=uuid4(), email=f"{name}@example.com", display_name=name.title())
             for name in ("alice", "bob", "carol", "dave")}

    shared_task = Task(
        id=uuid4(),
        owner_id=users["alice"].id,
        title="Plan the offsite",
        status="in-progress",
        assignees=[TaskAssignee(user_id=users["bob"].id, role="reviewer")],
        shares=[
            TaskShare(
                user_id=users["carol"].id,
                permission="edit",
                shared_by=users["alice"].id,
            )
        ],
    )
    private_task = Task(id=uuid4(), owner_id=users["dave"].id, title="Taxes")

    async with session_maker() as db:
        db.add_all(list(users.values()))
        await db.flush()
        db.add_all([shared_task, private_task])
        await db.commit()

    return Seed(
        alice=users["alice"].id,
        bob=users["bob"].id,
        carol=users["carol"].id,
        dave=users["dave"].id,
        shared_task=shared_task.id,
        private_task=private_task.id,
    )


class TestFindById:
    """Tests for SqlTaskStore.find_by_id()."""

    @pytest.mark.asyncio
    async def test_returns_snapshot(self, session_maker, seed):
        """Test a task is read with its assignees and shares."""
        store = SqlTaskStore(session_maker)

        task = await store.find_by_id(seed.shared_task)

        assert task.owner_id == seed.alice
        assert task.title == "Plan the offsite"
        assert task.status == TaskStatus.IN_PROGRESS
        assert [(a.user_id, a.role) for a in task.assignees] == [(seed.bob, AssigneeRole.REVIEWER)]
        assert [(s.user_id, s.permission) for s in task.shared_with] == [
            (seed.carol, Permission.EDIT)
        ]
        assert task.participants() == {seed.alice, seed.bob, seed.carol}

    @pytest.mark.asyncio
    async def test_missing_task(self, session_maker, seed):
        """Test a missing task reads as None."""
        store = SqlTaskStore(session_maker)

        assert await store.find_by_id(uuid4()) is None

    @pytest.mark.asyncio
    async def test_snapshot_drives_policy(self, session_maker, seed):
        """Test the snapshot feeds the permission policy."""
        store = SqlTaskStore(session_maker)

        task = await store.find_by_id(seed.shared_task)

        assert evaluate(task, seed.carol, Permission.EDIT)
        assert not evaluate(task, seed.carol, Permission.ADMIN)
        assert not evaluate(task, seed.dave, Permission.VIEW)

    @pytest.mark.asyncio
    async def test_sees_committed_share_changes(self, session_maker, seed):
        """Test each read sees shares committed since the last one."""
        store = SqlTaskStore(session_maker)
        assert not evaluate(await store.find_by_id(seed.shared_task), seed.dave, Permission.VIEW)

        async with session_maker() as db:
            db.add(TaskShare(task_id=seed.shared_task, user_id=seed.dave, permission="view"))
            await db.commit()

        assert evaluate(await store.find_by_id(seed.shared_task), seed.dave, Permission.VIEW)


class TestCollaboratorsOf:
    """Tests for SqlTaskStore.collaborators_of()."""

    @pytest.mark.asyncio
    async def test_owner(self, session_maker, seed):
        """Test an owner's collaborators are the task's participants."""
        store = SqlTaskStore(session_maker)

        assert await store.collaborators_of(seed.alice) == {seed.bob, seed.carol}

    @pytest.mark.asyncio
    async def test_assignee(self, session_maker, seed):
        """Test an assignee's collaborators include the owner."""
        store = SqlTaskStore(session_maker)

        assert await store.collaborators_of(seed.bob) == {seed.alice, seed.carol}

    @pytest.mark.asyncio
    async def test_shared_user(self, session_maker, seed):
        """Test a shared user's collaborators include the owner and assignees."""
        store = SqlTaskStore(session_maker)

        assert await store.collaborators_of(seed.carol) == {seed.alice, seed.bob}

    @pytest.mark.asyncio
    async def test_no_collaborators(self, session_maker, seed):
        """Test users with no shared tasks have no collaborators."""
        store = SqlTaskStore(session_maker)

        assert await store.collaborators_of(seed.dave) == set()
        assert await store.collaborators_of(uuid4()) == set()


class TestIsUserActive:
    """Tests for SqlTaskStore.is_user_active()."""

    @pytest.mark.asyncio
    async def test_active_user(self, session_maker, seed):
        """Test a seeded user is active."""
        store = SqlTaskStore(session_maker)

        assert await store.is_user_active(seed.alice) is True

    @pytest.mark.asyncio
    async def test_deactivated_user(self, session_maker, seed):
        """Test a user with is_active unset is not active."""
        store = SqlTaskStore(session_maker)
        async with session_maker() as db:
            user = await db.get(User, seed.bob)
            user.is_active = False
            await db.commit()

        assert await store.is_user_active(seed.bob) is False

    @pytest.mark.asyncio
    async def test_unknown_user(self, session_maker, seed):
        """Test a user missing from the database is not active."""
        store = SqlTaskStore(session_maker)

        assert await store.is_user_active(uuid4()) is False
