"""Unit tests for inbound message routing and server-side event hooks."""

import time
from uuid import uuid4

import pytest

from taskflow.schemas.task import Permission
from taskflow.websocket.handlers import (
    handle_comment_added,
    handle_task_created,
    handle_task_deleted,
    handle_task_shared,
    handle_task_status_changed,
    handle_task_update,
    route_incoming_message,
)
from taskflow.websocket.room_auth import get_task_room


def last_error(outbox, connection_id):
    errors = outbox.of_type(connection_id, "error")
    assert errors, f"no error sent to {connection_id}"
    return errors[-1]["data"]


class TestRouteIncomingMessage:
    """Tests for route_incoming_message()."""

    @pytest.mark.asyncio
    async def test_join_and_leave(self, hub, outbox, make_task):
        """Test join_room and leave_room change membership and acknowledge."""
        owner = uuid4()
        task = make_task(owner)
        room_id = get_task_room(task.id)
        await hub.connect("c1", owner)

        await route_incoming_message(hub, "c1", {"type": "join_room", "data": {"room_id": room_id}})
        assert hub.rooms.members_of(room_id) == {"c1"}

        await route_incoming_message(hub, "c1", {"type": "leave_room", "data": {"room_id": room_id}})
        assert hub.rooms.members_of(room_id) == set()
        assert outbox.types("c1")[-1] == "room_left"

    @pytest.mark.asyncio
    async def test_ping_and_heartbeat(self, hub, outbox):
        """Test ping and heartbeat refresh liveness and answer with pong."""
        connection = await hub.connect("c1", uuid4())
        connection.last_seen = time.monotonic() - 100

        await route_incoming_message(hub, "c1", {"type": "ping"})
        await route_incoming_message(hub, "c1", {"type": "heartbeat"})

        assert outbox.types("c1")[-2:] == ["pong", "pong"]
        assert time.monotonic() - connection.last_seen < 5

    @pytest.mark.asyncio
    async def test_any_message_counts_as_heartbeat(self, hub):
        """Test an unrecognised message still refreshes liveness."""
        connection = await hub.connect("c1", uuid4())
        connection.last_seen = time.monotonic() - 100

        await route_incoming_message(hub, "c1", {"type": "nonsense"})

        assert time.monotonic() - connection.last_seen < 5

    @pytest.mark.asyncio
    async def test_task_update_broadcast(self, hub, outbox, make_task):
        """Test task_update reaches other task room members as task_updated."""
        owner, editor = uuid4(), uuid4()
        task = make_task(owner, shares={editor: Permission.EDIT})
        await hub.connect("owner", owner)
        await hub.connect("editor", editor)
        await hub.join("owner", get_task_room(task.id))

        await route_incoming_message(
            hub,
            "editor",
            {"type": "task_update", "data": {"task_id": str(task.id), "updates": {"title": "New"}}},
        )

        (update,) = outbox.of_type("owner", "task_updated")
        assert update["data"]["fields"] == {"title": "New"}
        assert update["data"]["user_id"] == str(editor)

    @pytest.mark.asyncio
    async def test_comment_built_from_content(self, hub, outbox, make_task):
        """Test task_comment builds a comment from its content."""
        owner = uuid4()
        task = make_task(owner)
        await hub.connect("tab-1", owner)
        await hub.connect("tab-2", owner)
        await hub.join("tab-2", get_task_room(task.id))

        await route_incoming_message(
            hub,
            "tab-1",
            {"type": "task_comment", "data": {"task_id": str(task.id), "content": "Done?"}},
        )

        (comment,) = outbox.of_type("tab-2", "comment_added")
        assert comment["data"]["comment"]["content"] == "Done?"
        assert comment["data"]["comment"]["user_id"] == str(owner)
        assert comment["data"]["comment"]["id"]

    @pytest.mark.asyncio
    async def test_status_change(self, hub, outbox, make_task):
        """Test task_status_change broadcasts and notifies participants."""
        owner, assignee = uuid4(), uuid4()
        task = make_task(owner, assignees=(assignee,))
        await hub.connect("owner", owner)
        await hub.connect("assignee", assignee)
        await hub.join("owner", get_task_room(task.id))

        await route_incoming_message(
            hub,
            "assignee",
            {
                "type": "task_status_change",
                "data": {"task_id": str(task.id), "from_status": "todo", "to_status": "review"},
            },
        )

        (changed,) = outbox.of_type("owner", "task_status_changed")
        assert changed["data"]["to_status"] == "review"
        assert len(outbox.of_type("owner", "notification")) == 1

    @pytest.mark.asyncio
    async def test_typing(self, hub, outbox, make_task):
        """Test task_typing reaches the other room members."""
        owner, assignee = uuid4(), uuid4()
        task = make_task(owner, assignees=(assignee,))
        await hub.connect("owner", owner)
        await hub.connect("assignee", assignee)
        await hub.join("owner", get_task_room(task.id))
        await hub.join("assignee", get_task_room(task.id))

        await route_incoming_message(
            hub,
            "assignee",
            {"type": "task_typing", "data": {"task_id": str(task.id), "is_typing": True}},
        )

        (typing,) = outbox.of_type("owner", "user_typing")
        assert typing["data"]["is_typing"] is True

    @pytest.mark.asyncio
    async def test_invite(self, hub, outbox, make_task):
        """Test collaboration_invite reaches the invited user's inbox."""
        owner, guest = uuid4(), uuid4()
        task = make_task(owner)
        await hub.connect("owner", owner)
        await hub.connect("guest", guest)

        await route_incoming_message(
            hub,
            "owner",
            {
                "type": "collaboration_invite",
                "data": {
                    "task_id": str(task.id),
                    "invited_user_id": str(guest),
                    "permission": "admin",
                },
            },
        )

        (invite,) = outbox.of_type("guest", "collaboration_invited")
        assert invite["data"]["permission"] == "admin"

    @pytest.mark.asyncio
    async def test_activity(self, hub, outbox, make_task):
        """Test task_activity reaches the other room members but not the sender."""
        owner, assignee = uuid4(), uuid4()
        task = make_task(owner, assignees=(assignee,))
        await hub.connect("owner", owner)
        await hub.connect("assignee", assignee)
        await hub.join("owner", get_task_room(task.id))
        await hub.join("assignee", get_task_room(task.id))

        await route_incoming_message(
            hub,
            "assignee",
            {
                "type": "task_activity",
                "data": {"task_id": str(task.id), "activity": "task_view", "metadata": {"tab": "details"}},
            },
        )

        (activity,) = outbox.of_type("owner", "user_activity")
        assert activity["data"]["activity"] == "task_view"
        assert activity["data"]["metadata"] == {"tab": "details"}
        assert activity["data"]["user_id"] == str(assignee)
        assert outbox.of_type("assignee", "user_activity") == []

    @pytest.mark.asyncio
    async def test_join_by_uppercase_room_id(self, hub, outbox, make_task):
        """Test a room joined by an uppercase ID receives task updates."""
        owner, editor = uuid4(), uuid4()
        task = make_task(owner, shares={editor: Permission.EDIT})
        await hub.connect("owner", owner)
        await hub.connect("editor", editor)

        await route_incoming_message(
            hub, "editor", {"type": "join_room", "data": {"room_id": f"task:{str(task.id).upper()}"}}
        )
        await route_incoming_message(
            hub,
            "owner",
            {"type": "task_update", "data": {"task_id": str(task.id), "updates": {"title": "New"}}},
        )

        (joined,) = outbox.of_type("editor", "room_joined")
        assert joined["data"]["room_id"] == get_task_room(task.id)
        assert len(outbox.of_type("editor", "task_updated")) == 1


class TestRouteIncomingErrors:
    """Failures are reported to the sender and never raised."""

    @pytest.mark.asyncio
    async def test_unknown_type(self, hub, outbox):
        """Test an unknown message type is reported as INVALID_MESSAGE."""
        await hub.connect("c1", uuid4())

        await route_incoming_message(hub, "c1", {"type": "launch_rockets", "data": {}})

        assert last_error(outbox, "c1")["error"] == "INVALID_MESSAGE"

    @pytest.mark.asyncio
    async def test_missing_field(self, hub, outbox):
        """Test a missing required field is named in the error."""
        await hub.connect("c1", uuid4())

        await route_incoming_message(hub, "c1", {"type": "task_update", "data": {}})

        error = last_error(outbox, "c1")
        assert error["error"] == "INVALID_MESSAGE"
        assert "task_id" in error["message"]

    @pytest.mark.asyncio
    async def test_bad_uuid(self, hub, outbox):
        """Test a malformed task_id is reported as INVALID_MESSAGE."""
        await hub.connect("c1", uuid4())

        await route_incoming_message(
            hub, "c1", {"type": "task_comment", "data": {"task_id": "abc", "content": "hi"}}
        )

        assert last_error(outbox, "c1")["error"] == "INVALID_MESSAGE"

    @pytest.mark.asyncio
    async def test_bad_permission(self, hub, outbox):
        """Test an unknown permission level is reported as INVALID_MESSAGE."""
        await hub.connect("c1", uuid4())

        await route_incoming_message(
            hub,
            "c1",
            {
                "type": "collaboration_invite",
                "data": {"task_id": str(uuid4()), "invited_user_id": str(uuid4()), "permission": "root"},
            },
        )

        assert last_error(outbox, "c1")["error"] == "INVALID_MESSAGE"

    @pytest.mark.asyncio
    async def test_access_denied_reported(self, hub, outbox, make_task):
        """Test a denied publish is reported as a non-retryable error."""
        task = make_task(uuid4())
        await hub.connect("c1", uuid4())

        await route_incoming_message(
            hub,
            "c1",
            {"type": "task_update", "data": {"task_id": str(task.id), "updates": {}}},
        )

        error = last_error(outbox, "c1")
        assert error["error"] == "ACCESS_DENIED"
        assert error["retryable"] is False

    @pytest.mark.asyncio
    async def test_join_denied_is_a_reply_not_an_error(self, hub, outbox, make_task):
        """Test a denied join is answered with join_denied."""
        task = make_task(uuid4())
        await hub.connect("c1", uuid4())

        await route_incoming_message(
            hub, "c1", {"type": "join_room", "data": {"room_id": get_task_room(task.id)}}
        )

        assert outbox.types("c1")[-1] == "join_denied"

    @pytest.mark.asyncio
    async def test_activity_requires_membership(self, hub, outbox, make_task):
        """Test task_activity outside the task room is denied."""
        owner = uuid4()
        task = make_task(owner)
        await hub.connect("c1", owner)

        await route_incoming_message(
            hub,
            "c1",
            {"type": "task_activity", "data": {"task_id": str(task.id), "activity": "task_view"}},
        )

        assert last_error(outbox, "c1")["error"] == "ACCESS_DENIED"

    @pytest.mark.asyncio
    async def test_store_failure_on_join(self, hub, store, outbox, make_task):
        """Test a store that raises during a join is answered with a retryable join_denied."""
        owner = uuid4()
        task = make_task(owner)
        await hub.connect("c1", owner)
        store.failure = RuntimeError("db connection lost")

        await route_incoming_message(
            hub, "c1", {"type": "join_room", "data": {"room_id": get_task_room(task.id)}}
        )

        (denied,) = outbox.of_type("c1", "join_denied")
        assert denied["data"]["reason"] == "STORE_ERROR"
        assert denied["data"]["retryable"] is True

    @pytest.mark.asyncio
    async def test_store_failure_on_publish(self, hub, store, outbox, make_task):
        """Test a store that raises during a publish is reported as a retryable error."""
        owner = uuid4()
        task = make_task(owner)
        await hub.connect("c1", owner)
        store.failure = RuntimeError("db connection lost")

        await route_incoming_message(
            hub,
            "c1",
            {"type": "task_update", "data": {"task_id": str(task.id), "updates": {}}},
        )

        error = last_error(outbox, "c1")
        assert error["error"] == "STORE_ERROR"
        assert error["retryable"] is True

    @pytest.mark.asyncio
    async def test_unexpected_failure_reported(self, hub, outbox, monkeypatch):
        """Test an unexpected exception is reported as INTERNAL_ERROR and not raised."""
        await hub.connect("c1", uuid4())

        async def broken_join(connection_id, room_id):
            raise RuntimeError("boom")

        monkeypatch.setattr(hub, "join", broken_join)

        await route_incoming_message(
            hub, "c1", {"type": "join_room", "data": {"room_id": get_task_room(uuid4())}}
        )

        error = last_error(outbox, "c1")
        assert error["error"] == "INTERNAL_ERROR"
        assert error["retryable"] is False

    @pytest.mark.asyncio
    async def test_unregistered_connection(self, hub, outbox):
        """Test messages from an unregistered connection report NOT_FOUND."""
        await route_incoming_message(hub, "ghost", {"type": "ping"})

        assert last_error(outbox, "ghost")["error"] == "NOT_FOUND"


class TestServerHooks:
    """Tests for the handle_* functions called after a change is committed."""

    @pytest.mark.asyncio
    async def test_task_created_reaches_creator_tabs(self, hub, outbox):
        """Test task_created reaches every tab of the creator."""
        creator = uuid4()
        await hub.connect("tab-1", creator)
        await hub.connect("tab-2", creator)
        task_id = uuid4()

        result = await handle_task_created(hub, task_id, creator, {"title": "New"})

        assert result.recipients == 2
        assert outbox.of_type("tab-1", "task_created")[0]["data"]["task"] == {"title": "New"}

    @pytest.mark.asyncio
    async def test_update_status_and_comment(self, hub, outbox, make_task):
        """Test update, status and comment hooks reach the task room in order."""
        owner = uuid4()
        task = make_task(owner)
        await hub.connect("watcher", owner)
        await hub.join("watcher", get_task_room(task.id))

        await handle_task_update(hub, task.id, uuid4(), {"title": "Renamed"})
        await handle_task_status_changed(hub, str(task.id), uuid4(), "todo", "completed")
        await handle_comment_added(hub, task.id, uuid4(), {"content": "Nice"})

        assert outbox.types("watcher")[-3:] == [
            "task_updated",
            "task_status_changed",
            "comment_added",
        ]

    @pytest.mark.asyncio
    async def test_update_skips_originating_connection(self, hub, outbox, make_task):
        """Test the originating connection does not get its own update."""
        owner = uuid4()
        task = make_task(owner)
        await hub.connect("watcher", owner)
        await hub.join("watcher", get_task_room(task.id))

        result = await handle_task_update(hub, task.id, owner, {}, connection_id="watcher")

        assert result.recipients == 0

    @pytest.mark.asyncio
    async def test_task_deleted_closes_room(self, hub, outbox, make_task):
        """Test task_deleted reaches the room and then closes it."""
        owner = uuid4()
        task = make_task(owner)
        await hub.connect("watcher", owner)
        await hub.join("watcher", get_task_room(task.id))

        result = await handle_task_deleted(hub, task.id, owner)

        assert result.recipients == 1
        assert hub.rooms.members_of(get_task_room(task.id)) == set()

    @pytest.mark.asyncio
    async def test_task_shared_invites(self, hub, outbox):
        """Test a committed share invites the user with the task title."""
        guest = uuid4()
        await hub.connect("guest", guest)

        result = await handle_task_shared(
            hub, uuid4(), uuid4(), guest, Permission.VIEW, task_title="Roadmap"
        )

        assert result.recipients == 1
        (invite,) = outbox.of_type("guest", "collaboration_invited")
        assert invite["data"]["task_title"] == "Roadmap"
