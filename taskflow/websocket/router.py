"""Event fan-out.

The router decides which connections receive an event and hands one
message per target to the outbox. Targeting is a synchronous function of
current room membership, and enqueueing happens without awaiting, so
events published to a room reach every member in the order ``publish``
was called. Delivery is fire-and-forget: nothing is queued for offline
users and failed sends are counted, never retried.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import UUID

from .events import (
    CollaborationInvited,
    Event,
    PresenceChanged,
    TaskCreated,
    TaskDeleted,
    TaskEvent,
)
from .room_auth import get_user_room
from .rooms import RoomManager

logger = logging.getLogger(__name__)


class Outbox(Protocol):
    """Transport side of fan-out: queues a message for one connection."""

    def deliver(self, connection_id: str, message: dict[str, Any]) -> bool:
        """Queue a message. Returns False if the connection cannot take it."""
        ...

    async def close(self, connection_id: str, code: int, reason: str) -> None:
        """Close the underlying transport for a connection."""
        ...


@dataclass
class BroadcastResult:
    """Result of a publish operation."""

    message_type: str
    room_ids: list[str]
    targets: list[str] = field(default_factory=list)
    recipients: int = 0
    failed: int = 0

    @property
    def partial_failure(self) -> bool:
        return self.failed > 0


class EventRouter:
    """
    Routes events to room members.

    Targeting rules:
    - TaskCreated: the creator's own inbox
    - TaskDeleted: every member of the task room, originator included,
      then the room is torn down
    - CollaborationInvited: the invited user's inbox
    - PresenceChanged: each recipient collaborator's inbox
    - Any other task event: every member of the task room except the
      originating connection
    """

    def __init__(self, rooms: RoomManager, outbox: Outbox) -> None:
        self._rooms = rooms
        self._outbox = outbox

    def rooms_for(self, event: Event) -> list[str]:
        """Get the room IDs an event is addressed to."""
        if isinstance(event, TaskCreated):
            return [get_user_room(event.user_id)]
        if isinstance(event, CollaborationInvited):
            return [event.inbox_room_id]
        if isinstance(event, PresenceChanged):
            return [get_user_room(uid) for uid in sorted(event.recipients, key=str)]
        if isinstance(event, TaskEvent):
            return [event.room_id]
        raise TypeError(f"Cannot route event of type {type(event).__name__}")

    def excludes_originator(self, event: Event) -> bool:
        """Whether the originating connection is left out of delivery."""
        return not isinstance(
            event, (TaskCreated, TaskDeleted, CollaborationInvited, PresenceChanged)
        )

    def targets_for(self, event: Event) -> list[str]:
        """
        Get the connection IDs that should receive an event.

        Pure read of current membership; no side effects.
        """
        exclude = event.connection_id if self.excludes_originator(event) else None
        targets: list[str] = []
        seen: set[str] = set()
        for room_id in self.rooms_for(event):
            for connection_id in sorted(self._rooms.members_of(room_id)):
                if connection_id == exclude or connection_id in seen:
                    continue
                seen.add(connection_id)
                targets.append(connection_id)
        return targets

    def send(self, connection_id: str, message: dict[str, Any]) -> bool:
        """Queue a single message (ack, error, notification) for one connection."""
        return self._outbox.deliver(connection_id, message)

    def send_to_user(self, user_id: UUID, message: dict[str, Any]) -> int:
        """
        Queue a message for every connection in a user's inbox.

        Returns:
            int: Number of connections that accepted the message
        """
        return sum(
            1
            for connection_id in sorted(self._rooms.members_of(get_user_room(user_id)))
            if self._outbox.deliver(connection_id, message)
        )

    async def publish(self, event: Event) -> BroadcastResult:
        """
        Deliver an event to its target connections.

        Returns:
            BroadcastResult: targets and delivery counts. Zero targets is
            not an error.
        """
        room_ids = self.rooms_for(event)
        targets = self.targets_for(event)
        message = event.to_message()

        result = BroadcastResult(
            message_type=event.type.value,
            room_ids=room_ids,
            targets=targets,
        )
        for connection_id in targets:
            if self._outbox.deliver(connection_id, message):
                result.recipients += 1
            else:
                result.failed += 1

        if result.partial_failure:
            logger.warning(
                f"Partial delivery of {result.message_type}: "
                f"{result.failed}/{len(targets)} connections unreachable"
            )

        if isinstance(event, TaskDeleted):
            await self._rooms.close_room(event.room_id)

        logger.debug(
            f"Published {result.message_type} to {room_ids}: "
            f"{result.recipients}/{len(targets)} delivered"
        )
        return result
