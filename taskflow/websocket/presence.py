"""Presence broadcasting for real-time collaboration.

A user's collaborators (everyone sharing ownership, assignment or a share
grant on at least one common task) are told when the user comes online
or goes offline. Only the 0 -> 1 and 1 -> 0 connection transitions
broadcast, so opening or closing an extra tab is silent.

The collaborator set is recomputed from the task store on every
transition rather than cached: a stale set would silently drop
notifications.
"""

import asyncio
import logging
from typing import Optional
from uuid import UUID

from ..services.task_store import TaskStore
from .events import PresenceChanged, PresenceStatus
from .registry import ConnectionRegistry
from .router import BroadcastResult, EventRouter

logger = logging.getLogger(__name__)


class PresenceBroadcaster:
    """Emits PresenceChanged to collaborators on a user's online/offline transitions."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: TaskStore,
        router: EventRouter,
        store_timeout: Optional[float] = None,
    ) -> None:
        """
        Initialize the broadcaster and subscribe to registry transitions.

        Args:
            registry: Registry whose presence transitions trigger broadcasts
            store: Task store answering collaborator queries
            router: Router used to deliver to collaborator inboxes
            store_timeout: Seconds to wait for the collaborator query
        """
        self._registry = registry
        self._store = store
        self._router = router
        self._timeout = store_timeout

        registry.on_presence(self.broadcast)

    async def collaborators_of(self, user_id: UUID) -> set[UUID]:
        """Get the user's collaborators, excluding the user itself."""
        collaborators = await asyncio.wait_for(
            self._store.collaborators_of(user_id), timeout=self._timeout
        )
        return set(collaborators) - {user_id}

    async def broadcast(self, user_id: UUID, status: PresenceStatus) -> Optional[BroadcastResult]:
        """
        Tell a user's collaborators about a presence change.

        Returns:
            BroadcastResult, or None if the collaborator query failed
        """
        try:
            collaborators = await self.collaborators_of(user_id)
        except asyncio.TimeoutError:
            logger.warning(f"Presence {status.value} for user {user_id} skipped: store timed out")
            return None

        result = await self._router.publish(
            PresenceChanged(
                user_id=user_id,
                status=status,
                recipients=frozenset(collaborators),
            )
        )

        logger.debug(
            f"User presence: user_id={user_id}, status={status.value}, "
            f"collaborators={len(collaborators)}, recipients={result.recipients}"
        )
        return result

