"""Error taxonomy for the collaboration core.

Every error carries a stable ``code`` that is sent to the requesting
connection, and a ``retryable`` flag telling the client whether repeating
the same request can succeed without a permission change.
"""

from typing import Any


class CollaborationError(Exception):
    """Base class for errors resolved at a join/publish boundary."""

    code = "ERROR"
    retryable = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_payload(self) -> dict[str, Any]:
        """Render the error as the data of an outbound ``error`` message."""
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
            **{k: str(v) for k, v in self.context.items()},
        }


class AccessDenied(CollaborationError):
    """Join or privileged publish rejected by the access policy."""

    code = "ACCESS_DENIED"


class TaskNotFound(CollaborationError):
    """Referenced task does not exist in the task store."""

    code = "NOT_FOUND"


class ConnectionNotFound(CollaborationError):
    """Referenced connection is not registered."""

    code = "NOT_FOUND"


class DuplicateConnection(CollaborationError):
    """Connection id registered twice. Fatal to that connection."""

    code = "DUPLICATE_CONNECTION"


class AccessCheckTimeout(CollaborationError):
    """Task store did not answer an access check in time."""

    code = "TIMEOUT"
    retryable = True


class InvalidRoom(CollaborationError):
    """Room id is malformed or of an unknown type."""

    code = "INVALID_ROOM"


class InvalidMessage(CollaborationError):
    """Inbound message is missing fields or has an unknown type."""

    code = "INVALID_MESSAGE"


class StoreUnavailable(CollaborationError):
    """Task store raised while answering a read."""

    code = "STORE_ERROR"
    retryable = True


class InternalError(CollaborationError):
    """Unexpected failure while handling a request."""

    code = "INTERNAL_ERROR"


class RegistryInvariantError(InternalError):
    """Internal bug: an operation would break registry/room consistency."""
