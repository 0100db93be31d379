"""User SQLAlchemy model."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, String, Uuid

from ..database import Base


class User(Base):
    """
    User model.

    The sync core only needs users as identities; profile fields are
    kept for notification rendering.

    Attributes:
        id: Unique identifier (UUID)
        email: User's email address (unique)
        display_name: User's display name
        is_active: Whether the account is active
        created_at: Timestamp when user was created
    """

    __tablename__ = "users"
    __allow_unmapped__ = True

    # Primary key - UUID
    id = Column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )

    email = Column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    display_name = Column(
        String(100),
        nullable=True,
    )
    is_active = Column(
        Boolean,
        nullable=False,
        default=True,
    )

    created_at = Column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation of User."""
        return f"<User(id={self.id}, email={self.email})>"
