"""JWT handshake for WebSocket connections.

Tokens are issued by the account service; this server only verifies
them. The collaboration core never sees a token: the endpoint resolves it
to a user id once per handshake and the core trusts that id.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from ..config import settings

logger = logging.getLogger(__name__)


class TokenData(BaseModel):
    """Claims the handshake relies on."""

    user_id: UUID
    email: Optional[str] = None


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Sign a JWT access token.

    Used by tests and local tooling to mint handshake tokens.

    Args:
        data: Claims to encode; the user id goes in ``sub``
        expires_delta: Lifetime, defaults to ``jwt_expiration_minutes``

    Returns:
        Encoded JWT token string
    """
    lifetime = expires_delta or timedelta(minutes=settings.jwt_expiration_minutes)
    claims = {**data, "exp": datetime.now(timezone.utc) + lifetime}
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[TokenData]:
    """
    Verify a token and extract its claims.

    The user id is read from ``sub``, falling back to a ``user_id`` claim.

    Returns:
        TokenData, or None if the signature, expiry or subject is invalid
    """
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.debug(f"Handshake token rejected: {e}")
        return None

    subject = claims.get("sub") or claims.get("user_id")
    if subject is None:
        return None

    try:
        return TokenData(user_id=subject, email=claims.get("email"))
    except ValidationError:
        logger.debug(f"Handshake token subject is not a UUID: {subject}")
        return None


def authenticate_token(token: Optional[str]) -> Optional[UUID]:
    """Resolve a handshake token to a user ID, or None if it is missing or invalid."""
    if not token:
        return None
    token_data = decode_access_token(token)
    return token_data.user_id if token_data else None
