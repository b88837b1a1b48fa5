"""JWT session tokens for Ideario authentication."""

from __future__ import annotations

import logging
import time
from typing import Any

import jwt

from ideario.errors import AuthError

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


class TokenExpiredError(AuthError):
    """Raised when a session token has expired."""


class TokenInvalidError(AuthError):
    """Raised when a session token is malformed or badly signed."""


def create_token(user_id: str, secret: str, *, exp_minutes: int = 60) -> tuple[str, int]:
    """Create a session token for a user. Returns the token and its expiry (epoch seconds)."""
    now = int(time.time())
    expires_at = now + exp_minutes * 60
    payload = {"sub": user_id, "iat": now, "exp": expires_at}
    return jwt.encode(payload, secret, algorithm=ALGORITHM), expires_at


def verify_token(token: str, secret: str) -> dict[str, Any]:
    """Verify and decode a session token."""
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        logger.warning("Token expired: %s", e)
        raise TokenExpiredError("Session has expired") from e
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token: %s", e)
        raise TokenInvalidError("Session token is invalid") from e

    if not payload.get("sub"):
        raise TokenInvalidError("Session token has no subject")
    return payload
