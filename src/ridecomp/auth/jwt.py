"""
Bearer token verification.

Sessions are issued by the external auth provider; this service only verifies
the signature, expiry and audience, and reads the user id from `sub`.
"""

from __future__ import annotations

import uuid
from typing import Any

import jwt

from ridecomp.config import get_settings


def verify_token(token: str) -> dict[str, Any]:
    """
    Verify and decode a JWT access token.

    Args:
        token: The encoded JWT string.

    Returns:
        Decoded payload dictionary.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or has no usable subject.
    """
    settings = get_settings()
    if not settings.jwt_secret:
        msg = "Token verification is not configured"
        raise jwt.InvalidTokenError(msg)
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None
    except jwt.InvalidTokenError:
        raise

    try:
        uuid.UUID(str(payload.get("sub")))
    except ValueError:
        msg = "Token subject is not a user id"
        raise jwt.InvalidTokenError(msg) from None

    return payload
