"""FastAPI authentication dependencies."""

from __future__ import annotations

import uuid

import jwt
from fastapi import HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ridecomp.auth.jwt import verify_token

_bearer = HTTPBearer()


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
) -> uuid.UUID:
    """
    Extract and verify the bearer JWT, return the caller's user id.

    Raises 401 on failure.
    """
    try:
        payload = verify_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
    return uuid.UUID(str(payload["sub"]))
