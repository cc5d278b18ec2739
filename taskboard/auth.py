from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Header

from .config import get_settings
from .errors import AuthenticationError

logger = logging.getLogger(__name__)

TOKEN_LIFETIME = timedelta(days=7)


def create_access_token(user_id: str, expires_in: timedelta = TOKEN_LIFETIME) -> str:
    """Issue a signed bearer token for ``user_id``.

    Requires ``JWT_SECRET``; without it tokens are plain user ids.
    """
    settings = get_settings()
    if not settings.jwt_secret:
        return user_id
    now = datetime.now(timezone.utc)
    payload = {"sub": user_id, "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def user_id_from_token(token: str) -> str:
    settings = get_settings()
    if not settings.jwt_secret:
        # local development: the bearer token is the user identifier
        return token
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        logger.debug("Rejected bearer token: %s", exc)
        raise AuthenticationError("Invalid token") from exc
    user_id = claims.get("sub") or claims.get("userId")
    if not user_id:
        raise AuthenticationError("Invalid token")
    return str(user_id)


def get_current_user(authorization: Optional[str] = Header(default=None)) -> str:
    """Resolve the requesting user from an ``Authorization: Bearer`` header."""
    prefix = "Bearer "
    if not authorization or not authorization.startswith(prefix):
        raise AuthenticationError("Missing bearer token")
    token = authorization[len(prefix) :].strip()
    if not token:
        raise AuthenticationError("Missing bearer token")
    return user_id_from_token(token)
