"""
Admin authentication: a single shared admin password exchanged for a
short-lived HS256 bearer token.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from mokka.core.config import get_settings
from mokka.core.exceptions import AuthenticationError

ADMIN_SUBJECT = "admin"

bearer_scheme = HTTPBearer(auto_error=False)


def verify_admin_password(password: str) -> bool:
    settings = get_settings()
    return secrets.compare_digest(password.encode(), settings.ADMIN_PASSWORD.encode())


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode["exp"] = expire
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Session expired, please log in again")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid authentication token")


async def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """Dependency guarding admin routes."""
    if credentials is None:
        raise AuthenticationError("Authentication required")

    payload = decode_access_token(credentials.credentials)
    if payload.get("sub") != ADMIN_SUBJECT:
        raise AuthenticationError("Invalid authentication token")
    return ADMIN_SUBJECT
