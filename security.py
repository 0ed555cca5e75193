"""Password hashing and signed session tokens."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import bcrypt
import jwt
from fastapi import Request

from config import settings
from errors import InvalidParameter, Unauthorized

logger = logging.getLogger(__name__)

SESSION_COOKIE = "token"
BCRYPT_MAX_BYTES = 72


def hash_password(password: str) -> str:
    raw = password.encode("utf-8")
    if len(raw) > BCRYPT_MAX_BYTES:
        raise InvalidParameter("Password too long")
    return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    raw = password.encode("utf-8")
    if len(raw) > BCRYPT_MAX_BYTES:
        return False
    return bcrypt.checkpw(raw, hashed.encode("utf-8"))


def generate_jwt(payload: dict[str, Any], expires_in: timedelta = timedelta(hours=1)) -> str:
    claims = dict(payload)
    claims["exp"] = datetime.now(timezone.utc) + expires_in
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_jwt(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError as exc:
        raise Unauthorized() from exc


def session_claims(user: Any) -> dict[str, Any]:
    return {
        "userId": user.id,
        "userName": user.user_name,
        "appellation": user.appellation,
        "role": user.role,
    }


def set_session_cookie(response: Any, claims: dict[str, Any], hours: int) -> None:
    token = generate_jwt(claims, timedelta(hours=hours))
    response.set_cookie(
        SESSION_COOKIE,
        token,
        path="/",
        httponly=True,
        max_age=hours * 3600,
        samesite=settings.COOKIE_SAMESITE,
        secure=settings.COOKIE_SECURE,
    )


def clear_session_cookie(response: Any) -> None:
    response.delete_cookie(
        SESSION_COOKIE,
        path="/",
        httponly=True,
        samesite=settings.COOKIE_SAMESITE,
        secure=settings.COOKIE_SECURE,
    )


def current_claims(request: Request) -> dict[str, Any]:
    """FastAPI dependency: claims of the caller's session cookie."""
    token: Optional[str] = request.cookies.get(SESSION_COOKIE)
    if not token:
        raise Unauthorized("No token")
    claims = verify_jwt(token)
    if "userId" not in claims:
        raise Unauthorized()
    return claims
