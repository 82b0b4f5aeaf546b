"""JWT helper utilities."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from jose import jwt

from crm_backend.core.config import settings

ALGORITHM = "HS256"


def _create_token(data: Dict[str, Any], expires: timedelta) -> str:
    now = datetime.now(timezone.utc)
    expire = now + expires
    to_encode = data.copy()
    to_encode.update(
        {
            "exp": expire,
            "iat": now,
            "nbf": now,
            "iss": settings.JWT_ISSUER,
            "aud": settings.JWT_AUDIENCE,
        }
    )
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)


def create_access_token(user_id: int) -> str:
    minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES or 15
    return _create_token({"sub": str(user_id), "type": "access"}, timedelta(minutes=minutes))


def create_refresh_token(user_id: int, csrf: str) -> str:
    days = settings.REFRESH_TOKEN_EXPIRE_DAYS or 30
    return _create_token(
        {"sub": str(user_id), "type": "refresh", "csrf": csrf}, timedelta(days=days)
    )


def decode_token(token: str) -> Dict[str, Any]:
    """Decode and validate signature, expiry, issuer and audience."""

    return jwt.decode(
        token,
        settings.SECRET_KEY,
        algorithms=[ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        issuer=settings.JWT_ISSUER,
    )
