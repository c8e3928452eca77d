from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

from .settings import settings


def create_access_token(
    subject: str,
    *,
    session_id: str | None = None,
    expires_hours: int | None = None,
    extra: Dict[str, Any] | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + timedelta(hours=expires_hours or settings.jwt_expires_hours)
    payload: Dict[str, Any] = {
        "sub": subject,
        "sid": session_id or new_session_id(),
        "exp": expire,
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Dict[str, Any]:
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def new_session_id() -> str:
    return secrets.token_urlsafe(24)


def new_invitation_token() -> str:
    return secrets.token_urlsafe(32)
