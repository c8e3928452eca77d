from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from orgauthority.models import User
from orgauthority.services.base import get_session

from .logging import bind_request_context, logger
from .security import decode_token

unauthenticated_error = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail={"code": "unauthenticated"},
    headers={"WWW-Authenticate": "Bearer"},
)

auth_scheme = HTTPBearer(auto_error=False)


class Principal:
    """Authenticated caller: the user row plus the session it acts in."""

    def __init__(self, *, user: User, session_id: str) -> None:
        self.user = user
        self.session_id = session_id

    @property
    def user_id(self) -> int:
        return self.user.id


async def get_principal(
    credentials: HTTPAuthorizationCredentials | None = Security(auth_scheme),
    session: AsyncSession = Depends(get_session),
) -> Principal:
    """Resolve the caller from a bearer JWT.

    ``sub`` carries the user id and ``sid`` the session the active-organization
    binding is keyed on. Tokens without ``sid`` share one binding per user.
    """

    if credentials is None:
        raise unauthenticated_error
    try:
        payload = decode_token(credentials.credentials)
    except jwt.PyJWTError as exc:
        logger.info("auth.token_rejected", error=type(exc).__name__)
        raise unauthenticated_error from None

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise unauthenticated_error from None

    user = await session.get(User, user_id)
    if user is None:
        logger.info("auth.unknown_user", user_id=user_id)
        raise unauthenticated_error
    session_id = str(payload.get("sid") or f"user-{user_id}")
    bind_request_context(user_id=user_id, session_id=session_id)
    return Principal(user=user, session_id=session_id)


__all__ = ["Principal", "auth_scheme", "get_principal", "unauthenticated_error"]
