from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from orgauthority.core.errors import NotFoundError, UnavailableError
from orgauthority.core.logging import logger
from orgauthority.core.rbac import Role
from orgauthority.core.settings import settings
from orgauthority.models import Membership, Organization, utcnow

_engine = create_async_engine(settings.database_dsn, echo=settings.debug, future=True)
SessionLocal = async_sessionmaker(bind=_engine, expire_on_commit=False)

T = TypeVar("T")


async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


def is_transient(exc: BaseException) -> bool:
    """Storage faults worth re-running a whole unit of work for."""

    if isinstance(exc, asyncio.TimeoutError):
        return True
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning(
        "storage.retry",
        attempt=state.attempt_number,
        error=type(exc).__name__ if exc else None,
    )


class ServiceBase:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @staticmethod
    def now() -> datetime:
        return utcnow()

    async def _atomic(self, operation: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``operation`` as one transaction, committing on success.

        Any exception rolls the session back, so no unit applies partially.
        Transient storage faults re-run the whole operation with exponential
        backoff and finally surface as :class:`UnavailableError`.
        """

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, settings.storage_retry_attempts)),
            wait=wait_exponential(multiplier=settings.storage_retry_backoff_seconds, max=2),
            retry=retry_if_exception(is_transient),
            before_sleep=_log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    try:
                        result = await operation(*args, **kwargs)
                        await self.session.commit()
                    except BaseException:
                        await self.session.rollback()
                        raise
        except Exception as exc:
            if is_transient(exc):
                logger.error("storage.unavailable", error=str(exc))
                raise UnavailableError("storage") from exc
            raise
        return result

    async def _lock_organization(self, organization_id: int) -> Organization:
        """Load the organization row under ``FOR UPDATE``.

        All membership mutations of one organization go through this lock, so
        on PostgreSQL they are serialized per organization.
        """

        result = await self.session.execute(
            select(Organization)
            .where(Organization.id == organization_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        organization = result.scalar_one_or_none()
        if organization is None:
            raise NotFoundError("organization_not_found", organization_id=organization_id)
        return organization

    async def _get_organization(self, organization_id: int) -> Organization:
        organization = await self.session.get(Organization, organization_id)
        if organization is None:
            raise NotFoundError("organization_not_found", organization_id=organization_id)
        return organization

    async def _get_membership(self, organization_id: int, user_id: int) -> Membership | None:
        result = await self.session.execute(
            select(Membership)
            .where(
                Membership.organization_id == organization_id,
                Membership.user_id == user_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _role_of(self, organization_id: int, user_id: int) -> Role | None:
        membership = await self._get_membership(organization_id, user_id)
        return membership.role if membership else None


def provide_service(service_cls):
    async def dependency(session: AsyncSession = Depends(get_session)):
        return service_cls(session)

    return dependency
