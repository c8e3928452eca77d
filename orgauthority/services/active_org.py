from __future__ import annotations

from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orgauthority.core.errors import ForbiddenError
from orgauthority.core.logging import logger
from orgauthority.core.rbac import Role
from orgauthority.core.sessions import BindingStore, get_binding_store
from orgauthority.models import Membership, Organization, User

from .base import ServiceBase


class ActiveOrganizationService(ServiceBase):
    """Per-session pointer to the organization a caller works in by default.

    The pointer is never trusted: every read re-checks the membership and
    drops a binding whose membership has gone away.
    """

    def __init__(self, session: AsyncSession, store: BindingStore | None = None) -> None:
        super().__init__(session)
        self.store = store or get_binding_store()

    async def get_active(self, session_id: str, user: User) -> Optional[Tuple[Organization, Role]]:
        bound_id = await self.store.get(session_id)
        if bound_id is not None:
            current = await self._membership_with_org(user.id, bound_id)
            if current is not None:
                return current
            await self.store.clear(session_id)
            logger.info(
                "active_org.binding_invalidated",
                session_id=session_id,
                organization_id=bound_id,
                user_id=user.id,
            )
        return await self._fallback(user.id)

    async def set_active(self, session_id: str, organization_id: int, user: User) -> Tuple[Organization, Role]:
        current = await self._membership_with_org(user.id, organization_id)
        if current is None:
            raise ForbiddenError("not_member", organization_id=organization_id)
        await self.store.set(session_id, organization_id)
        logger.info(
            "active_org.switched",
            session_id=session_id,
            organization_id=organization_id,
            user_id=user.id,
        )
        return current

    async def _membership_with_org(self, user_id: int, organization_id: int) -> Optional[Tuple[Organization, Role]]:
        result = await self.session.execute(
            select(Organization, Membership.role)
            .join(Membership, Membership.organization_id == Organization.id)
            .where(
                Membership.user_id == user_id,
                Membership.organization_id == organization_id,
            )
        )
        row = result.first()
        return (row[0], row[1]) if row else None

    async def _fallback(self, user_id: int) -> Optional[Tuple[Organization, Role]]:
        result = await self.session.execute(
            select(Organization, Membership.role)
            .join(Membership, Membership.organization_id == Organization.id)
            .where(Membership.user_id == user_id)
            .order_by(Membership.created_at, Membership.id)
            .limit(1)
        )
        row = result.first()
        return (row[0], row[1]) if row else None
