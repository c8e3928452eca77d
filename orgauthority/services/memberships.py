from __future__ import annotations

from typing import List, Tuple

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from orgauthority.core import rbac
from orgauthority.core.errors import ConflictError, LastOwnerViolation, NotFoundError
from orgauthority.core.logging import logger
from orgauthority.core.rbac import Role
from orgauthority.models import Membership, User

from .base import ServiceBase


def _owner_count(organization_id: int):
    """Scalar subquery counting the owners of an organization.

    Uses an alias so it is never correlated with an outer UPDATE/DELETE on
    the memberships table.
    """

    peer = aliased(Membership)
    return (
        select(func.count(peer.id))
        .where(peer.organization_id == organization_id, peer.role == Role.OWNER)
        .scalar_subquery()
    )


_ROLE_ORDER = case(
    (Membership.role == Role.OWNER, 0),
    (Membership.role == Role.ADMIN, 1),
    else_=2,
)


class MembershipService(ServiceBase):
    """Membership ledger.

    Every mutation runs inside :meth:`_atomic` after locking the organization
    row, and the statement that changes the ledger re-checks its own
    precondition (expected role, remaining owners) so a concurrent writer can
    never slip between the check and the write.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session)

    async def list_members(self, organization_id: int, caller: User) -> List[Tuple[Membership, User]]:
        await self._get_organization(organization_id)
        rbac.ensure_member(await self._role_of(organization_id, caller.id))
        result = await self.session.execute(
            select(Membership, User)
            .join(User, User.id == Membership.user_id)
            .where(Membership.organization_id == organization_id)
            .order_by(_ROLE_ORDER, User.name, User.id)
        )
        members = [(membership, user) for membership, user in result.all()]
        logger.debug("membership.list", organization_id=organization_id, count=len(members))
        return members

    async def count_owners(self, organization_id: int) -> int:
        result = await self.session.execute(
            select(func.count(Membership.id)).where(
                Membership.organization_id == organization_id,
                Membership.role == Role.OWNER,
            )
        )
        return int(result.scalar_one())

    async def update_role(
        self,
        organization_id: int,
        target_user_id: int,
        new_role: Role | str,
        caller: User,
    ) -> Membership:
        membership = await self._atomic(
            self._update_role, organization_id, target_user_id, rbac.parse_role(new_role), caller.id
        )
        logger.info(
            "membership.role_updated",
            organization_id=organization_id,
            user_id=target_user_id,
            role=membership.role.value,
            by_user_id=caller.id,
        )
        return membership

    async def _update_role(
        self,
        organization_id: int,
        target_user_id: int,
        new_role: Role,
        caller_id: int,
    ) -> Membership:
        await self._lock_organization(organization_id)
        caller_role = await self._role_of(organization_id, caller_id)
        rbac.ensure_can_manage_members(caller_role)
        target = await self._require_membership(organization_id, target_user_id)
        rbac.ensure_role_change_allowed(
            caller_role=caller_role,
            target_role=target.role,
            new_role=new_role,
            is_self=target_user_id == caller_id,
        )
        if target.role == new_role:
            return target

        statement = update(Membership).where(
            Membership.id == target.id,
            Membership.role == target.role,
        )
        if target.role == Role.OWNER:
            statement = statement.where(_owner_count(organization_id) > 1)
        result = await self.session.execute(
            statement.values(role=new_role, updated_at=self.now()).execution_options(
                synchronize_session=False
            )
        )
        if result.rowcount != 1:
            await self._explain_lost_race(organization_id, target_user_id)
        await self.session.refresh(target)
        return target

    async def remove(self, organization_id: int, target_user_id: int, caller: User) -> None:
        await self._atomic(self._remove, organization_id, target_user_id, caller.id)
        logger.info(
            "membership.removed",
            organization_id=organization_id,
            user_id=target_user_id,
            by_user_id=caller.id,
        )

    async def _remove(self, organization_id: int, target_user_id: int, caller_id: int) -> None:
        await self._lock_organization(organization_id)
        caller_role = await self._role_of(organization_id, caller_id)
        rbac.ensure_can_manage_members(caller_role)
        target = await self._require_membership(organization_id, target_user_id)
        rbac.ensure_removal_allowed(
            caller_role=caller_role,
            target_role=target.role,
            is_self=target_user_id == caller_id,
        )
        await self._delete_guarded(target)

    async def leave(self, organization_id: int, caller: User) -> None:
        await self._atomic(self._leave, organization_id, caller.id)
        logger.info("membership.left", organization_id=organization_id, user_id=caller.id)

    async def _leave(self, organization_id: int, caller_id: int) -> None:
        await self._lock_organization(organization_id)
        membership = await self._get_membership(organization_id, caller_id)
        rbac.ensure_member(membership.role if membership else None)
        await self._delete_guarded(membership)

    async def _delete_guarded(self, membership: Membership) -> None:
        statement = delete(Membership).where(
            Membership.id == membership.id,
            Membership.role == membership.role,
        )
        if membership.role == Role.OWNER:
            statement = statement.where(_owner_count(membership.organization_id) > 1)
        result = await self.session.execute(
            statement.execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._explain_lost_race(membership.organization_id, membership.user_id)
        self.session.expunge(membership)

    async def _require_membership(self, organization_id: int, user_id: int) -> Membership:
        membership = await self._get_membership(organization_id, user_id)
        if membership is None:
            raise NotFoundError("member_not_found", user_id=user_id)
        return membership

    async def _explain_lost_race(self, organization_id: int, user_id: int) -> None:
        """Turn a guarded statement that matched no row into the right error."""

        current = await self._get_membership(organization_id, user_id)
        if current is None:
            raise NotFoundError("member_not_found", user_id=user_id)
        if current.role == Role.OWNER and await self.count_owners(organization_id) <= 1:
            logger.warning(
                "membership.last_owner_blocked",
                organization_id=organization_id,
                user_id=user_id,
            )
            raise LastOwnerViolation()
        raise ConflictError("membership_changed", user_id=user_id)
