from __future__ import annotations

import re
from datetime import timedelta
from typing import List, NamedTuple, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from orgauthority.core import rbac
from orgauthority.core.errors import (
    ConflictError,
    EmailMismatchError,
    ExpiredError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from orgauthority.core.logging import logger
from orgauthority.core.rbac import Role
from orgauthority.core.security import new_invitation_token
from orgauthority.core.settings import settings
from orgauthority.models import (
    Invitation,
    InvitationStatus,
    Membership,
    Organization,
    User,
)

from .base import ServiceBase

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str | None) -> str:
    cleaned = (email or "").strip().lower()
    if not cleaned or len(cleaned) > 320 or not _EMAIL_PATTERN.match(cleaned):
        raise ValidationError("invalid_email")
    return cleaned


class InvitationDetails(NamedTuple):
    invitation: Invitation
    organization_name: str
    invited_by_name: str | None


class InvitationService(ServiceBase):
    """Invitation registry: pending -> accepted | declined | expired.

    Status changes are compare-and-swap updates on ``status = 'pending'``;
    the affected row count decides which of several concurrent callers wins.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session)

    @property
    def ttl(self) -> timedelta:
        return timedelta(days=settings.invitation_ttl_days)

    # ------------------------------------------------------------------
    # Organization side
    # ------------------------------------------------------------------
    async def create(
        self,
        organization_id: int,
        *,
        email: str,
        role: Role | str,
        caller: User,
    ) -> Invitation:
        address = normalize_email(email)
        offered = rbac.ensure_invitable_role(role)
        try:
            invitation = await self._atomic(self._create, organization_id, address, offered, caller.id)
        except IntegrityError as exc:
            raise ConflictError("invitation_pending", email=address) from exc
        logger.info(
            "invitation.created",
            invitation_id=invitation.id,
            organization_id=organization_id,
            role=offered.value,
            by_user_id=caller.id,
        )
        return invitation

    async def _create(self, organization_id: int, email: str, role: Role, caller_id: int) -> Invitation:
        await self._get_organization(organization_id)
        caller_role = await self._role_of(organization_id, caller_id)
        rbac.ensure_can_manage_members(caller_role)
        if not rbac.can_invite(caller_role, role):
            raise ValidationError("owner_not_invitable")

        already_member = await self.session.execute(
            select(Membership.id)
            .join(User, User.id == Membership.user_id)
            .where(
                Membership.organization_id == organization_id,
                func.lower(User.email) == email,
            )
        )
        if already_member.first() is not None:
            raise ConflictError("already_member", email=email)

        existing = await self.session.execute(
            select(Invitation).where(
                Invitation.organization_id == organization_id,
                Invitation.email == email,
                Invitation.status == InvitationStatus.PENDING,
            )
            .execution_options(populate_existing=True)
        )
        pending = existing.scalar_one_or_none()
        if pending is not None:
            if not pending.is_expired(self.now()):
                raise ConflictError("invitation_pending", email=email)
            await self._transition(pending.id, InvitationStatus.EXPIRED)

        now = self.now()
        invitation = Invitation(
            organization_id=organization_id,
            email=email,
            role=role,
            invited_by=caller_id,
            status=InvitationStatus.PENDING,
            token=new_invitation_token(),
            expires_at=now + self.ttl,
        )
        self.session.add(invitation)
        await self.session.flush()
        return invitation

    async def cancel(self, organization_id: int, invitation_id: int, caller: User) -> None:
        await self._atomic(self._cancel, organization_id, invitation_id, caller.id)
        logger.info(
            "invitation.cancelled",
            invitation_id=invitation_id,
            organization_id=organization_id,
            by_user_id=caller.id,
        )

    async def _cancel(self, organization_id: int, invitation_id: int, caller_id: int) -> None:
        await self._get_organization(organization_id)
        rbac.ensure_can_manage_members(await self._role_of(organization_id, caller_id))
        invitation = await self.session.get(Invitation, invitation_id, populate_existing=True)
        if invitation is None or invitation.organization_id != organization_id:
            raise NotFoundError("invitation_not_found", invitation_id=invitation_id)
        if invitation.status != InvitationStatus.PENDING:
            raise InvalidStateError("not_pending", status=invitation.status.value)
        result = await self.session.execute(
            delete(Invitation)
            .where(
                Invitation.id == invitation_id,
                Invitation.status == InvitationStatus.PENDING,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidStateError("not_pending")
        self.session.expunge(invitation)

    async def list_for_org(self, organization_id: int, caller: User) -> List[Invitation]:
        role = await self._role_of(organization_id, caller.id)
        if not rbac.can_manage_members(role):
            logger.debug("invitation.list_hidden", organization_id=organization_id, user_id=caller.id)
            return []
        await self._expire_overdue(Invitation.organization_id == organization_id)
        result = await self.session.execute(
            select(Invitation)
            .where(
                Invitation.organization_id == organization_id,
                Invitation.status == InvitationStatus.PENDING,
            )
            .order_by(Invitation.created_at.desc(), Invitation.id.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Invitee side
    # ------------------------------------------------------------------
    async def list_mine(self, caller: User) -> List[InvitationDetails]:
        email = caller.email.strip().lower()
        await self._expire_overdue(Invitation.email == email)
        inviter = aliased(User)
        result = await self.session.execute(
            select(Invitation, Organization.name, inviter.name)
            .join(Organization, Organization.id == Invitation.organization_id)
            .outerjoin(inviter, inviter.id == Invitation.invited_by)
            .where(
                Invitation.email == email,
                Invitation.status == InvitationStatus.PENDING,
            )
            .order_by(Invitation.created_at.desc(), Invitation.id.desc())
            .execution_options(populate_existing=True)
        )
        return [
            InvitationDetails(invitation, organization_name, inviter_name)
            for invitation, organization_name, inviter_name in result.all()
        ]

    async def accept(self, token: str, caller: User) -> Tuple[Organization, Membership]:
        invitation = await self._claimable(token, caller)
        invitation_id = invitation.id
        try:
            organization, membership = await self._atomic(self._accept, invitation_id, caller.id)
        except ExpiredError:
            await self._record_expiry(invitation_id)
            raise
        logger.info(
            "invitation.accepted",
            invitation_id=invitation_id,
            organization_id=organization.id,
            user_id=caller.id,
            role=membership.role.value,
        )
        return organization, membership

    async def _accept(self, invitation_id: int, caller_id: int) -> Tuple[Organization, Membership]:
        invitation = await self.session.get(Invitation, invitation_id, populate_existing=True)
        if invitation is None:
            raise NotFoundError("invitation_not_found")
        organization = await self._lock_organization(invitation.organization_id)
        await self._claim(invitation, InvitationStatus.ACCEPTED)

        membership = await self._get_membership(organization.id, caller_id)
        if membership is None:
            membership = Membership(
                organization_id=organization.id,
                user_id=caller_id,
                role=invitation.role,
            )
            self.session.add(membership)
            await self.session.flush()
        else:
            logger.info(
                "invitation.accepted_by_member",
                invitation_id=invitation_id,
                organization_id=organization.id,
                user_id=caller_id,
                role=membership.role.value,
            )
        return organization, membership

    async def decline(self, token: str, caller: User) -> Invitation:
        invitation = await self._claimable(token, caller)
        invitation_id = invitation.id
        try:
            declined = await self._atomic(self._decline, invitation_id)
        except ExpiredError:
            await self._record_expiry(invitation_id)
            raise
        logger.info(
            "invitation.declined",
            invitation_id=invitation_id,
            organization_id=invitation.organization_id,
            user_id=caller.id,
        )
        return declined

    async def _decline(self, invitation_id: int) -> Invitation:
        invitation = await self.session.get(Invitation, invitation_id, populate_existing=True)
        if invitation is None:
            raise NotFoundError("invitation_not_found")
        await self._claim(invitation, InvitationStatus.DECLINED)
        return invitation

    async def expire_stale(self) -> int:
        """Transition every overdue pending invitation to ``expired``."""

        expired = await self._atomic(self._expire_where)
        if expired:
            logger.info("invitation.swept", expired=expired)
        return expired

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _claimable(self, token: str, caller: User) -> Invitation:
        """Run the accept/decline preconditions outside the write unit.

        Order: unknown token, expiry, terminal status, addressee.
        """

        result = await self.session.execute(
            select(Invitation)
            .where(Invitation.token == token)
            .execution_options(populate_existing=True)
        )
        invitation = result.scalar_one_or_none()
        if invitation is None:
            raise NotFoundError("invitation_not_found")
        await self._raise_if_expired(invitation)
        if invitation.status != InvitationStatus.PENDING:
            raise InvalidStateError("not_pending", status=invitation.status.value)
        if caller.email.strip().lower() != invitation.email:
            logger.warning(
                "invitation.email_mismatch",
                invitation_id=invitation.id,
                user_id=caller.id,
            )
            raise EmailMismatchError()
        return invitation

    async def _raise_if_expired(self, invitation: Invitation) -> None:
        if invitation.status == InvitationStatus.EXPIRED:
            raise ExpiredError()
        if invitation.status == InvitationStatus.PENDING and invitation.is_expired(self.now()):
            # the first observer records the transition before failing
            await self._record_expiry(invitation.id)
            raise ExpiredError()

    async def _record_expiry(self, invitation_id: int) -> None:
        if await self._atomic(self._transition, invitation_id, InvitationStatus.EXPIRED):
            logger.info("invitation.expired", invitation_id=invitation_id)

    async def _claim(self, invitation: Invitation, status: InvitationStatus) -> None:
        if not await self._transition(invitation.id, status):
            await self.session.refresh(invitation)
            if invitation.status == InvitationStatus.EXPIRED or (
                invitation.status == InvitationStatus.PENDING and invitation.is_expired(self.now())
            ):
                raise ExpiredError()
            raise InvalidStateError("not_pending", status=invitation.status.value)
        await self.session.refresh(invitation)

    async def _transition(self, invitation_id: int, status: InvitationStatus) -> bool:
        now = self.now()
        criteria = [Invitation.id == invitation_id, Invitation.status == InvitationStatus.PENDING]
        if status in (InvitationStatus.ACCEPTED, InvitationStatus.DECLINED):
            # settling only succeeds while the invitation is still live
            criteria.append(Invitation.expires_at >= now)
        result = await self.session.execute(
            update(Invitation)
            .where(*criteria)
            .values(status=status, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _expire_overdue(self, *criteria) -> int:
        return await self._atomic(self._expire_where, *criteria)

    async def _expire_where(self, *criteria) -> int:
        now = self.now()
        result = await self.session.execute(
            update(Invitation)
            .where(
                Invitation.status == InvitationStatus.PENDING,
                Invitation.expires_at < now,
                *criteria,
            )
            .values(status=InvitationStatus.EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
