from __future__ import annotations

import re
from typing import List, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from orgauthority.core import rbac
from orgauthority.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from orgauthority.core.logging import logger
from orgauthority.core.rbac import Role
from orgauthority.models import Invitation, Membership, Organization, User

from .base import ServiceBase

_SLUG_INVALID = re.compile(r"[^a-z0-9]+")
SLUG_MAX_LENGTH = 30
NAME_MAX_LENGTH = 255


def slugify(name: str) -> str:
    slug = _SLUG_INVALID.sub("-", name.lower()).strip("-")
    slug = slug[:SLUG_MAX_LENGTH].strip("-")
    return slug or "org"


def clean_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("name_required")
    if len(cleaned) > NAME_MAX_LENGTH:
        raise ValidationError("name_too_long", max_length=NAME_MAX_LENGTH)
    return cleaned


class OrganizationService(ServiceBase):
    """Organization directory: lifecycle and lookup of organizations."""

    slug_attempts: int = 5

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session)

    async def create(self, *, name: str, owner: User) -> Organization:
        cleaned = clean_name(name)
        for _ in range(self.slug_attempts):
            try:
                organization = await self._atomic(self._create, cleaned, owner.id)
            except IntegrityError:
                # another request took the slug between lookup and insert
                logger.info("organization.slug_collision", name=cleaned)
                continue
            logger.info(
                "organization.created",
                organization_id=organization.id,
                slug=organization.slug,
                owner_user_id=owner.id,
            )
            return organization
        raise ConflictError("slug_unavailable", name=cleaned)

    async def _create(self, name: str, owner_user_id: int) -> Organization:
        slug = await self._unique_slug(slugify(name))
        organization = Organization(name=name, slug=slug, created_by=owner_user_id)
        self.session.add(organization)
        await self.session.flush()
        self.session.add(
            Membership(
                organization_id=organization.id,
                user_id=owner_user_id,
                role=Role.OWNER,
            )
        )
        await self.session.flush()
        return organization

    async def _unique_slug(self, base: str) -> str:
        result = await self.session.execute(
            select(Organization.slug).where(
                (Organization.slug == base) | Organization.slug.like(f"{base}-%")
            )
        )
        taken = set(result.scalars().all())
        if base not in taken:
            return base
        suffix = 2
        while f"{base}-{suffix}" in taken:
            suffix += 1
        return f"{base}-{suffix}"

    async def get(self, organization_id: int, caller: User) -> Tuple[Organization, Role]:
        organization = await self._get_organization(organization_id)
        role = rbac.ensure_member(await self._role_of(organization_id, caller.id))
        return organization, role

    async def get_by_slug(self, slug: str) -> Organization:
        result = await self.session.execute(
            select(Organization).where(Organization.slug == slug)
        )
        organization = result.scalar_one_or_none()
        if organization is None:
            raise NotFoundError("organization_not_found", slug=slug)
        return organization

    async def rename(self, organization_id: int, new_name: str, caller: User) -> Tuple[Organization, Role]:
        return await self._atomic(self._rename, organization_id, new_name, caller.id)

    async def _rename(self, organization_id: int, new_name: str, caller_id: int) -> Tuple[Organization, Role]:
        organization = await self._get_organization(organization_id)
        role = rbac.ensure_member(await self._role_of(organization_id, caller_id))
        if not rbac.can_rename(role):
            raise ForbiddenError("insufficient_role")
        organization.name = clean_name(new_name)
        await self.session.flush()
        logger.info("organization.renamed", organization_id=organization_id, name=organization.name)
        return organization, role

    async def delete(self, organization_id: int, caller: User) -> None:
        await self._atomic(self._delete, organization_id, caller.id)
        logger.info("organization.deleted", organization_id=organization_id, user_id=caller.id)

    async def _delete(self, organization_id: int, caller_id: int) -> None:
        organization = await self._lock_organization(organization_id)
        role = rbac.ensure_member(await self._role_of(organization_id, caller_id))
        if not rbac.can_delete(role):
            raise ForbiddenError("owner_required")
        await self.session.execute(
            delete(Invitation).where(Invitation.organization_id == organization_id)
        )
        await self.session.execute(
            delete(Membership).where(Membership.organization_id == organization_id)
        )
        await self.session.execute(
            delete(Organization).where(Organization.id == organization.id)
        )

    async def list_for_user(self, user_id: int) -> List[Tuple[Organization, Role]]:
        result = await self.session.execute(
            select(Organization, Membership.role)
            .join(Membership, Membership.organization_id == Organization.id)
            .where(Membership.user_id == user_id)
            .order_by(Organization.name, Organization.id)
        )
        return [(organization, role) for organization, role in result.all()]
