import pytest
from sqlalchemy import func, select

from orgauthority.core.errors import ForbiddenError, NotFoundError, ValidationError
from orgauthority.core.rbac import Role
from orgauthority.models import Invitation, Membership
from orgauthority.services.invitations import InvitationService
from orgauthority.services.memberships import MembershipService
from orgauthority.services.organizations import OrganizationService, slugify


def test_slugify():
    assert slugify("Acme") == "acme"
    assert slugify("  Acme & Sons, Ltd.  ") == "acme-sons-ltd"
    assert slugify("!!!") == "org"
    assert len(slugify("x" * 80)) == 30


@pytest.mark.asyncio
async def test_create_makes_creator_sole_owner(session, user_factory):
    owner = await user_factory(name="Olivia")
    service = OrganizationService(session)

    org = await service.create(name="Acme", owner=owner)

    assert org.slug == "acme"
    assert org.created_by == owner.id
    memberships = (
        await session.execute(select(Membership).where(Membership.organization_id == org.id))
    ).scalars().all()
    assert [(m.user_id, m.role) for m in memberships] == [(owner.id, Role.OWNER)]


@pytest.mark.asyncio
async def test_slug_collisions_get_suffixes(session, user_factory):
    owner = await user_factory()
    service = OrganizationService(session)

    first = await service.create(name="Acme", owner=owner)
    second = await service.create(name="ACME", owner=owner)
    third = await service.create(name="acme!", owner=owner)

    assert [first.slug, second.slug, third.slug] == ["acme", "acme-2", "acme-3"]
    assert (await service.get_by_slug("acme-2")).id == second.id


@pytest.mark.asyncio
async def test_create_rejects_blank_name(session, user_factory):
    owner = await user_factory()
    service = OrganizationService(session)

    with pytest.raises(ValidationError) as excinfo:
        await service.create(name="   ", owner=owner)
    assert excinfo.value.reason == "name_required"

    with pytest.raises(ValidationError):
        await service.create(name="x" * 256, owner=owner)


@pytest.mark.asyncio
async def test_list_for_user_returns_only_own_orgs(session, user_factory):
    alice = await user_factory()
    bob = await user_factory()
    service = OrganizationService(session)
    await service.create(name="Zeta", owner=alice)
    await service.create(name="Alpha", owner=alice)
    await service.create(name="Bobco", owner=bob)

    listed = await service.list_for_user(alice.id)

    assert [(org.name, role) for org, role in listed] == [("Alpha", Role.OWNER), ("Zeta", Role.OWNER)]
    assert await service.list_for_user((await user_factory()).id) == []


@pytest.mark.asyncio
async def test_get_requires_membership(session, user_factory):
    owner = await user_factory()
    outsider = await user_factory()
    service = OrganizationService(session)
    org = await service.create(name="Acme", owner=owner)
    org_id = org.id

    fetched, role = await service.get(org_id, owner)
    assert fetched.id == org_id and role is Role.OWNER

    with pytest.raises(ForbiddenError):
        await service.get(org_id, outsider)
    with pytest.raises(NotFoundError):
        await service.get(org_id + 100, owner)


@pytest.mark.asyncio
async def test_rename_requires_admin(session, user_factory):
    owner = await user_factory()
    member = await user_factory()
    service = OrganizationService(session)
    org = await service.create(name="Acme", owner=owner)
    org_id = org.id
    session.add(Membership(organization_id=org_id, user_id=member.id, role=Role.MEMBER))
    await session.commit()

    with pytest.raises(ForbiddenError):
        await service.rename(org_id, "Hijacked", member)

    renamed, role = await service.rename(org_id, "  Acme Corp ", owner)
    assert renamed.name == "Acme Corp"
    assert renamed.slug == "acme"
    assert role is Role.OWNER


@pytest.mark.asyncio
async def test_delete_is_owner_only_and_cascades(session, user_factory):
    owner = await user_factory()
    admin = await user_factory()
    service = OrganizationService(session)
    org = await service.create(name="Acme", owner=owner)
    org_id = org.id
    session.add(Membership(organization_id=org_id, user_id=admin.id, role=Role.ADMIN))
    await session.commit()
    await InvitationService(session).create(org_id, email="new@example.com", role="member", caller=owner)

    with pytest.raises(ForbiddenError) as excinfo:
        await service.delete(org_id, admin)
    assert excinfo.value.reason == "owner_required"

    await service.delete(org_id, owner)

    memberships = await session.scalar(
        select(func.count(Membership.id)).where(Membership.organization_id == org_id)
    )
    invitations = await session.scalar(
        select(func.count(Invitation.id)).where(Invitation.organization_id == org_id)
    )
    assert memberships == 0
    assert invitations == 0
    assert await service.list_for_user(owner.id) == []
    with pytest.raises(NotFoundError):
        await MembershipService(session).list_members(org_id, owner)
