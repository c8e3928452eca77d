from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status

from orgauthority.core.identity import Principal, get_principal
from orgauthority.core.rbac import Role
from orgauthority.schemas.invitations import InvitationCreate, InvitationRead
from orgauthority.schemas.members import MemberRead, MembershipRead, RoleUpdate
from orgauthority.schemas.organizations import (
    ActiveOrganizationRequest,
    OrganizationCreate,
    OrganizationRead,
    OrganizationUpdate,
)
from orgauthority.services.active_org import ActiveOrganizationService
from orgauthority.services.base import provide_service
from orgauthority.services.invitations import InvitationService
from orgauthority.services.memberships import MembershipService
from orgauthority.services.organizations import OrganizationService

router = APIRouter(prefix="/organizations", tags=["organizations"])


@router.post("", response_model=OrganizationRead, status_code=status.HTTP_201_CREATED)
async def create_org(
    payload: OrganizationCreate,
    principal: Principal = Depends(get_principal),
    service: OrganizationService = Depends(provide_service(OrganizationService)),
) -> OrganizationRead:
    organization = await service.create(name=payload.name, owner=principal.user)
    return OrganizationRead.from_pair(organization, Role.OWNER)


@router.get("", response_model=List[OrganizationRead])
async def list_orgs(
    principal: Principal = Depends(get_principal),
    service: OrganizationService = Depends(provide_service(OrganizationService)),
) -> List[OrganizationRead]:
    pairs = await service.list_for_user(principal.user_id)
    return [OrganizationRead.from_pair(organization, role) for organization, role in pairs]


# /active must be registered before /{organization_id}
@router.get("/active", response_model=Optional[OrganizationRead])
async def get_active_org(
    principal: Principal = Depends(get_principal),
    service: ActiveOrganizationService = Depends(provide_service(ActiveOrganizationService)),
) -> Optional[OrganizationRead]:
    current = await service.get_active(principal.session_id, principal.user)
    if current is None:
        return None
    return OrganizationRead.from_pair(*current)


@router.put("/active", response_model=OrganizationRead)
async def set_active_org(
    payload: ActiveOrganizationRequest,
    principal: Principal = Depends(get_principal),
    service: ActiveOrganizationService = Depends(provide_service(ActiveOrganizationService)),
) -> OrganizationRead:
    organization, role = await service.set_active(
        principal.session_id, payload.organization_id, principal.user
    )
    return OrganizationRead.from_pair(organization, role)


@router.get("/{organization_id}", response_model=OrganizationRead)
async def get_org(
    organization_id: int,
    principal: Principal = Depends(get_principal),
    service: OrganizationService = Depends(provide_service(OrganizationService)),
) -> OrganizationRead:
    organization, role = await service.get(organization_id, principal.user)
    return OrganizationRead.from_pair(organization, role)


@router.put("/{organization_id}", response_model=OrganizationRead)
async def rename_org(
    organization_id: int,
    payload: OrganizationUpdate,
    principal: Principal = Depends(get_principal),
    service: OrganizationService = Depends(provide_service(OrganizationService)),
) -> OrganizationRead:
    organization, role = await service.rename(organization_id, payload.name, principal.user)
    return OrganizationRead.from_pair(organization, role)


@router.delete("/{organization_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_org(
    organization_id: int,
    principal: Principal = Depends(get_principal),
    service: OrganizationService = Depends(provide_service(OrganizationService)),
) -> Response:
    await service.delete(organization_id, principal.user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{organization_id}/members", response_model=List[MemberRead])
async def list_members(
    organization_id: int,
    principal: Principal = Depends(get_principal),
    service: MembershipService = Depends(provide_service(MembershipService)),
) -> List[MemberRead]:
    members = await service.list_members(organization_id, principal.user)
    return [MemberRead.from_pair(membership, user) for membership, user in members]


@router.put("/{organization_id}/members/{user_id}", response_model=MembershipRead)
async def update_member_role(
    organization_id: int,
    user_id: int,
    payload: RoleUpdate,
    principal: Principal = Depends(get_principal),
    service: MembershipService = Depends(provide_service(MembershipService)),
) -> MembershipRead:
    membership = await service.update_role(organization_id, user_id, payload.role, principal.user)
    return MembershipRead.model_validate(membership)


@router.delete("/{organization_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    organization_id: int,
    user_id: int,
    principal: Principal = Depends(get_principal),
    service: MembershipService = Depends(provide_service(MembershipService)),
) -> Response:
    await service.remove(organization_id, user_id, principal.user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{organization_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_org(
    organization_id: int,
    principal: Principal = Depends(get_principal),
    service: MembershipService = Depends(provide_service(MembershipService)),
) -> Response:
    await service.leave(organization_id, principal.user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{organization_id}/invitations", response_model=List[InvitationRead])
async def list_org_invitations(
    organization_id: int,
    principal: Principal = Depends(get_principal),
    service: InvitationService = Depends(provide_service(InvitationService)),
) -> List[InvitationRead]:
    invitations = await service.list_for_org(organization_id, principal.user)
    return [InvitationRead.model_validate(invitation) for invitation in invitations]


@router.post(
    "/{organization_id}/invitations",
    response_model=InvitationRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_invitation(
    organization_id: int,
    payload: InvitationCreate,
    principal: Principal = Depends(get_principal),
    service: InvitationService = Depends(provide_service(InvitationService)),
) -> InvitationRead:
    invitation = await service.create(
        organization_id,
        email=payload.email,
        role=payload.role,
        caller=principal.user,
    )
    return InvitationRead.model_validate(invitation)


@router.delete(
    "/{organization_id}/invitations/{invitation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def cancel_invitation(
    organization_id: int,
    invitation_id: int,
    principal: Principal = Depends(get_principal),
    service: InvitationService = Depends(provide_service(InvitationService)),
) -> Response:
    await service.cancel(organization_id, invitation_id, principal.user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
