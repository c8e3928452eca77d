from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends

from orgauthority.core.identity import Principal, get_principal
from orgauthority.core.rate_limit import rate_limiter_dependency
from orgauthority.schemas.invitations import InvitationRead, MyInvitationRead
from orgauthority.schemas.organizations import OrganizationRead
from orgauthority.services.base import provide_service
from orgauthority.services.invitations import InvitationService

router = APIRouter(prefix="/invitations", tags=["invitations"])


@router.get("", response_model=List[MyInvitationRead])
async def list_my_invitations(
    principal: Principal = Depends(get_principal),
    service: InvitationService = Depends(provide_service(InvitationService)),
) -> List[MyInvitationRead]:
    return [MyInvitationRead.from_details(details) for details in await service.list_mine(principal.user)]


@router.post("/{token}/accept", response_model=OrganizationRead)
async def accept_invitation(
    token: str,
    _: None = Depends(rate_limiter_dependency("invitations.accept")),
    principal: Principal = Depends(get_principal),
    service: InvitationService = Depends(provide_service(InvitationService)),
) -> OrganizationRead:
    organization, membership = await service.accept(token, principal.user)
    return OrganizationRead.from_pair(organization, membership.role)


@router.post("/{token}/decline", response_model=InvitationRead)
async def decline_invitation(
    token: str,
    _: None = Depends(rate_limiter_dependency("invitations.decline")),
    principal: Principal = Depends(get_principal),
    service: InvitationService = Depends(provide_service(InvitationService)),
) -> InvitationRead:
    invitation = await service.decline(token, principal.user)
    return InvitationRead.model_validate(invitation)
