from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from orgauthority.models import InvitationStatus
from orgauthority.core.rbac import Role


class InvitationCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str
    role: str = Role.MEMBER.value


class InvitationRead(BaseModel):
    """Organization-facing view; the token only goes to the invitee."""

    id: int
    organization_id: int
    email: str
    role: Role
    status: InvitationStatus
    invited_by: int | None = None
    expires_at: datetime
    created_at: datetime

    class Config:
        from_attributes = True


class MyInvitationRead(InvitationRead):
    token: str
    organization_name: str
    invited_by_name: str | None = None

    @classmethod
    def from_details(cls, details) -> "MyInvitationRead":
        invitation = details.invitation
        return cls(
            id=invitation.id,
            organization_id=invitation.organization_id,
            email=invitation.email,
            role=invitation.role,
            status=invitation.status,
            invited_by=invitation.invited_by,
            expires_at=invitation.expires_at,
            created_at=invitation.created_at,
            token=invitation.token,
            organization_name=details.organization_name,
            invited_by_name=details.invited_by_name,
        )
