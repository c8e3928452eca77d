from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from orgauthority.core.rbac import Role


class RoleUpdate(BaseModel):
    role: str


class MembershipRead(BaseModel):
    id: int
    organization_id: int
    user_id: int
    role: Role
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class MemberRead(MembershipRead):
    email: str
    name: str
    picture: str | None = None

    @classmethod
    def from_pair(cls, membership, user) -> "MemberRead":
        return cls(
            id=membership.id,
            organization_id=membership.organization_id,
            user_id=membership.user_id,
            role=membership.role,
            created_at=membership.created_at,
            updated_at=membership.updated_at,
            email=user.email,
            name=user.name,
            picture=user.picture,
        )
