from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from orgauthority.core.rbac import Role


class OrganizationCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str


class OrganizationUpdate(OrganizationCreate):
    pass


class OrganizationRead(BaseModel):
    id: int
    name: str
    slug: str
    created_by: int | None = None
    created_at: datetime
    role: Role

    @classmethod
    def from_pair(cls, organization, role: Role) -> "OrganizationRead":
        return cls(
            id=organization.id,
            name=organization.name,
            slug=organization.slug,
            created_by=organization.created_by,
            created_at=organization.created_at,
            role=role,
        )


class ActiveOrganizationRequest(BaseModel):
    organization_id: int
