"""
Pydantic schemas for organization, membership and invitation requests and responses.
"""
from datetime import datetime
from typing import Literal
from pydantic import BaseModel, Field, EmailStr, field_validator

from tenantdesk.features.organizations.models import InvitationStatus


OrganizationRoleName = Literal["owner", "admin", "member"]


# Organization Schemas
class OrganizationCreate(BaseModel):
    """Schema for creating a new organization; the creator becomes its owner."""
    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=2, max_length=255, pattern="^[a-z0-9][a-z0-9-]*$")

    @field_validator("slug", mode="before")
    @classmethod
    def normalize_slug(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v


class OrganizationUpdate(BaseModel):
    """Schema for updating organization information."""
    name: str | None = Field(None, min_length=1, max_length=255)
    slug: str | None = Field(None, min_length=2, max_length=255, pattern="^[a-z0-9][a-z0-9-]*$")


class OrganizationResponse(BaseModel):
    id: str
    name: str
    slug: str
    created_at: datetime
    updated_at: datetime
    member_count: int | None = Field(None, description="Number of members in this organization")

    model_config = {"from_attributes": True}


class MyOrganizationResponse(OrganizationResponse):
    """An organization together with the caller's role in it."""
    role: OrganizationRoleName


# Membership Schemas
class MemberResponse(BaseModel):
    id: str
    organization_id: str
    user_id: str
    role: str
    email: str | None = None
    name: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class MemberRoleUpdate(BaseModel):
    role: OrganizationRoleName


# Invitation Schemas
class InvitationCreate(BaseModel):
    email: EmailStr
    role: OrganizationRoleName = "member"


class InvitationResponse(BaseModel):
    id: str
    organization_id: str
    email: str
    role: str
    status: InvitationStatus
    inviter_id: str | None = None
    expires_at: datetime
    sent_count: int
    created_at: datetime

    model_config = {"from_attributes": True}
