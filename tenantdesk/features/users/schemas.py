"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from typing import Literal
from pydantic import BaseModel, EmailStr, Field

from tenantdesk.features.query.schemas import PageResponse


class UserBase(BaseModel):
    """Base user schema with common fields."""
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)


class UserUpdate(BaseModel):
    """Schema for updating user information."""
    name: str | None = Field(None, min_length=1, max_length=255)


class UserResponse(UserBase):
    """Schema for user responses."""
    id: str
    role: str
    is_active: bool
    is_admin: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserProfileResponse(UserResponse):
    """The caller's own profile, with the session's active organization."""
    active_organization_id: str | None = None


class UserRoleUpdate(BaseModel):
    """Schema for changing a user's system role (admin only)."""
    role: Literal["user", "admin"]


class UserPage(PageResponse):
    items: list[UserResponse]
