"""
Pydantic schemas for session requests and responses.
"""
from pydantic import BaseModel, Field


class ActiveOrganizationUpdate(BaseModel):
    """Set (or clear, with null) the session's active organization."""
    organization_id: str | None = Field(..., description="Organization to activate, or null to clear")


class SessionResponse(BaseModel):
    id: str
    user_id: str
    active_organization_id: str | None = None

    model_config = {"from_attributes": True}
