"""
Pydantic schemas for service requests.
"""
from datetime import datetime
from typing import Literal
from pydantic import BaseModel, Field

from tenantdesk.features.query.schemas import PageResponse


Status = Literal["OPEN", "IN_PROGRESS", "RESOLVED", "CLOSED"]
Priority = Literal["LOW", "MEDIUM", "HIGH", "URGENT"]


class ServiceRequestCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=200)
    description: str = Field(..., min_length=10, max_length=5000)
    priority: Priority = "MEDIUM"
    category: str | None = Field(None, max_length=100)


class ServiceRequestUpdate(BaseModel):
    """Fields any permitted editor may change."""
    title: str | None = Field(None, min_length=3, max_length=200)
    description: str | None = Field(None, min_length=10, max_length=5000)
    status: Status | None = None
    priority: Priority | None = None
    category: str | None = Field(None, max_length=100)


class ServiceRequestAdminUpdate(ServiceRequestUpdate):
    """Extra fields reserved for organization admins/owners and global admins."""
    assigned_to_id: str | None = None
    internal_notes: str | None = Field(None, max_length=5000)


class ServiceRequestResponse(BaseModel):
    id: str
    title: str
    description: str
    status: str
    priority: str
    category: str | None = None
    organization_id: str
    created_by_id: str
    assigned_to_id: str | None = None
    resolved_at: datetime | None = None
    closed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ServiceRequestAdminResponse(ServiceRequestResponse):
    internal_notes: str | None = None


class ServiceRequestAdminPage(PageResponse):
    items: list[ServiceRequestAdminResponse]
