"""
Pydantic schemas for permission endpoints.

Request and response models for effective permissions, checks, the static
statement catalog and audit logs.
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from tenantdesk.features.permissions.resolver import EffectivePermissionSet, OrganizationRef
from tenantdesk.features.permissions.roles import OrganizationRole, SystemRole
from tenantdesk.features.permissions.statements import STATEMENTS


# ============================================================================
# Effective Permission Schemas
# ============================================================================

class OrganizationSnapshot(BaseModel):
    id: str
    name: str
    slug: str


class EffectivePermissionsResponse(BaseModel):
    """Resolved grant table for the caller in the active organization."""
    user_id: str
    system_role: str
    organization_id: Optional[str] = None
    organization_role: Optional[str] = None
    organization: Optional[OrganizationSnapshot] = None
    capabilities: Dict[str, bool]

    @classmethod
    def from_permissions(cls, user_id: str, permissions: EffectivePermissionSet) -> "EffectivePermissionsResponse":
        organization = permissions.organization
        return cls(
            user_id=user_id,
            system_role=permissions.system_role.value if permissions.system_role else "user",
            organization_id=permissions.organization_id,
            organization_role=permissions.organization_role.value if permissions.organization_role else None,
            organization=OrganizationSnapshot(**vars(organization)) if organization else None,
            capabilities=dict(permissions.capabilities),
        )

    def to_permissions(self) -> EffectivePermissionSet:
        """Rebuild the resolver's value object (client side)."""
        return EffectivePermissionSet(
            capabilities=dict(self.capabilities),
            system_role=SystemRole.parse(self.system_role),
            organization_role=OrganizationRole(self.organization_role) if self.organization_role else None,
            organization=OrganizationRef(**self.organization.model_dump()) if self.organization else None,
            organization_id=self.organization_id,
        )


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Schema for checking one capability."""
    subject: str = Field(..., description="Statement subject, e.g. 'service-request'")
    action: str = Field(..., description="Action, e.g. 'delete'")
    organization_id: Optional[str] = Field(None, description="Organization ID (uses the active one if not provided)")

    @field_validator("subject")
    @classmethod
    def known_subject(cls, v: str) -> str:
        if v not in STATEMENTS:
            raise ValueError(f"Unknown subject '{v}'")
        return v


class PermissionCheckResponse(BaseModel):
    """Schema for permission check response."""
    has_permission: bool
    reason: Optional[str] = None


class StatementResponse(BaseModel):
    subject: str
    actions: List[str]
    tenant_scoped: bool


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    user_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
    organization_id: Optional[str]
    details: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
