"""
Permission routes.

Roles are static, so there is nothing to manage here: these endpoints expose
the resolved permission set, single capability checks, the statement catalog
and the audit trail.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from tenantdesk.core.database.engine import get_db
from tenantdesk.features.permissions.dependencies import get_resolver
from tenantdesk.features.permissions.models import AuditLog
from tenantdesk.features.permissions.resolver import CapabilityResolver
from tenantdesk.features.permissions.schemas import (
    EffectivePermissionsResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    StatementResponse,
    AuditLogResponse,
    AuditLogListResponse,
)
from tenantdesk.features.permissions.statements import STATEMENTS, is_tenant_subject
from tenantdesk.features.users.dependencies import Identity, get_current_identity, get_current_admin_user
from tenantdesk.features.users.models import User


router = APIRouter(tags=["permissions"])


# ============================================================================
# Effective Permission Routes
# ============================================================================

@router.get("/me", response_model=EffectivePermissionsResponse)
async def get_my_permissions(
    identity: Annotated[Identity, Depends(get_current_identity)],
    resolver: Annotated[CapabilityResolver, Depends(get_resolver)],
    organization_id: Annotated[Optional[str], Query(description="Resolve for this organization instead of the active one")] = None
):
    """
    Get the caller's effective permissions in the session's active organization.

    Passing organization_id resolves against that organization; a caller who
    is not a member gets no tenant capabilities there.
    """
    permissions = await resolver.resolve(
        identity.user.id,
        identity.user.role,
        organization_id or identity.active_organization_id,
    )
    return EffectivePermissionsResponse.from_permissions(identity.user.id, permissions)


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    check_request: PermissionCheckRequest,
    identity: Annotated[Identity, Depends(get_current_identity)],
    resolver: Annotated[CapabilityResolver, Depends(get_resolver)]
):
    """Check if the current user has a specific capability."""
    org_id = check_request.organization_id or identity.active_organization_id

    has_perm = await resolver.has_permission(
        identity.user.id,
        identity.user.role,
        org_id,
        check_request.subject,
        check_request.action,
    )

    return PermissionCheckResponse(
        has_permission=has_perm,
        reason=None if has_perm else "Permission denied"
    )


@router.get("/statements", response_model=List[StatementResponse])
async def list_statements():
    """List the static statement catalog."""
    return [
        StatementResponse(subject=subject, actions=sorted(actions), tenant_scoped=is_tenant_subject(subject))
        for subject, actions in sorted(STATEMENTS.items())
    ]


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_admin_user)],
    skip: int = 0,
    limit: int = 50,
    organization_id: Optional[str] = None,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None
):
    """List audit logs with optional filtering (admin only)."""
    limit = max(1, min(limit, 200))
    skip = max(0, skip)
    stmt = select(AuditLog)

    if organization_id:
        stmt = stmt.where(AuditLog.organization_id == organization_id)
    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)

    count_stmt = select(func.count()).select_from(stmt.subquery())
    total_result = await db.execute(count_stmt)
    total = total_result.scalar() or 0

    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    pages = (total + limit - 1) // limit
    page = (skip // limit) + 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )
