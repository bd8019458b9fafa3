"""
Permission dependencies for route protection, plus audit logging helpers.
"""
from typing import Annotated, Any, Dict, Optional
from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from tenantdesk.core.database.engine import get_db
from tenantdesk.features.organizations.stores import SqlMembershipStore, SqlOrganizationStore
from tenantdesk.features.permissions.models import AuditLog
from tenantdesk.features.permissions.resolver import CapabilityResolver, EffectivePermissionSet
from tenantdesk.features.users.dependencies import Identity, get_current_identity
from tenantdesk.utils import get_logger


log = get_logger(__name__)


def get_resolver(db: Annotated[AsyncSession, Depends(get_db)]) -> CapabilityResolver:
    return CapabilityResolver(SqlMembershipStore(db), SqlOrganizationStore(db))


async def get_permissions(
    identity: Annotated[Identity, Depends(get_current_identity)],
    resolver: Annotated[CapabilityResolver, Depends(get_resolver)],
) -> EffectivePermissionSet:
    """Effective permissions for the caller in the session's active organization."""
    return await resolver.resolve(
        identity.user.id,
        identity.user.role,
        identity.active_organization_id,
    )


def require_capability(subject: str, action: str):
    """
    FastAPI dependency to require a capability in the active organization.

    Usage:
        @router.delete("/{request_id}")
        async def delete_request(
            permissions: EffectivePermissionSet = Depends(require_capability("service-request", "delete"))
        ):
            ...

    Raises:
        HTTPException: 403 if the capability is not granted
    """
    async def capability_dependency(
        permissions: Annotated[EffectivePermissionSet, Depends(get_permissions)],
    ) -> EffectivePermissionSet:
        if not permissions.can(subject, action):
            log.debug("Denied %s.%s in org %s", subject, action, permissions.organization_id)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {action} on {subject}"
            )
        return permissions

    return capability_dependency


def require_active_organization(permissions: EffectivePermissionSet) -> str:
    """Return the active organization id or raise 400 when the session has none."""
    if not permissions.organization_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No active organization. Switch to an organization first."
        )
    return permissions.organization_id


async def create_audit_log(
    db: AsyncSession,
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None
) -> AuditLog:
    """
    Add an audit log entry to the current transaction.

    The caller commits; the entry is lost if the surrounding change rolls back.
    """
    audit_log = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        organization_id=organization_id,
        details=details,
        ip_address=ip_address,
        user_agent=user_agent
    )
    db.add(audit_log)

    log.info(
        "Audit: user=%s action=%s resource=%s:%s org=%s",
        user_id, action, resource_type, resource_id, organization_id
    )
    return audit_log
