"""
Organization-related dependency injection functions.

Routes under /organizations/{organization_id} are authorized against the
organization named in the path, not the session's active organization.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantdesk.core.database.engine import get_db
from tenantdesk.features.organizations.models import Organization
from tenantdesk.features.permissions.dependencies import get_resolver
from tenantdesk.features.permissions.resolver import CapabilityResolver, EffectivePermissionSet
from tenantdesk.features.users.dependencies import Identity, get_current_identity
from tenantdesk.utils import get_logger


log = get_logger(__name__)


async def get_organization_by_id(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Organization:
    """
    Get organization by ID or raise 404.

    Raises:
        HTTPException: 404 if organization not found
    """
    result = await db.execute(
        select(Organization).where(Organization.id == organization_id)
    )
    organization = result.scalar_one_or_none()

    if organization is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Organization not found"
        )

    return organization


async def get_organization_permissions(
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    identity: Annotated[Identity, Depends(get_current_identity)],
    resolver: Annotated[CapabilityResolver, Depends(get_resolver)],
) -> EffectivePermissionSet:
    """Effective permissions of the caller inside the organization in the path."""
    return await resolver.resolve(identity.user.id, identity.user.role, organization.id)


def require_organization_capability(subject: str, action: str):
    """
    Require a capability inside the organization named by the path.

    Usage:
        @router.delete("/{organization_id}")
        async def delete_organization(
            organization: Annotated[Organization, Depends(get_organization_by_id)],
            _: Annotated[EffectivePermissionSet, Depends(require_organization_capability("organization", "delete"))],
        ):
            ...

    Raises:
        HTTPException: 403 if the capability is not granted
    """
    async def organization_capability_dependency(
        permissions: Annotated[EffectivePermissionSet, Depends(get_organization_permissions)],
    ) -> EffectivePermissionSet:
        if not permissions.can(subject, action):
            log.debug("Denied %s.%s in org %s", subject, action, permissions.organization_id)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {action} on {subject}"
            )
        return permissions

    return organization_capability_dependency
