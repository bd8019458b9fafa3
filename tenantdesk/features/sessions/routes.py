"""
Session routes: read and mutate the active organization pointer.

This is the session provider side of the switch protocol; the client polls
GET /sessions/current until it reflects a mutation.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from tenantdesk.core import config
from tenantdesk.core.database.engine import get_db
from tenantdesk.core.ratelimit import limiter
from tenantdesk.features.organizations.models import Organization
from tenantdesk.features.permissions.dependencies import create_audit_log, get_resolver
from tenantdesk.features.permissions.resolver import CapabilityResolver
from tenantdesk.features.sessions.schemas import ActiveOrganizationUpdate, SessionResponse
from tenantdesk.features.users.dependencies import Identity, get_current_identity
from tenantdesk.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["sessions"])


@router.get("/current", response_model=SessionResponse)
async def get_current_session(
    identity: Annotated[Identity, Depends(get_current_identity)]
):
    """Get the caller's login session."""
    return identity.session


@router.post("/active-organization", response_model=SessionResponse)
@limiter.limit(config.SWITCH_RATE_LIMIT)
async def set_active_organization(
    request: Request,
    update_data: ActiveOrganizationUpdate,
    identity: Annotated[Identity, Depends(get_current_identity)],
    resolver: Annotated[CapabilityResolver, Depends(get_resolver)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Switch the session's active organization.

    Raises:
        HTTPException: 404 if the organization does not exist, 403 if the
            caller is neither a member nor a global admin
    """
    organization_id = update_data.organization_id
    session = identity.session

    if organization_id is not None:
        organization = await db.get(Organization, organization_id)
        if organization is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Organization not found"
            )
        if not await resolver.is_organization_member(identity.user.id, organization_id, identity.user.role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You are not a member of this organization"
            )

    if session.active_organization_id == organization_id:
        return session

    previous = session.active_organization_id
    session.active_organization_id = organization_id
    await create_audit_log(
        db,
        user_id=identity.user.id,
        action="session.switch_organization",
        resource_type="session",
        resource_id=None,
        organization_id=organization_id,
        details={"from": previous, "to": organization_id},
    )
    await db.commit()
    await db.refresh(session)
    return session
