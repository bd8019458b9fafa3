"""
Service request routes.

Every read and write is scoped to the session's active organization; list
endpoints go through the query compiler with that scope as the first conjunct.
"""
from typing import Annotated, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from tenantdesk.core.database.engine import get_db
from tenantdesk.features.organizations.models import Membership
from tenantdesk.features.permissions.dependencies import (
    create_audit_log,
    require_active_organization,
    require_capability,
)
from tenantdesk.features.permissions.resolver import EffectivePermissionSet
from tenantdesk.features.permissions.roles import OrganizationRole, SystemRole
from tenantdesk.features.query.compiler import CompiledQuery, compile_query, model_resolver
from tenantdesk.features.query.schemas import QueryInput, query_input_params
from tenantdesk.features.service_requests.models import ServiceRequest
from tenantdesk.features.service_requests.schemas import (
    ServiceRequestCreate,
    ServiceRequestAdminUpdate,
    ServiceRequestAdminResponse,
    ServiceRequestAdminPage,
)
from tenantdesk.features.users.dependencies import get_current_user, get_current_admin_user
from tenantdesk.features.users.models import User
from tenantdesk.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["service-requests"])


QUERYABLE_FIELDS = (
    "id",
    "title",
    "description",
    "status",
    "priority",
    "category",
    "created_by_id",
    "assigned_to_id",
    "created_at",
    "updated_at",
    "resolved_at",
    "closed_at",
    "created_by.email",
    "created_by.name",
    "assigned_to.email",
    "assigned_to.name",
)

FIELD_ALIASES = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "resolvedAt": "resolved_at",
    "closedAt": "closed_at",
    "createdById": "created_by_id",
    "assignedToId": "assigned_to_id",
    "organizationId": "organization_id",
}

PRIVILEGED_FIELDS = {"assigned_to_id", "internal_notes"}

field_resolver = model_resolver(ServiceRequest, QUERYABLE_FIELDS, aliases=FIELD_ALIASES)
admin_field_resolver = model_resolver(
    ServiceRequest, QUERYABLE_FIELDS + ("organization_id",), aliases=FIELD_ALIASES
)


def _is_privileged(permissions: EffectivePermissionSet) -> bool:
    """Organization owners/admins and global admins manage assignment and internal notes."""
    return (
        permissions.system_role is SystemRole.ADMIN
        or permissions.organization_role in (OrganizationRole.OWNER, OrganizationRole.ADMIN)
    )


def _to_response(request: ServiceRequest, privileged: bool) -> ServiceRequestAdminResponse:
    response = ServiceRequestAdminResponse.model_validate(request)
    if not privileged:
        response.internal_notes = None
    return response


async def _get_scoped_request(db: AsyncSession, request_id: str, organization_id: str) -> ServiceRequest:
    """Fetch a request inside the active organization; other tenants' rows are reported as missing."""
    result = await db.execute(
        select(ServiceRequest).where(
            and_(
                ServiceRequest.organization_id == organization_id,
                ServiceRequest.id == request_id
            )
        )
    )
    request = result.scalar_one_or_none()
    if request is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Service request not found"
        )
    return request


async def _run_query(db: AsyncSession, compiled: CompiledQuery) -> tuple[list[ServiceRequest], int]:
    total = (await db.execute(compiled.count_statement(ServiceRequest))).scalar_one()
    result = await db.execute(compiled.apply(select(ServiceRequest)))
    return list(result.scalars().all()), total


@router.get("", response_model=ServiceRequestAdminPage)
async def list_service_requests(
    query: Annotated[QueryInput, Depends(query_input_params)],
    permissions: Annotated[EffectivePermissionSet, Depends(require_capability("service-request", "list"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """List service requests of the active organization (filter/sort/paginate)."""
    organization_id = require_active_organization(permissions)
    compiled = compile_query(
        query,
        field_resolver,
        ServiceRequest.organization_id == organization_id,
        default_order=[ServiceRequest.created_at.desc()],
        tie_breaker=ServiceRequest.id,
    )
    requests, total = await _run_query(db, compiled)
    privileged = _is_privileged(permissions)

    return ServiceRequestAdminPage(
        items=[_to_response(request, privileged) for request in requests],
        total=total,
        take=compiled.limit,
        skip=compiled.offset,
    )


@router.get("/admin/all", response_model=ServiceRequestAdminPage)
async def list_all_service_requests(
    query: Annotated[QueryInput, Depends(query_input_params)],
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    organization_id: Annotated[Optional[str], Query(description="Restrict to one organization")] = None
):
    """List service requests across all organizations (admin only)."""
    compiled = compile_query(
        query,
        admin_field_resolver,
        ServiceRequest.organization_id == organization_id if organization_id else None,
        default_order=[ServiceRequest.created_at.desc()],
        tie_breaker=ServiceRequest.id,
    )
    requests, total = await _run_query(db, compiled)

    return ServiceRequestAdminPage(
        items=[_to_response(request, True) for request in requests],
        total=total,
        take=compiled.limit,
        skip=compiled.offset,
    )


@router.post("", response_model=ServiceRequestAdminResponse, status_code=status.HTTP_201_CREATED)
async def create_service_request(
    request_data: ServiceRequestCreate,
    permissions: Annotated[EffectivePermissionSet, Depends(require_capability("service-request", "create"))],
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a service request in the active organization."""
    organization_id = require_active_organization(permissions)

    request = ServiceRequest(
        **request_data.model_dump(),
        organization_id=organization_id,
        created_by_id=user.id,
    )
    db.add(request)
    await db.commit()
    await db.refresh(request)

    log.info("Service request %s created in org %s", request.id, organization_id)
    return _to_response(request, _is_privileged(permissions))


@router.get("/{request_id}", response_model=ServiceRequestAdminResponse)
async def get_service_request(
    request_id: str,
    permissions: Annotated[EffectivePermissionSet, Depends(require_capability("service-request", "read"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get a service request of the active organization."""
    organization_id = require_active_organization(permissions)
    request = await _get_scoped_request(db, request_id, organization_id)
    return _to_response(request, _is_privileged(permissions))


@router.patch("/{request_id}", response_model=ServiceRequestAdminResponse)
async def update_service_request(
    request_id: str,
    update_data: ServiceRequestAdminUpdate,
    permissions: Annotated[EffectivePermissionSet, Depends(require_capability("service-request", "update"))],
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Update a service request.

    Members may only edit requests they created; assignment and internal
    notes are reserved for organization owners/admins and global admins.
    """
    organization_id = require_active_organization(permissions)
    request = await _get_scoped_request(db, request_id, organization_id)
    privileged = _is_privileged(permissions)

    if not privileged and request.created_by_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only update service requests you created"
        )

    update_dict = update_data.model_dump(exclude_unset=True)
    if not privileged and PRIVILEGED_FIELDS & update_dict.keys():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only organization admins can assign requests or edit internal notes"
        )

    assignee_id = update_dict.get("assigned_to_id")
    if assignee_id is not None:
        result = await db.execute(
            select(Membership.id).where(
                and_(
                    Membership.organization_id == organization_id,
                    Membership.user_id == assignee_id
                )
            )
        )
        if result.first() is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Assignee is not a member of this organization"
            )

    new_status = update_dict.get("status")
    if new_status and new_status != request.status:
        now = datetime.utcnow()
        if new_status == "RESOLVED":
            request.resolved_at = now
        elif new_status == "CLOSED":
            request.closed_at = now
        elif new_status in ("OPEN", "IN_PROGRESS"):
            request.resolved_at = None
            request.closed_at = None

    for field, value in update_dict.items():
        if value is None and field not in PRIVILEGED_FIELDS:
            continue
        setattr(request, field, value)

    await db.commit()
    await db.refresh(request)
    return _to_response(request, privileged)


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_service_request(
    request_id: str,
    permissions: Annotated[EffectivePermissionSet, Depends(require_capability("service-request", "delete"))],
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Delete a service request of the active organization."""
    organization_id = require_active_organization(permissions)
    request = await _get_scoped_request(db, request_id, organization_id)

    await create_audit_log(
        db,
        user_id=user.id,
        action="service_request.delete",
        resource_type="service-request",
        resource_id=request.id,
        organization_id=organization_id,
        details={"title": request.title, "status": request.status},
    )
    await db.delete(request)
    await db.commit()
