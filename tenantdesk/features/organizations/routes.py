"""
Organization feature routes: organizations, members and invitations.
"""
from typing import Annotated
from datetime import datetime, timedelta
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, func, and_, update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tenantdesk.core import config
from tenantdesk.core.database.engine import get_db
from tenantdesk.features.users.models import User
from tenantdesk.features.users.dependencies import Identity, get_current_identity, get_current_user
from tenantdesk.features.sessions.models import UserSession
from tenantdesk.features.organizations.models import (
    Organization,
    Membership,
    Invitation,
    InvitationStatus,
)
from tenantdesk.features.organizations.schemas import (
    OrganizationCreate,
    OrganizationUpdate,
    OrganizationResponse,
    MyOrganizationResponse,
    MemberResponse,
    MemberRoleUpdate,
    InvitationCreate,
    InvitationResponse,
)
from tenantdesk.features.organizations.dependencies import (
    get_organization_by_id,
    require_organization_capability,
)
from tenantdesk.features.permissions.dependencies import create_audit_log
from tenantdesk.features.permissions.resolver import EffectivePermissionSet
from tenantdesk.features.permissions.roles import OrganizationRole, SystemRole
from tenantdesk.features.service_requests.models import ServiceRequest
from tenantdesk.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["organizations"])


async def _member_count(db: AsyncSession, organization_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(Membership).where(Membership.organization_id == organization_id)
    )
    return result.scalar_one()


async def _owner_count(db: AsyncSession, organization_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(Membership).where(
            and_(
                Membership.organization_id == organization_id,
                Membership.role == OrganizationRole.OWNER.value
            )
        )
    )
    return result.scalar_one()


async def _organization_response(db: AsyncSession, organization: Organization) -> OrganizationResponse:
    response = OrganizationResponse.model_validate(organization)
    response.member_count = await _member_count(db, organization.id)
    return response


async def _slug_taken(db: AsyncSession, slug: str, exclude_id: str | None = None) -> bool:
    query = select(Organization.id).where(Organization.slug == slug)
    if exclude_id:
        query = query.where(Organization.id != exclude_id)
    result = await db.execute(query)
    return result.first() is not None


def _acts_as_owner(permissions: EffectivePermissionSet) -> bool:
    return (
        permissions.system_role is SystemRole.ADMIN
        or permissions.organization_role is OrganizationRole.OWNER
    )


def _ensure_can_assign(permissions: EffectivePermissionSet, role: str) -> None:
    if role == OrganizationRole.OWNER.value and not _acts_as_owner(permissions):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only owners can grant the owner role"
        )


def _member_response(membership: Membership, user: User | None = None) -> MemberResponse:
    user = user or membership.user
    return MemberResponse(
        id=membership.id,
        organization_id=membership.organization_id,
        user_id=membership.user_id,
        role=membership.role,
        email=user.email if user else None,
        name=user.name if user else None,
        created_at=membership.created_at,
    )


async def _get_membership(db: AsyncSession, organization_id: str, user_id: str) -> Membership:
    result = await db.execute(
        select(Membership).where(
            and_(
                Membership.organization_id == organization_id,
                Membership.user_id == user_id
            )
        )
    )
    membership = result.scalar_one_or_none()
    if membership is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Member not found"
        )
    return membership


async def _get_invitation(db: AsyncSession, organization_id: str, invitation_id: str) -> Invitation:
    invitation = await db.get(Invitation, invitation_id)
    if invitation is None or invitation.organization_id != organization_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invitation not found"
        )
    return invitation


def _is_expired(invitation: Invitation) -> bool:
    # SQLite hands back naive datetimes
    expires_at = invitation.expires_at.replace(tzinfo=None)
    return expires_at < datetime.utcnow()


async def _clear_active_organization(db: AsyncSession, user_id: str, organization_id: str) -> None:
    """Drop the organization from every session of a user that no longer belongs to it."""
    await db.execute(
        update(UserSession)
        .where(
            and_(
                UserSession.user_id == user_id,
                UserSession.active_organization_id == organization_id
            )
        )
        .values(active_organization_id=None)
    )


# Organization CRUD endpoints
@router.post("", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    org_data: OrganizationCreate,
    identity: Annotated[Identity, Depends(get_current_identity)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create an organization. The creator becomes its owner and it becomes the active organization."""
    if await _slug_taken(db, org_data.slug):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Organization with this slug already exists"
        )

    organization = Organization(name=org_data.name, slug=org_data.slug)
    db.add(organization)
    await db.flush()

    db.add(Membership(
        organization_id=organization.id,
        user_id=identity.user.id,
        role=OrganizationRole.OWNER.value
    ))
    identity.session.active_organization_id = organization.id

    await create_audit_log(
        db,
        user_id=identity.user.id,
        action="organization.create",
        resource_type="organization",
        resource_id=organization.id,
        organization_id=organization.id,
    )
    await db.commit()
    await db.refresh(organization)

    return await _organization_response(db, organization)


@router.get("/my", response_model=list[MyOrganizationResponse])
async def get_my_organizations(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get all organizations the current user is a member of, oldest membership first."""
    result = await db.execute(
        select(Organization, Membership.role)
        .join(Membership, Membership.organization_id == Organization.id)
        .where(Membership.user_id == user.id)
        .order_by(Membership.created_at, Membership.id)
    )

    organizations = []
    for organization, role in result.all():
        response = MyOrganizationResponse.model_validate(
            {**OrganizationResponse.model_validate(organization).model_dump(), "role": role}
        )
        response.member_count = await _member_count(db, organization.id)
        organizations.append(response)
    return organizations


@router.get("/{organization_id}", response_model=OrganizationResponse)
async def get_organization(
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    _: Annotated[EffectivePermissionSet, Depends(require_organization_capability("organization", "read"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get organization by ID."""
    return await _organization_response(db, organization)


@router.patch("/{organization_id}", response_model=OrganizationResponse)
async def update_organization(
    update_data: OrganizationUpdate,
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    _: Annotated[EffectivePermissionSet, Depends(require_organization_capability("organization", "update"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update organization name or slug."""
    update_dict = update_data.model_dump(exclude_unset=True)
    if update_dict.get("slug") and await _slug_taken(db, update_dict["slug"], exclude_id=organization.id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Organization with this slug already exists"
        )

    for field, value in update_dict.items():
        if value is not None:
            setattr(organization, field, value)

    await db.commit()
    await db.refresh(organization)
    return await _organization_response(db, organization)


@router.delete("/{organization_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_organization(
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    _: Annotated[EffectivePermissionSet, Depends(require_organization_capability("organization", "delete"))],
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Delete an organization with its memberships, invitations and service requests."""
    await db.execute(delete(ServiceRequest).where(ServiceRequest.organization_id == organization.id))
    await db.execute(
        update(UserSession)
        .where(UserSession.active_organization_id == organization.id)
        .values(active_organization_id=None)
    )
    await create_audit_log(
        db,
        user_id=user.id,
        action="organization.delete",
        resource_type="organization",
        resource_id=organization.id,
        organization_id=organization.id,
        details={"slug": organization.slug, "name": organization.name},
    )
    await db.delete(organization)
    await db.commit()


# Member endpoints
@router.get("/{organization_id}/members", response_model=list[MemberResponse])
async def list_members(
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    _: Annotated[EffectivePermissionSet, Depends(require_organization_capability("member", "list"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """List members of an organization."""
    result = await db.execute(
        select(Membership)
        .where(Membership.organization_id == organization.id)
        .order_by(Membership.created_at, Membership.id)
    )
    return [_member_response(membership) for membership in result.scalars().all()]


@router.patch("/{organization_id}/members/{user_id}", response_model=MemberResponse)
async def update_member_role(
    user_id: str,
    role_data: MemberRoleUpdate,
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    permissions: Annotated[EffectivePermissionSet, Depends(require_organization_capability("member", "update"))],
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Change a member's organization role."""
    membership = await _get_membership(db, organization.id, user_id)
    _ensure_can_assign(permissions, role_data.role)

    if membership.role == OrganizationRole.OWNER.value:
        if not _acts_as_owner(permissions):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only owners can change an owner's role"
            )
        if role_data.role != OrganizationRole.OWNER.value and await _owner_count(db, organization.id) <= 1:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Organization must keep at least one owner"
            )

    previous_role = membership.role
    membership.role = role_data.role
    await create_audit_log(
        db,
        user_id=user.id,
        action="member.role_change",
        resource_type="member",
        resource_id=membership.id,
        organization_id=organization.id,
        details={"user_id": user_id, "from": previous_role, "to": role_data.role},
    )
    await db.commit()
    return _member_response(membership)


@router.delete("/{organization_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    user_id: str,
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    permissions: Annotated[EffectivePermissionSet, Depends(require_organization_capability("member", "delete"))],
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Remove a member from an organization."""
    membership = await _get_membership(db, organization.id, user_id)

    if membership.role == OrganizationRole.OWNER.value:
        if not _acts_as_owner(permissions):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only owners can remove an owner"
            )
        if await _owner_count(db, organization.id) <= 1:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Organization must keep at least one owner"
            )

    await _clear_active_organization(db, user_id, organization.id)
    await create_audit_log(
        db,
        user_id=user.id,
        action="member.remove",
        resource_type="member",
        resource_id=membership.id,
        organization_id=organization.id,
        details={"user_id": user_id, "role": membership.role},
    )
    await db.delete(membership)
    await db.commit()


# Invitation endpoints
@router.get("/{organization_id}/invitations", response_model=list[InvitationResponse])
async def list_invitations(
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    _: Annotated[EffectivePermissionSet, Depends(require_organization_capability("invitation", "list"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """List pending invitations of an organization."""
    result = await db.execute(
        select(Invitation)
        .where(
            and_(
                Invitation.organization_id == organization.id,
                Invitation.status == InvitationStatus.PENDING
            )
        )
        .order_by(Invitation.created_at.desc(), Invitation.id)
    )
    return result.scalars().all()


@router.post(
    "/{organization_id}/invitations",
    response_model=InvitationResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_invitation(
    invitation_data: InvitationCreate,
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    permissions: Annotated[EffectivePermissionSet, Depends(require_organization_capability("invitation", "create"))],
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Invite an email address to join the organization."""
    _ensure_can_assign(permissions, invitation_data.role)
    email = invitation_data.email.lower()

    result = await db.execute(
        select(Membership.id)
        .join(User, User.id == Membership.user_id)
        .where(
            and_(
                Membership.organization_id == organization.id,
                func.lower(User.email) == email
            )
        )
    )
    if result.first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User is already a member of this organization"
        )

    result = await db.execute(
        select(Invitation.id).where(
            and_(
                Invitation.organization_id == organization.id,
                Invitation.email == email,
                Invitation.status == InvitationStatus.PENDING
            )
        )
    )
    if result.first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A pending invitation already exists for this email"
        )

    invitation = Invitation(
        organization_id=organization.id,
        email=email,
        role=invitation_data.role,
        inviter_id=user.id,
        expires_at=datetime.utcnow() + timedelta(days=config.INVITATION_TTL_DAYS),
    )
    db.add(invitation)
    await db.commit()
    await db.refresh(invitation)

    # Delivery is owned by the identity provider
    log.info("Invitation %s created for %s in org %s", invitation.id, email, organization.id)
    return invitation


@router.post("/{organization_id}/invitations/{invitation_id}/cancel", response_model=InvitationResponse)
async def cancel_invitation(
    invitation_id: str,
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    _: Annotated[EffectivePermissionSet, Depends(require_organization_capability("invitation", "cancel"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Cancel a pending invitation."""
    invitation = await _get_invitation(db, organization.id, invitation_id)
    if invitation.status != InvitationStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invitation is already {invitation.status.value}"
        )

    invitation.status = InvitationStatus.CANCELED
    await db.commit()
    await db.refresh(invitation)
    return invitation


@router.post("/{organization_id}/invitations/{invitation_id}/resend", response_model=InvitationResponse)
async def resend_invitation(
    invitation_id: str,
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    _: Annotated[EffectivePermissionSet, Depends(require_organization_capability("invitation", "resend"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Resend a pending invitation and extend its expiry."""
    invitation = await _get_invitation(db, organization.id, invitation_id)
    if invitation.status != InvitationStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invitation is already {invitation.status.value}"
        )

    invitation.sent_count += 1
    invitation.expires_at = datetime.utcnow() + timedelta(days=config.INVITATION_TTL_DAYS)
    await db.commit()
    await db.refresh(invitation)

    log.info("Invitation %s resent (%d)", invitation.id, invitation.sent_count)
    return invitation


@router.post("/invitations/{invitation_id}/accept", response_model=MemberResponse)
async def accept_invitation(
    invitation_id: str,
    identity: Annotated[Identity, Depends(get_current_identity)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Accept an invitation addressed to the caller's email and switch to its organization."""
    invitation = await db.get(Invitation, invitation_id)
    if invitation is None or invitation.email != identity.user.email.lower():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invitation not found"
        )
    if invitation.status != InvitationStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invitation is already {invitation.status.value}"
        )
    if _is_expired(invitation):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invitation has expired"
        )

    membership = Membership(
        organization_id=invitation.organization_id,
        user_id=identity.user.id,
        role=invitation.role,
    )
    db.add(membership)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User is already a member of this organization"
        )

    invitation.status = InvitationStatus.ACCEPTED
    identity.session.active_organization_id = invitation.organization_id
    await create_audit_log(
        db,
        user_id=identity.user.id,
        action="invitation.accept",
        resource_type="invitation",
        resource_id=invitation.id,
        organization_id=invitation.organization_id,
        details={"role": invitation.role},
    )
    await db.commit()
    await db.refresh(membership)
    return _member_response(membership, identity.user)
