"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantdesk.core.database.engine import get_db
from tenantdesk.features.permissions.dependencies import create_audit_log
from tenantdesk.features.permissions.roles import system_role_definition
from tenantdesk.features.query.compiler import compile_query, model_resolver
from tenantdesk.features.query.schemas import QueryInput, query_input_params
from tenantdesk.features.users.models import User
from tenantdesk.features.users.schemas import (
    UserPage,
    UserProfileResponse,
    UserResponse,
    UserRoleUpdate,
    UserUpdate,
)
from tenantdesk.features.users.dependencies import Identity, get_current_identity, get_current_admin_user


router = APIRouter(tags=["users"])

user_field_resolver = model_resolver(
    User,
    ["id", "email", "name", "role", "is_active", "created_at", "last_login_at"],
    aliases={"createdAt": "created_at", "lastLoginAt": "last_login_at", "isActive": "is_active"},
)


def _profile(identity: Identity) -> UserProfileResponse:
    return UserProfileResponse.model_validate(
        {
            **UserResponse.model_validate(identity.user).model_dump(),
            "active_organization_id": identity.active_organization_id,
        }
    )


@router.get("/me", response_model=UserProfileResponse)
async def get_current_user_profile(
    identity: Annotated[Identity, Depends(get_current_identity)]
):
    """Get current authenticated user's profile."""
    return _profile(identity)


@router.patch("/me", response_model=UserProfileResponse)
async def update_current_user_profile(
    update_data: UserUpdate,
    identity: Annotated[Identity, Depends(get_current_identity)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update current user's profile."""
    user = identity.user
    if update_data.name is not None:
        user.name = update_data.name

    await db.commit()
    await db.refresh(user)
    return _profile(identity)


# Admin-only routes
@router.get("/query", response_model=UserPage)
async def query_users(
    query: Annotated[QueryInput, Depends(query_input_params)],
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Search users with filters, sort and pagination (admin only)."""
    compiled = compile_query(
        query,
        user_field_resolver,
        default_order=[User.created_at.desc()],
        tie_breaker=User.id,
    )
    total = (await db.execute(compiled.count_statement(User))).scalar_one()
    result = await db.execute(compiled.apply(select(User)))

    return UserPage(
        items=[UserResponse.model_validate(user) for user in result.scalars().all()],
        total=total,
        take=compiled.limit,
        skip=compiled.offset,
    )


@router.patch("/{user_id}/role", response_model=UserResponse)
async def set_user_role(
    user_id: str,
    role_data: UserRoleUpdate,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Change a user's system role (admin only)."""
    if not system_role_definition(admin.role).allows("user", "set-role"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Permission denied: set-role on user"
        )

    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    # Prevent self-demotion
    if user.id == admin.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot modify your own system role"
        )

    previous_role = user.role
    user.role = role_data.role
    await create_audit_log(
        db,
        user_id=admin.id,
        action="user.set_role",
        resource_type="user",
        resource_id=user.id,
        details={"from": previous_role, "to": role_data.role},
    )
    await db.commit()
    await db.refresh(user)
    return user
