"""
FastAPI dependencies for authentication and authorization.
"""
from dataclasses import dataclass
from typing import Annotated
from datetime import datetime
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantdesk.core.database.engine import get_db
from tenantdesk.features.users.models import User
from tenantdesk.features.users.auth import verify_jwt_token, get_appwrite_user, initial_system_role
from tenantdesk.features.sessions.models import UserSession
from tenantdesk.utils import get_logger


log = get_logger(__name__)
security = HTTPBearer()


@dataclass
class Identity:
    """The authenticated user plus the login session the request belongs to."""
    user: User
    session: UserSession

    @property
    def active_organization_id(self) -> str | None:
        return self.session.active_organization_id


async def get_current_identity(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Identity:
    """
    Resolve the caller from the JWT bearer token.

    This dependency:
    1. Decodes the Appwrite JWT
    2. Looks up or creates the local user; ADMIN_EMAILS start as admin, later
       role changes are left alone
    3. Looks up or creates the session row keyed by the Appwrite session id
    """
    payload = verify_jwt_token(credentials.credentials)
    appwrite_user_id = payload.get("userId")
    session_id = payload.get("sessionId")

    if not appwrite_user_id or not session_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    result = await db.execute(
        select(User).where(User.appwrite_id == appwrite_user_id)
    )
    user = result.scalar_one_or_none()

    if user is None:
        appwrite_user = await get_appwrite_user(appwrite_user_id)
        email = (appwrite_user.get("email") or "").strip()
        if not email:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Account has no email address",
            )
        user = User(
            appwrite_id=appwrite_user_id,
            email=email,
            name=appwrite_user.get("name") or email.split("@")[0],
            role=initial_system_role(email),
            last_login_at=datetime.utcnow(),
        )
        db.add(user)
        await db.flush()
        log.info("Provisioned local user %s with role %s", user.id, user.role)

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    session = await db.get(UserSession, session_id)
    if session is None:
        session = UserSession(id=session_id, user_id=user.id)
        db.add(session)
        user.last_login_at = datetime.utcnow()
    elif session.user_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session does not belong to this user",
        )

    await db.commit()
    await db.refresh(user)
    await db.refresh(session)
    return Identity(user=user, session=session)


async def get_current_user(
    identity: Annotated[Identity, Depends(get_current_identity)]
) -> User:
    return identity.user


async def get_current_admin_user(
    user: Annotated[User, Depends(get_current_user)]
) -> User:
    """
    Require the admin system role.

    Usage:
        @router.get("/admin/service-requests")
        async def list_all(admin: User = Depends(get_current_admin_user)):
            ...
    """
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return user


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
