"""Pytest configuration and fixtures"""
from datetime import datetime, timedelta
from itertools import count

import httpx
import pytest_asyncio
from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from tenantdesk.core.database.engine import create_engine_for, get_db, init_db
from tenantdesk.features.organizations.models import Membership, Organization
from tenantdesk.features.service_requests.models import ServiceRequest
from tenantdesk.features.sessions.models import UserSession
from tenantdesk.features.users.dependencies import Identity, get_current_identity
from tenantdesk.features.users.models import User


TEST_DATABASE_URL = "sqlite+aiosqlite://"
BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


@pytest_asyncio.fixture
async def engine():
    """In-memory database shared by every connection of one test."""
    engine = create_engine_for(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )
    async with session_factory() as session:
        yield session


class Factory:
    """Creates rows with deterministic, strictly increasing timestamps."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._tick = count()

    def _next_time(self) -> datetime:
        return BASE_TIME + timedelta(seconds=next(self._tick))

    async def user(self, email: str, role: str = "user") -> User:
        user = User(appwrite_id=f"aw-{email}", email=email, name=email.split("@")[0], role=role)
        self.db.add(user)
        await self.db.flush()
        await self.db.refresh(user)
        return user

    async def organization(self, slug: str) -> Organization:
        organization = Organization(name=slug.title(), slug=slug)
        self.db.add(organization)
        await self.db.flush()
        await self.db.refresh(organization)
        return organization

    async def member(self, organization: Organization, user: User, role: str = "member") -> Membership:
        membership = Membership(
            organization_id=organization.id,
            user_id=user.id,
            role=role,
            created_at=self._next_time(),
        )
        self.db.add(membership)
        await self.db.flush()
        await self.db.refresh(membership)
        return membership

    async def request(
        self,
        organization: Organization,
        creator: User,
        title: str,
        *,
        same_time: bool = False,
        **fields,
    ) -> ServiceRequest:
        fields.setdefault("description", f"{title} description text")
        fields.setdefault("created_at", BASE_TIME if same_time else self._next_time())
        request = ServiceRequest(
            title=title,
            organization_id=organization.id,
            created_by_id=creator.id,
            **fields,
        )
        self.db.add(request)
        await self.db.flush()
        await self.db.refresh(request)
        return request


@pytest_asyncio.fixture
async def factory(db):
    return Factory(db)


class ApiHarness:
    """httpx client against the app, with identity injected instead of a JWT."""

    def __init__(self, client: httpx.AsyncClient, db: AsyncSession):
        self.client = client
        self.db = db
        self.identity: Identity | None = None
        self._sessions = count(1)

    async def login(self, user: User, active_organization_id: str | None = None) -> Identity:
        session = UserSession(
            id=f"session-{next(self._sessions)}",
            user_id=user.id,
            active_organization_id=active_organization_id,
        )
        self.db.add(session)
        await self.db.commit()
        await self.db.refresh(session)
        self.identity = Identity(user=user, session=session)
        return self.identity

    def logout(self) -> None:
        self.identity = None


@pytest_asyncio.fixture
async def api(db):
    from tenantdesk.core.ratelimit import limiter
    from tenantdesk.main import app

    limiter.reset()

    async def override_get_db():
        yield db

    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
    harness = ApiHarness(client, db)

    async def override_get_current_identity() -> Identity:
        if harness.identity is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
        return harness.identity

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_identity] = override_get_current_identity
    try:
        yield harness
    finally:
        await client.aclose()
        app.dependency_overrides.clear()
