"""
Seed script to populate a demo tenant.

Creates (idempotently):
- An owner, an org admin and a member user
- One organization with the three memberships
- A handful of service requests in mixed states

Usage:
    python -m scripts.seed_demo
"""
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantdesk.core.database.engine import get_db, init_db
from tenantdesk.features.organizations.models import Organization, Membership
from tenantdesk.features.service_requests.models import ServiceRequest
from tenantdesk.features.users.models import User
from tenantdesk.utils import get_logger


log = get_logger(__name__)


DEMO_ORGANIZATION = {"name": "Acme Support", "slug": "acme-support"}

# (appwrite id, email, name, organization role)
DEMO_USERS = [
    ("demo-owner", "owner@acme.io", "Olivia Owner", "owner"),
    ("demo-admin", "admin@acme.io", "Adam Admin", "admin"),
    ("demo-member", "member@acme.io", "Mia Member", "member"),
]

# (title, description, status, priority, creator appwrite id)
DEMO_REQUESTS = [
    ("Printer offline", "The second floor printer stopped responding.", "OPEN", "MEDIUM", "demo-member"),
    ("VPN access", "New contractor needs VPN credentials.", "IN_PROGRESS", "HIGH", "demo-member"),
    ("Laptop replacement", "Battery swells after two hours of use.", "RESOLVED", "URGENT", "demo-admin"),
    ("Office chair", "Request for an ergonomic chair for desk 14.", "CLOSED", "LOW", "demo-owner"),
]


async def seed_users(db: AsyncSession) -> dict[str, User]:
    users = {}
    for appwrite_id, email, name, _ in DEMO_USERS:
        result = await db.execute(select(User).where(User.appwrite_id == appwrite_id))
        user = result.scalar_one_or_none()
        if user is None:
            user = User(appwrite_id=appwrite_id, email=email, name=name)
            db.add(user)
            log.info("Created user %s", email)
        users[appwrite_id] = user
    await db.flush()
    return users


async def seed_organization(db: AsyncSession, users: dict[str, User]) -> Organization:
    result = await db.execute(select(Organization).where(Organization.slug == DEMO_ORGANIZATION["slug"]))
    organization = result.scalar_one_or_none()
    if organization is None:
        organization = Organization(**DEMO_ORGANIZATION)
        db.add(organization)
        await db.flush()
        log.info("Created organization %s", organization.slug)

    for appwrite_id, _, _, role in DEMO_USERS:
        user = users[appwrite_id]
        result = await db.execute(
            select(Membership).where(
                Membership.organization_id == organization.id,
                Membership.user_id == user.id
            )
        )
        if result.scalar_one_or_none() is None:
            db.add(Membership(organization_id=organization.id, user_id=user.id, role=role))
            log.info("Added %s as %s", user.email, role)
    await db.flush()
    return organization


async def seed_requests(db: AsyncSession, organization: Organization, users: dict[str, User]) -> None:
    result = await db.execute(
        select(ServiceRequest.title).where(ServiceRequest.organization_id == organization.id)
    )
    existing = set(result.scalars().all())

    for title, description, status, priority, creator in DEMO_REQUESTS:
        if title in existing:
            continue
        db.add(ServiceRequest(
            title=title,
            description=description,
            status=status,
            priority=priority,
            organization_id=organization.id,
            created_by_id=users[creator].id,
        ))
        log.info("Created service request %r", title)


async def main():
    """Main function to seed the demo tenant."""
    log.info("Starting demo seeding...")

    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            users = await seed_users(db)
            organization = await seed_organization(db, users)
            await seed_requests(db, organization, users)
            await db.commit()
            log.info("Demo seeding completed: organization %s (%s)", organization.slug, organization.id)
        except Exception as e:
            log.error("Error seeding demo data: %s", e, exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
