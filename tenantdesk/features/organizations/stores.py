"""
SQL-backed membership and organization stores consumed by the capability resolver.
"""
from typing import Optional
from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from tenantdesk.features.organizations.models import Organization, Membership
from tenantdesk.features.permissions.resolver import MembershipRecord, OrganizationRef


class SqlMembershipStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_membership(self, user_id: str, organization_id: str) -> Optional[MembershipRecord]:
        result = await self.db.execute(
            select(Membership.organization_id, Membership.user_id, Membership.role).where(
                and_(
                    Membership.user_id == user_id,
                    Membership.organization_id == organization_id
                )
            ).limit(1)
        )
        row = result.first()
        if row is None:
            return None
        return MembershipRecord(organization_id=row.organization_id, user_id=row.user_id, role=row.role)

    async def list_memberships(self, user_id: str) -> list[MembershipRecord]:
        """Memberships of a user, oldest first."""
        result = await self.db.execute(
            select(Membership.organization_id, Membership.user_id, Membership.role)
            .where(Membership.user_id == user_id)
            .order_by(Membership.created_at, Membership.id)
        )
        return [
            MembershipRecord(organization_id=row.organization_id, user_id=row.user_id, role=row.role)
            for row in result
        ]


class SqlOrganizationStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_organization(self, organization_id: str) -> Optional[OrganizationRef]:
        result = await self.db.execute(
            select(Organization.id, Organization.name, Organization.slug)
            .where(Organization.id == organization_id)
        )
        row = result.first()
        if row is None:
            return None
        return OrganizationRef(id=row.id, name=row.name, slug=row.slug)
