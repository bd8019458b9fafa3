"""
Capability resolution: merges a user's system role and organization role
into one flat "subject.action" -> bool table.

Resolution is a pure function of (system role, active organization id, the
single membership row for that pair). Lookup failures never widen the result:
they degrade toward the base system role, which is never more than an
organization member.
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Protocol

from tenantdesk.features.permissions.roles import (
    MAXIMAL_TENANT_ROLE,
    ORGANIZATION_ROLES,
    OrganizationRole,
    SystemRole,
    system_role_definition,
)
from tenantdesk.features.permissions.statements import (
    TENANT_SUBJECTS,
    all_capability_keys,
    capability_key,
)
from tenantdesk.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Collaborator contracts
# ============================================================================

@dataclass(frozen=True)
class MembershipRecord:
    organization_id: str
    user_id: str
    role: str


@dataclass(frozen=True)
class OrganizationRef:
    id: str
    name: str
    slug: str


class MembershipStore(Protocol):
    async def get_membership(self, user_id: str, organization_id: str) -> Optional[MembershipRecord]:
        ...

    async def list_memberships(self, user_id: str) -> list[MembershipRecord]:
        ...


class OrganizationStore(Protocol):
    async def get_organization(self, organization_id: str) -> Optional[OrganizationRef]:
        ...


# ============================================================================
# Effective permission set
# ============================================================================

@dataclass(frozen=True)
class EffectivePermissionSet:
    """
    Resolved grant table for one identity + active organization.

    Derived and ephemeral: recompute whenever the system role, the active
    organization or the membership row changes.
    """
    capabilities: Mapping[str, bool]
    system_role: Optional[SystemRole] = None
    organization_role: Optional[OrganizationRole] = None
    organization: Optional[OrganizationRef] = None
    organization_id: Optional[str] = None

    def can(self, subject: str, action: str) -> bool:
        return self.capabilities.get(capability_key(subject, action), False)

    def granted(self) -> list[str]:
        return sorted(key for key, allowed in self.capabilities.items() if allowed)

    @classmethod
    def empty(cls) -> "EffectivePermissionSet":
        """The no-access set: every declared capability is False."""
        return cls(capabilities=_flatten({}))


def _flatten(grants: Mapping[str, frozenset[str]]) -> Mapping[str, bool]:
    table = {
        key: action in grants.get(subject, frozenset())
        for key, subject, action in all_capability_keys()
    }
    return MappingProxyType(table)


# ============================================================================
# Resolver
# ============================================================================

class CapabilityResolver:
    """
    Resolve effective capabilities for a user.

    Usage:
        resolver = CapabilityResolver(SqlMembershipStore(db), SqlOrganizationStore(db))
        permissions = await resolver.resolve(user.id, user.role, session.active_organization_id)
        if permissions.can("service-request", "delete"):
            ...
    """

    def __init__(self, memberships: MembershipStore, organizations: OrganizationStore):
        self.memberships = memberships
        self.organizations = organizations

    async def resolve(
        self,
        user_id: str,
        system_role: Optional[str],
        active_organization_id: Optional[str] = None,
    ) -> EffectivePermissionSet:
        role = SystemRole.parse(system_role)
        base = system_role_definition(role)

        if not active_organization_id:
            return EffectivePermissionSet(capabilities=_flatten(base.grants), system_role=role)

        org_role, lookup_failed = await self._lookup_role(user_id, active_organization_id)

        if role is SystemRole.ADMIN:
            tenant_grants = MAXIMAL_TENANT_ROLE.tenant_grants()
        elif lookup_failed:
            tenant_grants = base.tenant_grants()
        elif org_role is None:
            tenant_grants = {}
        else:
            tenant_grants = ORGANIZATION_ROLES[org_role].tenant_grants()

        merged = dict(base.non_tenant_grants())
        merged.update({s: a for s, a in tenant_grants.items() if s in TENANT_SUBJECTS})

        organization = None
        if role is SystemRole.ADMIN or org_role is not None:
            organization = await self._lookup_organization(active_organization_id)

        return EffectivePermissionSet(
            capabilities=_flatten(merged),
            system_role=role,
            organization_role=org_role,
            organization=organization,
            organization_id=active_organization_id,
        )

    async def _lookup_role(self, user_id: str, organization_id: str) -> tuple[Optional[OrganizationRole], bool]:
        """Return (organization role, lookup failed)."""
        try:
            membership = await self.memberships.get_membership(user_id, organization_id)
        except Exception:
            log.warning(
                "Membership lookup failed for user %s in org %s; using base role grants",
                user_id, organization_id, exc_info=True,
            )
            return None, True

        if membership is None:
            return None, False
        try:
            return OrganizationRole(membership.role), False
        except ValueError:
            log.warning("Ignoring unknown organization role %r for user %s", membership.role, user_id)
            return None, False

    async def _lookup_organization(self, organization_id: str) -> Optional[OrganizationRef]:
        try:
            return await self.organizations.get_organization(organization_id)
        except Exception:
            log.warning("Organization lookup failed for %s", organization_id, exc_info=True)
            return None

    async def get_organization_role(self, user_id: str, organization_id: str) -> Optional[OrganizationRole]:
        org_role, _ = await self._lookup_role(user_id, organization_id)
        return org_role

    async def is_organization_member(
        self, user_id: str, organization_id: str, system_role: Optional[str] = None
    ) -> bool:
        """Global admins count as members of every organization."""
        if SystemRole.parse(system_role) is SystemRole.ADMIN:
            return True
        return await self.get_organization_role(user_id, organization_id) is not None

    async def has_permission(
        self,
        user_id: str,
        system_role: Optional[str],
        organization_id: Optional[str],
        subject: str,
        action: str,
    ) -> bool:
        permissions = await self.resolve(user_id, system_role, organization_id)
        return permissions.can(subject, action)
