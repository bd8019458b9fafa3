"""
Role definitions built from the statement registry.

Two role scopes exist:
- SystemRole: identity-wide ("user" | "admin"), stored on the user row
- OrganizationRole: per (organization, user) membership ("owner" | "admin" | "member")

Every role is a frozen subject -> action-set mapping; a missing subject means
no grants for it.
"""
import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from tenantdesk.features.permissions.statements import (
    STATEMENTS,
    TENANT_SUBJECTS,
    validate_grants,
)


class SystemRole(str, enum.Enum):
    """Identity-wide role."""
    USER = "user"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: Optional[str]) -> "SystemRole":
        """Unknown or empty values resolve to USER (least privilege)."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.USER


class OrganizationRole(str, enum.Enum):
    """Role held inside a single organization."""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


def _freeze(grants: Mapping[str, Iterable[str]]) -> Mapping[str, frozenset[str]]:
    validate_grants(grants)
    return MappingProxyType({subject: frozenset(actions) for subject, actions in grants.items()})


@dataclass(frozen=True)
class Role:
    """A named bundle of allowed actions per subject."""
    name: str
    grants: Mapping[str, frozenset[str]] = field(default_factory=dict)

    def allows(self, subject: str, action: str) -> bool:
        return action in self.grants.get(subject, frozenset())

    def tenant_grants(self) -> Mapping[str, frozenset[str]]:
        return {s: a for s, a in self.grants.items() if s in TENANT_SUBJECTS}

    def non_tenant_grants(self) -> Mapping[str, frozenset[str]]:
        return {s: a for s, a in self.grants.items() if s not in TENANT_SUBJECTS}


def new_role(name: str, grants: Mapping[str, Iterable[str]]) -> Role:
    return Role(name=name, grants=_freeze(grants))


SERVICE_REQUEST_ALL = ("create", "read", "update", "delete", "list")
SERVICE_REQUEST_NO_DELETE = ("create", "read", "update", "list")
MEMBER_ALL = ("read", "list", "create", "update", "delete", "update-name")
INVITATION_ALL = ("list", "create", "cancel", "resend")


# System roles
USER_ROLE = new_role("user", {
    "service-request": SERVICE_REQUEST_NO_DELETE,
})

ADMIN_ROLE = new_role("admin", dict(STATEMENTS))

SYSTEM_ROLES: Mapping[SystemRole, Role] = MappingProxyType({
    SystemRole.USER: USER_ROLE,
    SystemRole.ADMIN: ADMIN_ROLE,
})


# Tenant grants per organization role
OWNER_TENANT_ROLE = new_role("owner", {
    "organization": ("read", "update", "delete"),
    "member": MEMBER_ALL,
    "invitation": INVITATION_ALL,
    "service-request": SERVICE_REQUEST_ALL,
})

ADMIN_TENANT_ROLE = new_role("admin", {
    "organization": ("read", "update"),
    "member": MEMBER_ALL,
    "invitation": INVITATION_ALL,
    "service-request": SERVICE_REQUEST_ALL,
})

MEMBER_TENANT_ROLE = new_role("member", {
    "organization": ("read",),
    "member": ("read", "list"),
    "service-request": SERVICE_REQUEST_NO_DELETE,
})

ORGANIZATION_ROLES: Mapping[OrganizationRole, Role] = MappingProxyType({
    OrganizationRole.OWNER: OWNER_TENANT_ROLE,
    OrganizationRole.ADMIN: ADMIN_TENANT_ROLE,
    OrganizationRole.MEMBER: MEMBER_TENANT_ROLE,
})

# Global admins get every tenant action regardless of membership
MAXIMAL_TENANT_ROLE = new_role("tenant-admin", {
    subject: STATEMENTS[subject] for subject in TENANT_SUBJECTS
})


def system_role_definition(system_role: Optional[str]) -> Role:
    return SYSTEM_ROLES[SystemRole.parse(system_role)]


def organization_role_definition(org_role: Optional[OrganizationRole]) -> Optional[Role]:
    if org_role is None:
        return None
    return ORGANIZATION_ROLES[org_role]
