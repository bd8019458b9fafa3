"""Tests for capability resolution."""
import pytest

from tenantdesk.features.permissions.resolver import (
    CapabilityResolver,
    EffectivePermissionSet,
    MembershipRecord,
    OrganizationRef,
)
from tenantdesk.features.permissions.roles import OrganizationRole, SystemRole
from tenantdesk.features.permissions.statements import TENANT_SUBJECTS, all_capability_keys


ORG = "org-o"


class FakeMemberships:
    def __init__(self, roles=None, fail=False):
        self.roles = roles or {}
        self.fail = fail
        self.calls = 0

    async def get_membership(self, user_id, organization_id):
        self.calls += 1
        if self.fail:
            raise ConnectionError("membership store unavailable")
        role = self.roles.get((user_id, organization_id))
        if role is None:
            return None
        return MembershipRecord(organization_id=organization_id, user_id=user_id, role=role)

    async def list_memberships(self, user_id):
        return [
            MembershipRecord(organization_id=org_id, user_id=uid, role=role)
            for (uid, org_id), role in self.roles.items()
            if uid == user_id
        ]


class FakeOrganizations:
    def __init__(self, fail=False):
        self.fail = fail

    async def get_organization(self, organization_id):
        if self.fail:
            raise ConnectionError("organization store unavailable")
        return OrganizationRef(id=organization_id, name="Org O", slug="org-o")


def resolver(roles=None, fail=False, organizations_fail=False):
    return CapabilityResolver(FakeMemberships(roles, fail), FakeOrganizations(organizations_fail))


def granted(permissions):
    return {key for key, allowed in permissions.capabilities.items() if allowed}


@pytest.mark.asyncio
async def test_scenario_a_member_cannot_delete_service_requests():
    permissions = await resolver({("u", ORG): "member"}).resolve("u", "user", ORG)

    assert permissions.can("service-request", "read")
    assert not permissions.can("service-request", "delete")
    assert permissions.organization_role is OrganizationRole.MEMBER
    assert permissions.organization.id == ORG


@pytest.mark.asyncio
async def test_scenario_b_global_admin_without_membership_gets_tenant_grants():
    permissions = await resolver().resolve("u", "admin", ORG)

    assert permissions.can("member", "delete")
    assert permissions.organization_role is None
    assert permissions.organization is not None


@pytest.mark.asyncio
async def test_role_precedence():
    admin = await resolver().resolve("u", "admin", ORG)
    org_admin = await resolver({("u", ORG): "admin"}).resolve("u", "user", ORG)

    assert admin.can("organization", "delete")
    assert not org_admin.can("organization", "delete")
    assert org_admin.can("organization", "update")
    assert org_admin.can("member", "delete")


@pytest.mark.asyncio
@pytest.mark.parametrize("system_role", ["user", "admin"])
async def test_lookup_failure_never_exceeds_member(system_role):
    failed = await resolver(fail=True).resolve("u", system_role, ORG)
    as_member = await resolver({("u", ORG): "member"}).resolve("u", system_role, ORG)

    assert granted(failed) <= granted(as_member)


@pytest.mark.asyncio
async def test_lookup_failure_degrades_to_base_role():
    permissions = await resolver(fail=True).resolve("u", "user", ORG)

    assert permissions.organization_role is None
    assert permissions.organization is None
    assert permissions.can("service-request", "read")
    assert not permissions.can("organization", "read")
    assert not permissions.can("service-request", "delete")


@pytest.mark.asyncio
async def test_non_member_has_no_tenant_grants():
    permissions = await resolver({("u", "other"): "owner"}).resolve("u", "user", ORG)

    tenant_keys = {key for key, subject, _ in all_capability_keys() if subject in TENANT_SUBJECTS}
    assert not (granted(permissions) & tenant_keys)
    assert permissions.organization is None


@pytest.mark.asyncio
async def test_without_organization_returns_system_role_grants():
    memberships = FakeMemberships({("u", ORG): "owner"})
    permissions = await CapabilityResolver(memberships, FakeOrganizations()).resolve("u", "user")

    assert memberships.calls == 0
    assert permissions.organization_id is None
    assert permissions.can("service-request", "create")
    assert not permissions.can("organization", "read")


@pytest.mark.asyncio
async def test_non_tenant_subjects_come_from_system_role():
    owner = await resolver({("u", ORG): "owner"}).resolve("u", "user", ORG)
    admin = await resolver().resolve("u", "admin", ORG)

    assert not owner.can("user", "set-role")
    assert admin.can("user", "set-role")
    assert admin.can("session", "revoke")


@pytest.mark.asyncio
async def test_result_covers_every_declared_capability():
    permissions = await resolver({("u", ORG): "member"}).resolve("u", "user", ORG)

    assert set(permissions.capabilities) == {key for key, _, _ in all_capability_keys()}
    assert permissions.can("billing", "read") is False


@pytest.mark.asyncio
async def test_unknown_membership_role_is_ignored():
    permissions = await resolver({("u", ORG): "superowner"}).resolve("u", "user", ORG)

    assert permissions.organization_role is None
    assert not permissions.can("organization", "read")


@pytest.mark.asyncio
async def test_unknown_system_role_is_least_privilege():
    permissions = await resolver().resolve("u", "root", ORG)

    assert permissions.system_role is SystemRole.USER
    assert not permissions.can("member", "delete")


@pytest.mark.asyncio
async def test_organization_lookup_failure_keeps_capabilities():
    permissions = await resolver({("u", ORG): "owner"}, organizations_fail=True).resolve("u", "user", ORG)

    assert permissions.organization is None
    assert permissions.can("organization", "delete")


@pytest.mark.asyncio
async def test_membership_helpers():
    r = resolver({("u", ORG): "admin"})

    assert await r.get_organization_role("u", ORG) is OrganizationRole.ADMIN
    assert await r.is_organization_member("u", ORG)
    assert not await r.is_organization_member("v", ORG)
    assert await r.is_organization_member("v", ORG, system_role="admin")
    assert await r.has_permission("u", "user", ORG, "invitation", "create")
    assert not await r.has_permission("v", "user", ORG, "invitation", "create")


def test_empty_set_denies_everything():
    empty = EffectivePermissionSet.empty()

    assert empty.granted() == []
    assert not empty.can("service-request", "read")
