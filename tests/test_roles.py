"""Tests for the statement registry and role definitions."""
import pytest

from tenantdesk.features.permissions.roles import (
    ADMIN_ROLE,
    ADMIN_TENANT_ROLE,
    MAXIMAL_TENANT_ROLE,
    MEMBER_TENANT_ROLE,
    OWNER_TENANT_ROLE,
    USER_ROLE,
    OrganizationRole,
    SystemRole,
    new_role,
    system_role_definition,
)
from tenantdesk.features.permissions.statements import (
    STATEMENTS,
    TENANT_SUBJECTS,
    all_capability_keys,
    capability_key,
    is_tenant_subject,
)


def _keys(role):
    return {
        capability_key(subject, action)
        for subject, actions in role.grants.items()
        for action in actions
    }


def test_registry_is_read_only():
    with pytest.raises(TypeError):
        STATEMENTS["billing"] = frozenset({"read"})  # type: ignore[index]


def test_registry_declares_tenant_subjects():
    assert TENANT_SUBJECTS == {"organization", "member", "invitation", "service-request"}
    assert not is_tenant_subject("user")
    assert not is_tenant_subject("session")


def test_capability_keys_cover_every_declared_action():
    keys = [key for key, _, _ in all_capability_keys()]
    assert len(keys) == sum(len(actions) for actions in STATEMENTS.values())
    assert "service-request.delete" in keys
    assert "member.update-name" in keys


def test_unknown_subject_is_rejected():
    with pytest.raises(ValueError):
        new_role("broken", {"billing": ["read"]})


def test_unknown_action_is_rejected():
    with pytest.raises(ValueError):
        new_role("broken", {"organization": ["create"]})


def test_admin_system_role_grants_whole_catalog():
    assert _keys(ADMIN_ROLE) == {key for key, _, _ in all_capability_keys()}


def test_user_system_role_never_exceeds_member():
    assert _keys(USER_ROLE) <= _keys(MEMBER_TENANT_ROLE)
    assert not USER_ROLE.allows("service-request", "delete")


def test_tenant_roles_are_nested():
    assert _keys(MEMBER_TENANT_ROLE) < _keys(ADMIN_TENANT_ROLE) < _keys(OWNER_TENANT_ROLE)
    assert _keys(OWNER_TENANT_ROLE) - _keys(ADMIN_TENANT_ROLE) == {"organization.delete"}
    assert _keys(OWNER_TENANT_ROLE) == _keys(MAXIMAL_TENANT_ROLE)


def test_member_tenant_grants():
    assert MEMBER_TENANT_ROLE.allows("organization", "read")
    assert MEMBER_TENANT_ROLE.allows("member", "list")
    assert not MEMBER_TENANT_ROLE.allows("member", "delete")
    assert not MEMBER_TENANT_ROLE.allows("invitation", "create")
    for action in ("create", "read", "update", "list"):
        assert MEMBER_TENANT_ROLE.allows("service-request", action)
    assert not MEMBER_TENANT_ROLE.allows("service-request", "delete")


@pytest.mark.parametrize("value,expected", [
    ("admin", SystemRole.ADMIN),
    ("user", SystemRole.USER),
    ("superuser", SystemRole.USER),
    (None, SystemRole.USER),
    ("", SystemRole.USER),
])
def test_system_role_parse_falls_back_to_user(value, expected):
    assert SystemRole.parse(value) is expected
    assert system_role_definition(value).name == expected.value


def test_organization_roles_are_closed():
    assert {role.value for role in OrganizationRole} == {"owner", "admin", "member"}
