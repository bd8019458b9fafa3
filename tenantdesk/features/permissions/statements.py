"""
Statement registry: every subject the system knows and the actions it supports.

Pure data. Roles (see roles.py) are subsets of this catalog and every
capability key ("subject.action") a resolver emits comes from here.
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterator, Mapping


@dataclass(frozen=True)
class Statement:
    """A catalog entry: one subject and the actions it supports."""
    subject: str
    actions: frozenset[str]
    tenant_scoped: bool = False


_CATALOG = (
    # Identity administration (system-wide)
    Statement("user", frozenset({
        "create", "list", "set-role", "ban", "impersonate",
        "delete", "set-password", "get", "update",
    })),
    Statement("session", frozenset({"list", "revoke", "delete"})),
    # Organization management (tenant-scoped)
    Statement("organization", frozenset({"read", "update", "delete"}), tenant_scoped=True),
    Statement("member", frozenset({
        "read", "list", "create", "update", "delete", "update-name",
    }), tenant_scoped=True),
    Statement("invitation", frozenset({"list", "create", "cancel", "resend"}), tenant_scoped=True),
    # Business subjects (tenant-scoped)
    Statement("service-request", frozenset({
        "create", "read", "update", "delete", "list",
    }), tenant_scoped=True),
)

STATEMENTS: Mapping[str, frozenset[str]] = MappingProxyType(
    {statement.subject: statement.actions for statement in _CATALOG}
)

TENANT_SUBJECTS: frozenset[str] = frozenset(
    statement.subject for statement in _CATALOG if statement.tenant_scoped
)

BUSINESS_SUBJECTS: frozenset[str] = frozenset({"service-request"})


def capability_key(subject: str, action: str) -> str:
    """Flat key used in permission maps, e.g. ``service-request.delete``."""
    return f"{subject}.{action}"


def all_capability_keys() -> Iterator[tuple[str, str, str]]:
    """Yield ``(key, subject, action)`` for every declared combination, in a stable order."""
    for subject in sorted(STATEMENTS):
        for action in sorted(STATEMENTS[subject]):
            yield capability_key(subject, action), subject, action


def is_tenant_subject(subject: str) -> bool:
    return subject in TENANT_SUBJECTS


def validate_grants(grants: Mapping[str, object]) -> None:
    """Raise ValueError if grants reference anything outside the catalog."""
    for subject, actions in grants.items():
        if subject not in STATEMENTS:
            raise ValueError(f"Unknown subject {subject!r}")
        unknown = set(actions) - STATEMENTS[subject]  # type: ignore[arg-type]
        if unknown:
            raise ValueError(f"Unknown actions for {subject!r}: {sorted(unknown)}")
