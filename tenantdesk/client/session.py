"""
Per-session client context.

A TenantSession owns the state that mirrors one login session: the active
organization switcher, its auto-selection policy and the permission cache.
Create one per identity session; never share it between identities.
"""
from typing import Any, Optional

from tenantdesk.features.permissions.cache import PermissionCache, PermissionLoader
from tenantdesk.features.permissions.resolver import EffectivePermissionSet
from tenantdesk.features.sessions.switching import (
    ActiveOrganizationSwitcher,
    AutoOrganizationSelector,
    MembershipLister,
    SessionProvider,
    SessionSnapshot,
    SwitchResult,
)
from tenantdesk.utils import get_logger


log = get_logger(__name__)


class TenantSession:
    """
    Usage:
        session = TenantSession.for_client(client)
        await session.start()
        await session.switch_organization(org_id)
        permissions = await session.permissions()

    Args:
        provider: Session provider (TenantDeskClient or a test double)
        load_permissions: Awaited with (identity id, organization id)
        list_memberships: Awaited with the identity id; feeds auto-selection
        auto_select: Switch to the first membership when none is active
        **switch_options: attempts / delay / deadline / sleep / clock for the switcher
    """

    def __init__(
        self,
        provider: SessionProvider,
        load_permissions: PermissionLoader,
        list_memberships: MembershipLister,
        *,
        auto_select: bool = True,
        **switch_options: Any,
    ):
        self.provider = provider
        self.cache = PermissionCache(load_permissions)
        self.switcher = ActiveOrganizationSwitcher(provider, on_session=self._apply_session, **switch_options)
        self.selector = AutoOrganizationSelector(self.switcher, list_memberships) if auto_select else None

    @classmethod
    def for_client(cls, client, **kwargs: Any) -> "TenantSession":
        return cls(client, client.fetch_permissions, client.list_memberships, **kwargs)

    @property
    def identity_id(self) -> Optional[str]:
        session = self.switcher.session
        return session.user_id if session else None

    @property
    def active_organization_id(self) -> Optional[str]:
        return self.switcher.active_organization_id

    async def start(self) -> Optional[SessionSnapshot]:
        """Load the session, auto-select an organization if none is active and warm the permission cache."""
        snapshot = await self.refresh_session()
        await self.cache.get()
        return snapshot

    async def refresh_session(self) -> Optional[SessionSnapshot]:
        snapshot = await self.provider.get_session()
        self.switcher.observe(snapshot)
        await self._apply_session(snapshot)
        if self.selector is not None and not self.switcher.in_flight:
            await self.selector.maybe_select(snapshot)
        return self.switcher.session

    async def switch_organization(self, organization_id: Optional[str]) -> SwitchResult:
        return await self.switcher.switch(organization_id)

    async def permissions(self) -> EffectivePermissionSet:
        return await self.cache.get()

    async def refresh_permissions(self) -> EffectivePermissionSet:
        return await self.cache.refresh()

    def can(self, subject: str, action: str) -> bool:
        return self.cache.has_permission(subject, action)

    async def logout(self) -> None:
        self.switcher.observe(None)
        await self._apply_session(None)
        if self.selector is not None:
            await self.selector.maybe_select(None)

    async def _apply_session(self, snapshot: Optional[SessionSnapshot]) -> None:
        if snapshot is None:
            self.cache.set_identity(None)
            return
        self.cache.set_identity(snapshot.user_id)
        self.cache.set_active_organization(snapshot.active_organization_id)
        log.debug("Session %s now on organization %s", snapshot.user_id, snapshot.active_organization_id)
