"""
Client-side mirror of the effective permission set.

Owned by one session context (see tenantdesk.client.session.TenantSession);
never shared between identities.
"""
import asyncio
from typing import Awaitable, Callable, Optional

from tenantdesk.features.permissions.resolver import EffectivePermissionSet
from tenantdesk.utils import get_logger


log = get_logger(__name__)


PermissionLoader = Callable[[str, Optional[str]], Awaitable[EffectivePermissionSet]]


class PermissionCache:
    """
    Lazy, memoized permission snapshot keyed by (identity id, organization id).

    Usage:
        cache = PermissionCache(client.fetch_permissions)
        cache.set_identity(user_id)
        cache.set_active_organization(org_id)
        permissions = await cache.get()
        if cache.has_permission("service-request", "delete"):
            ...

    The loader is awaited with (identity id, organization id). Concurrent get()
    calls for the same key share one load. A failing load clears everything
    and yields the empty (no-access) set.
    """

    def __init__(self, loader: PermissionLoader):
        self.loader = loader
        self._identity_id: Optional[str] = None
        self._organization_id: Optional[str] = None
        self._snapshot: Optional[EffectivePermissionSet] = None
        self._fetched = False
        self._pending: Optional[asyncio.Task] = None
        self._pending_key: Optional[tuple] = None

    @property
    def key(self) -> Optional[tuple]:
        if self._identity_id is None:
            return None
        return (self._identity_id, self._organization_id)

    @property
    def fetched(self) -> bool:
        return self._fetched

    @property
    def snapshot(self) -> Optional[EffectivePermissionSet]:
        return self._snapshot

    def set_identity(self, identity_id: Optional[str]) -> None:
        if identity_id == self._identity_id:
            return
        self._identity_id = identity_id
        # a new identity never inherits the previous identity's organization
        self._organization_id = None
        self.invalidate()
        if identity_id is None:
            self._snapshot = EffectivePermissionSet.empty()

    def set_active_organization(self, organization_id: Optional[str]) -> None:
        if organization_id == self._organization_id:
            return
        self._organization_id = organization_id
        self.invalidate()

    def invalidate(self) -> None:
        self._snapshot = None
        self._fetched = False
        self._pending = None
        self._pending_key = None

    async def refresh(self) -> EffectivePermissionSet:
        self.invalidate()
        return await self.get()

    async def get(self) -> EffectivePermissionSet:
        key = self.key
        if key is None:
            return EffectivePermissionSet.empty()
        if self._fetched and self._snapshot is not None:
            return self._snapshot

        if self._pending is None or self._pending_key != key:
            self._pending_key = key
            self._pending = asyncio.ensure_future(self.loader(*key))
        task = self._pending

        try:
            permissions = await asyncio.shield(task)
        except Exception:
            log.warning("Permission load failed for %s; clearing cached permissions", key, exc_info=True)
            if self.key == key:
                self.invalidate()
            return EffectivePermissionSet.empty()

        if self.key != key:
            # identity or organization changed while loading
            log.debug("Discarding permissions loaded for stale key %s", key)
            return await self.get()

        if self._pending is task:
            self._snapshot = permissions
            self._fetched = True
            self._pending = None
            self._pending_key = None
        return self._snapshot if self._snapshot is not None else permissions

    def has_permission(self, subject: str, action: str) -> bool:
        """Synchronous read of the last loaded snapshot; False when nothing is loaded."""
        if self._snapshot is None:
            return False
        return self._snapshot.can(subject, action)
