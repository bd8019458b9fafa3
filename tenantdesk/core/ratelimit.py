"""
Shared slowapi limiter, keyed by the caller's bearer token.

Usage:
    @router.post("/active-organization")
    @limiter.limit(config.SWITCH_RATE_LIMIT)
    async def set_active_organization(request: Request, ...):
        ...
"""
from slowapi import Limiter

from tenantdesk.core import config
from tenantdesk.features.users.dependencies import get_authorization_header


limiter = Limiter(key_func=get_authorization_header, enabled=config.RATE_LIMIT_ENABLED)
