"""
Async client for the TenantDesk API.

Example:
    async with TenantDeskClient(token=jwt) as client:
        session = TenantSession.for_client(client)
        await session.start()
        if session.can("service-request", "create"):
            ...
"""
from tenantdesk.client.api import TenantDeskClient
from tenantdesk.client.exceptions import (
    AuthenticationError,
    ConflictError,
    PermissionDeniedError,
    RateLimitError,
    ResourceNotFoundError,
    TenantDeskError,
    ValidationError,
)
from tenantdesk.client.session import TenantSession

__all__ = [
    "TenantDeskClient",
    "TenantSession",
    "TenantDeskError",
    "AuthenticationError",
    "ConflictError",
    "PermissionDeniedError",
    "RateLimitError",
    "ResourceNotFoundError",
    "ValidationError",
]
