"""
HTTP client for the TenantDesk API.

Implements the session provider used by the active organization switch
protocol, and the permission/membership loaders used by TenantSession.
"""
import json
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from tenantdesk.client.exceptions import (
    AuthenticationError,
    ConflictError,
    PermissionDeniedError,
    RateLimitError,
    ResourceNotFoundError,
    TenantDeskError,
    ValidationError,
)
from tenantdesk.core import config
from tenantdesk.features.permissions.resolver import EffectivePermissionSet, MembershipRecord
from tenantdesk.features.permissions.schemas import EffectivePermissionsResponse
from tenantdesk.features.query.schemas import QueryInput
from tenantdesk.features.sessions.switching import SessionMutationError, SessionSnapshot
from tenantdesk.utils import get_logger


log = get_logger(__name__)

_ERRORS = {
    400: ValidationError,
    401: AuthenticationError,
    403: PermissionDeniedError,
    404: ResourceNotFoundError,
    409: ConflictError,
    422: ValidationError,
    429: RateLimitError,
}


class TenantDeskClient:
    """
    Async client bound to one bearer token (one login session).

    Example:
        async with TenantDeskClient(token=jwt) as client:
            snapshot = await client.get_session()
            await client.set_active_organization(org_id)

    Args:
        base_url: API root; defaults to TENANTDESK_API_URL
        token: Appwrite JWT sent as a bearer token
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (e.g. httpx.ASGITransport in tests)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url or config.TENANTDESK_API_URL
        self.token = token
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "TenantDeskClient":
        self._get_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers=self._get_headers(),
            )
        return self._client

    def _get_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _handle_error(self, response: httpx.Response) -> None:
        """
        Raise the client exception matching an error response.

        Raises:
            TenantDeskError: or the subclass mapped from the status code
        """
        try:
            data = response.json()
        except ValueError:
            data = None

        if isinstance(data, dict):
            message = data.get("detail") or data.get("error") or str(data)
        else:
            message = response.text

        log.debug("%s -> %d: %s", response.request.url.path, response.status_code, message)
        error_class = _ERRORS.get(response.status_code)
        if error_class is None:
            raise TenantDeskError(str(message), status_code=response.status_code)
        raise error_class(str(message))

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return await self._get_client().request(method, path, **kwargs)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._send(method, path, **kwargs)
        except httpx.RequestError as exc:
            log.warning("%s %s failed: %s", method, path, exc)
            raise TenantDeskError(f"Request to {path} failed: {exc}") from exc

        if response.status_code >= 400:
            self._handle_error(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # ------------------------------------------------------------------
    # Session provider
    # ------------------------------------------------------------------

    async def get_session(self) -> Optional[SessionSnapshot]:
        """Current session, or None when the token is no longer accepted."""
        try:
            data = await self._request("GET", "/sessions/current")
        except AuthenticationError:
            return None
        return SessionSnapshot(
            user_id=data["user_id"],
            active_organization_id=data.get("active_organization_id"),
        )

    async def set_active_organization(self, organization_id: Optional[str]) -> None:
        try:
            await self._request(
                "POST",
                "/sessions/active-organization",
                json={"organization_id": organization_id},
            )
        except TenantDeskError as exc:
            raise SessionMutationError(exc.message) from exc

    # ------------------------------------------------------------------
    # Permission / membership loaders
    # ------------------------------------------------------------------

    async def fetch_permissions(self, user_id: str, organization_id: Optional[str]) -> EffectivePermissionSet:
        """
        Effective permissions of this session's identity in an organization.

        Raises:
            TenantDeskError: if the server answers for a different identity or
                organization than requested
        """
        params = {"organization_id": organization_id} if organization_id else None
        data = await self._request("GET", "/permissions/me", params=params)
        response = EffectivePermissionsResponse.model_validate(data)
        if response.user_id != user_id or response.organization_id != organization_id:
            raise TenantDeskError(
                f"Permissions resolved for {response.user_id}/{response.organization_id}, "
                f"expected {user_id}/{organization_id}"
            )
        return response.to_permissions()

    async def list_memberships(self, user_id: str) -> list[MembershipRecord]:
        """Memberships of this session's identity, oldest first."""
        data = await self._request("GET", "/organizations/my")
        return [
            MembershipRecord(organization_id=item["id"], user_id=user_id, role=item["role"])
            for item in data
        ]

    # ------------------------------------------------------------------
    # Organizations
    # ------------------------------------------------------------------

    async def create_organization(self, name: str, slug: str) -> dict[str, Any]:
        return await self._request("POST", "/organizations", json={"name": name, "slug": slug})

    async def get_organization(self, organization_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/organizations/{organization_id}")

    async def list_members(self, organization_id: str) -> list[dict[str, Any]]:
        return await self._request("GET", f"/organizations/{organization_id}/members")

    async def invite_member(self, organization_id: str, email: str, role: str = "member") -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/organizations/{organization_id}/invitations",
            json={"email": email, "role": role},
        )

    async def accept_invitation(self, invitation_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/organizations/invitations/{invitation_id}/accept")

    # ------------------------------------------------------------------
    # Service requests
    # ------------------------------------------------------------------

    async def list_service_requests(self, query: Optional[QueryInput] = None) -> dict[str, Any]:
        """
        List service requests of the active organization.

        Example:
            page = await client.list_service_requests(QueryInput(
                filters=[{"field": "status", "operator": "eq", "value": "OPEN"}],
                sortField="created_at", sortDirection="desc", take=10,
            ))
        """
        params: dict[str, Any] = {}
        if query is not None:
            if query.filters:
                params["filters"] = json.dumps([f.model_dump(mode="json") for f in query.filters])
            if query.sort_field:
                params["sortField"] = query.sort_field
            if query.sort_direction:
                params["sortDirection"] = query.sort_direction.value
            if query.take is not None:
                params["take"] = query.take
            if query.skip is not None:
                params["skip"] = query.skip
        return await self._request("GET", "/service-requests", params=params)

    async def create_service_request(self, title: str, description: str, **fields: Any) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/service-requests",
            json={"title": title, "description": description, **fields},
        )

    async def update_service_request(self, request_id: str, **fields: Any) -> dict[str, Any]:
        return await self._request("PATCH", f"/service-requests/{request_id}", json=fields)

    async def delete_service_request(self, request_id: str) -> None:
        await self._request("DELETE", f"/service-requests/{request_id}")
