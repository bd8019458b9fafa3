"""Tests for the HTTP client and the per-session client context, run against the app in-process."""
import httpx
import pytest
import pytest_asyncio

from tenantdesk.client import (
    ConflictError,
    PermissionDeniedError,
    ResourceNotFoundError,
    TenantDeskClient,
    TenantDeskError,
    TenantSession,
)
from tenantdesk.features.permissions.cache import PermissionCache
from tenantdesk.features.query.schemas import QueryInput
from tenantdesk.features.sessions.switching import (
    OrganizationSwitchRejected,
    SessionMutationError,
    SessionSnapshot,
    SwitchOutcome,
)


@pytest_asyncio.fixture
async def client(api):
    from tenantdesk.main import app

    async with TenantDeskClient(
        base_url="http://test",
        token="test-token",
        transport=httpx.ASGITransport(app=app),
    ) as client:
        yield client


@pytest_asyncio.fixture
async def team(factory):
    member = await factory.user("member@acme.io")
    outsider = await factory.user("outsider@initech.io")
    acme = await factory.organization("acme")
    labs = await factory.organization("acme-labs")
    initech = await factory.organization("initech")
    await factory.member(acme, member, "member")
    await factory.member(labs, member, "owner")
    await factory.member(initech, outsider, "owner")
    await factory.request(acme, member, "Badge reader offline", status="OPEN")
    await factory.request(acme, member, "Projector bulb", status="CLOSED")
    return {"member": member, "outsider": outsider, "acme": acme, "labs": labs, "initech": initech}


@pytest.mark.asyncio
async def test_get_session(api, client, team):
    await api.login(team["member"], team["acme"].id)

    snapshot = await client.get_session()

    assert snapshot == SessionSnapshot(team["member"].id, team["acme"].id)


@pytest.mark.asyncio
async def test_get_session_without_login_is_none(api, client):
    api.logout()

    assert await client.get_session() is None


@pytest.mark.asyncio
async def test_rejected_mutation_raises_session_mutation_error(api, client, team):
    await api.login(team["member"])

    with pytest.raises(SessionMutationError):
        await client.set_active_organization(team["initech"].id)


@pytest.mark.asyncio
async def test_fetch_permissions_checks_identity_and_organization(api, client, team):
    member, acme = team["member"], team["acme"]
    await api.login(member, acme.id)

    permissions = await client.fetch_permissions(member.id, acme.id)
    assert permissions.organization_id == acme.id
    assert permissions.can("service-request", "create")
    assert not permissions.can("service-request", "delete")

    with pytest.raises(TenantDeskError):
        await client.fetch_permissions(team["outsider"].id, acme.id)


@pytest.mark.asyncio
async def test_cache_falls_back_to_empty_on_mismatched_response(api, client, team):
    await api.login(team["member"], team["acme"].id)
    cache = PermissionCache(client.fetch_permissions)
    cache.set_identity("someone-else")
    cache.set_active_organization(team["acme"].id)

    permissions = await cache.get()

    assert not permissions.granted()
    assert not cache.fetched


@pytest.mark.asyncio
async def test_error_responses_map_to_exceptions(api, client, team):
    await api.login(team["member"], team["acme"].id)

    with pytest.raises(PermissionDeniedError):
        await client.get_organization(team["initech"].id)
    with pytest.raises(ResourceNotFoundError):
        await client.get_organization("missing")
    with pytest.raises(ConflictError) as exc_info:
        await client.create_organization("Acme", "acme")
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_list_memberships_oldest_first(api, client, team):
    member = team["member"]
    await api.login(member)

    memberships = await client.list_memberships(member.id)

    assert [(m.organization_id, m.role) for m in memberships] == [
        (team["acme"].id, "member"),
        (team["labs"].id, "owner"),
    ]


@pytest.mark.asyncio
async def test_service_request_round_trip(api, client, team):
    await api.login(team["member"], team["acme"].id)

    created = await client.create_service_request("Wifi down", "Third floor wifi is down", priority="URGENT")
    page = await client.list_service_requests(QueryInput(
        filters=[{"field": "status", "operator": "eq", "value": "OPEN"}],
        sortField="title",
        sortDirection="asc",
    ))

    assert [item["title"] for item in page["items"]] == ["Badge reader offline", "Wifi down"]
    updated = await client.update_service_request(created["id"], status="IN_PROGRESS")
    assert updated["status"] == "IN_PROGRESS"

    with pytest.raises(PermissionDeniedError):
        await client.delete_service_request(created["id"])


# ============================================================================
# TenantSession
# ============================================================================

@pytest.mark.asyncio
async def test_start_auto_selects_first_membership(api, client, team):
    member = team["member"]
    identity = await api.login(member)
    session = TenantSession.for_client(client, delay=0)

    snapshot = await session.start()

    assert snapshot == SessionSnapshot(member.id, team["acme"].id)
    assert identity.session.active_organization_id == team["acme"].id
    assert session.identity_id == member.id
    assert session.active_organization_id == team["acme"].id
    assert session.can("service-request", "create")
    assert not session.can("organization", "delete")


@pytest.mark.asyncio
async def test_start_keeps_existing_active_organization(api, client, team):
    await api.login(team["member"], team["labs"].id)
    session = TenantSession.for_client(client, delay=0)

    await session.start()

    assert session.active_organization_id == team["labs"].id
    assert session.can("organization", "delete")


@pytest.mark.asyncio
async def test_switch_reloads_permissions(api, client, team):
    await api.login(team["member"], team["acme"].id)
    session = TenantSession.for_client(client, delay=0)
    await session.start()

    result = await session.switch_organization(team["labs"].id)

    assert result.outcome is SwitchOutcome.CONFIRMED
    assert not session.cache.fetched
    permissions = await session.permissions()
    assert permissions.organization_id == team["labs"].id
    assert session.can("organization", "delete")


@pytest.mark.asyncio
async def test_rejected_switch_keeps_previous_organization(api, client, team):
    await api.login(team["member"], team["acme"].id)
    session = TenantSession.for_client(client, delay=0)
    await session.start()

    with pytest.raises(OrganizationSwitchRejected):
        await session.switch_organization(team["initech"].id)

    assert session.active_organization_id == team["acme"].id
    assert session.cache.fetched
    assert session.can("service-request", "create")


@pytest.mark.asyncio
async def test_user_without_memberships_stays_unscoped(api, client, factory):
    loner = await factory.user("loner@nowhere.io")
    await api.login(loner)
    session = TenantSession.for_client(client, delay=0)

    await session.start()

    assert session.active_organization_id is None
    assert session.selector.attempted
    assert not session.can("organization", "read")


@pytest.mark.asyncio
async def test_logout_clears_permissions(api, client, team):
    await api.login(team["member"], team["acme"].id)
    session = TenantSession.for_client(client, delay=0)
    await session.start()

    await session.logout()

    assert session.identity_id is None
    assert session.cache.key is None
    assert not session.can("service-request", "read")


# ============================================================================
# Transport retries
# ============================================================================

@pytest.mark.asyncio
async def test_transient_transport_errors_are_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if len(calls) < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"user_id": "u1", "active_organization_id": "o1"})

    async with TenantDeskClient(base_url="http://test", token="t", transport=httpx.MockTransport(handler)) as client:
        snapshot = await client.get_session()

    assert snapshot == SessionSnapshot("u1", "o1")
    assert calls == ["/sessions/current"] * 3


@pytest.mark.asyncio
async def test_persistent_transport_error_raises_client_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with TenantDeskClient(base_url="http://test", token="t", transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(TenantDeskError):
            await client.get_session()
