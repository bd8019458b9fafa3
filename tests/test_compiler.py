"""Tests for the query compiler."""
import pytest
import pytest_asyncio
from pydantic import ValidationError
from sqlalchemy import select

from tenantdesk.features.query.compiler import (
    build_predicate,
    compile_query,
    mapping_resolver,
    model_resolver,
    resolve_path,
)
from tenantdesk.features.query.schemas import FilterOperator, QueryInput, SortDirection
from tenantdesk.features.service_requests.models import ServiceRequest
from tenantdesk.features.users.models import User


FIELDS = (
    "id", "title", "status", "priority", "category", "assigned_to_id",
    "created_at", "assigned_to.email", "created_by.name",
)

resolver = model_resolver(ServiceRequest, FIELDS, aliases={"createdAt": "created_at"})


def scoped(organization_id, query, field_resolver=resolver):
    return compile_query(
        query,
        field_resolver,
        ServiceRequest.organization_id == organization_id,
        default_order=[ServiceRequest.created_at.desc()],
        tie_breaker=ServiceRequest.id,
    )


async def fetch(db, compiled):
    result = await db.execute(compiled.apply(select(ServiceRequest)))
    return list(result.scalars().all())


def sql(clause):
    return str(clause.compile(compile_kwargs={"literal_binds": True}))


@pytest_asyncio.fixture
async def tenants(factory):
    alice = await factory.user("alice@acme.io")
    bob = await factory.user("bob@globex.io")
    acme = await factory.organization("acme")
    globex = await factory.organization("globex")

    await factory.request(acme, alice, "Printer 100% broken", status="OPEN", priority="HIGH", category="hardware")
    await factory.request(acme, alice, "printer_tray jammed", status="OPEN", priority="LOW", assigned_to_id=alice.id)
    await factory.request(acme, alice, "Monitor flicker", status="RESOLVED", priority="MEDIUM")
    await factory.request(acme, alice, "Keyboard sticky", status="CLOSED", priority="LOW", category="hardware")
    await factory.request(globex, bob, "Printer offline", status="OPEN", priority="HIGH", assigned_to_id=bob.id)
    await factory.request(globex, bob, "Secret globex project", status="OPEN", priority="URGENT")
    return {"alice": alice, "bob": bob, "acme": acme, "globex": globex}


@pytest.mark.asyncio
async def test_scenario_c_condition(tenants, db):
    acme = tenants["acme"]
    compiled = scoped(acme.id, {"filters": [{"field": "status", "operator": "eq", "value": "OPEN"}]})

    assert sql(compiled.condition) == (
        f"service_requests.organization_id = '{acme.id}' AND service_requests.status = 'OPEN'"
    )
    rows = await fetch(db, compiled)
    assert {row.title for row in rows} == {"Printer 100% broken", "printer_tray jammed"}


@pytest.mark.asyncio
async def test_no_filters_condition_is_tenant_scope(tenants, db):
    acme = tenants["acme"]
    compiled = scoped(acme.id, QueryInput())

    assert sql(compiled.condition) == f"service_requests.organization_id = '{acme.id}'"
    assert len(await fetch(db, compiled)) == 4


@pytest.mark.asyncio
@pytest.mark.parametrize("query", [
    {},
    {"filters": [{"field": "organization_id", "operator": "eq", "value": "anything"}]},
    {"filters": [{"field": "organizationId", "operator": "neq", "value": "x"}]},
    {"filters": [{"field": "status", "operator": "in", "value": ["OPEN", "CLOSED", "RESOLVED"]}]},
    {"filters": [{"field": "status", "operator": "in", "value": "OPEN"}]},
    {"filters": [{"field": "title", "operator": "contains", "value": "%"}]},
    {"filters": [{"field": "title", "operator": "contains", "value": "' OR 1=1 --"}]},
    {"filters": [{"field": "priority", "operator": "neq", "value": None}]},
    {"filters": [{"field": "assigned_to.email", "operator": "endsWith", "value": ".io"}]},
    {"filters": [{"field": "no_such_field", "operator": "eq", "value": 1}]},
    {"sortField": "organization_id", "sortDirection": "desc", "take": 1000},
])
async def test_results_never_leave_the_tenant(tenants, db, query):
    acme = tenants["acme"]
    rows = await fetch(db, scoped(acme.id, query))

    assert all(row.organization_id == acme.id for row in rows)


@pytest.mark.asyncio
async def test_exposed_tenant_column_cannot_widen_scope(tenants, db):
    acme, globex = tenants["acme"], tenants["globex"]
    wide = model_resolver(ServiceRequest, FIELDS + ("organization_id",))
    query = {"filters": [{"field": "organization_id", "operator": "eq", "value": globex.id}]}

    assert await fetch(db, scoped(acme.id, query, wide)) == []


@pytest.mark.asyncio
async def test_pagination_is_stable_across_ties(factory, db):
    user = await factory.user("pager@acme.io")
    org = await factory.organization("pager")
    for n in range(25):
        await factory.request(org, user, f"Request {n:02d}", same_time=True)

    full = await fetch(db, scoped(org.id, {"take": 1000}))
    first = await fetch(db, scoped(org.id, {"skip": 0, "take": 10}))
    second = await fetch(db, scoped(org.id, {"skip": 10, "take": 10}))

    first_ids = {row.id for row in first}
    second_ids = {row.id for row in second}
    assert len(first_ids) == len(second_ids) == 10
    assert not first_ids & second_ids
    assert [row.id for row in first + second] == [row.id for row in full[:20]]


@pytest.mark.asyncio
async def test_contains_is_case_insensitive_and_escapes_wildcards(tenants, db):
    acme = tenants["acme"]

    rows = await fetch(db, scoped(acme.id, {"filters": [{"field": "title", "operator": "contains", "value": "PRINTER"}]}))
    assert len(rows) == 2

    rows = await fetch(db, scoped(acme.id, {"filters": [{"field": "title", "operator": "contains", "value": "100%"}]}))
    assert [row.title for row in rows] == ["Printer 100% broken"]

    rows = await fetch(db, scoped(acme.id, {"filters": [{"field": "title", "operator": "contains", "value": "r_t"}]}))
    assert [row.title for row in rows] == ["printer_tray jammed"]


@pytest.mark.asyncio
async def test_starts_with_and_ends_with(tenants, db):
    acme = tenants["acme"]

    rows = await fetch(db, scoped(acme.id, {"filters": [{"field": "title", "operator": "startsWith", "value": "mon"}]}))
    assert [row.title for row in rows] == ["Monitor flicker"]

    rows = await fetch(db, scoped(acme.id, {"filters": [{"field": "title", "operator": "endsWith", "value": "STICKY"}]}))
    assert [row.title for row in rows] == ["Keyboard sticky"]


@pytest.mark.asyncio
async def test_in_and_not_in(tenants, db):
    acme = tenants["acme"]

    rows = await fetch(db, scoped(acme.id, {"filters": [{"field": "priority", "operator": "in", "value": ["HIGH", "MEDIUM"]}]}))
    assert {row.priority for row in rows} == {"HIGH", "MEDIUM"}

    rows = await fetch(db, scoped(acme.id, {"filters": [{"field": "status", "operator": "notIn", "value": ["OPEN"]}]}))
    assert {row.status for row in rows} == {"RESOLVED", "CLOSED"}


@pytest.mark.asyncio
async def test_null_handling(tenants, db):
    acme = tenants["acme"]

    rows = await fetch(db, scoped(acme.id, {"filters": [{"field": "assigned_to_id", "operator": "eq", "value": None}]}))
    assert len(rows) == 3

    rows = await fetch(db, scoped(acme.id, {"filters": [{"field": "category", "operator": "neq", "value": None}]}))
    assert {row.title for row in rows} == {"Printer 100% broken", "Keyboard sticky"}

    # null with an ordering operator is dropped, not "matches nothing"
    rows = await fetch(db, scoped(acme.id, {"filters": [{"field": "created_at", "operator": "gt", "value": None}]}))
    assert len(rows) == 4


@pytest.mark.asyncio
async def test_invalid_combinations_are_dropped(tenants, db):
    acme = tenants["acme"]
    query = {"filters": [
        {"field": "status", "operator": "in", "value": "OPEN"},
        {"field": "status", "operator": "eq", "value": ["OPEN"]},
        {"field": "missing", "operator": "eq", "value": "x"},
        {"field": "priority", "operator": "eq", "value": "LOW"},
    ]}
    compiled = scoped(acme.id, query)

    assert sql(compiled.condition) == (
        f"service_requests.organization_id = '{acme.id}' AND service_requests.priority = 'LOW'"
    )
    assert len(await fetch(db, compiled)) == 2


@pytest.mark.asyncio
async def test_nested_relationship_paths(tenants, db):
    acme = tenants["acme"]
    rows = await fetch(db, scoped(acme.id, {"filters": [
        {"field": "assigned_to.email", "operator": "eq", "value": "alice@acme.io"},
    ]}))
    assert [row.title for row in rows] == ["printer_tray jammed"]

    rows = await fetch(db, scoped(acme.id, {"filters": [
        {"field": "created_by.name", "operator": "startsWith", "value": "ali"},
    ]}))
    assert len(rows) == 4


@pytest.mark.asyncio
async def test_sorting(tenants, db):
    acme = tenants["acme"]

    rows = await fetch(db, scoped(acme.id, {"sortField": "title", "sortDirection": "asc"}))
    assert [row.title for row in rows] == sorted(row.title for row in rows)

    rows = await fetch(db, scoped(acme.id, {}))
    assert [row.title for row in rows][0] == "Keyboard sticky"

    rows = await fetch(db, scoped(acme.id, {"sortField": "createdAt", "sortDirection": "asc"}))
    assert [row.title for row in rows][0] == "Printer 100% broken"


def test_unresolvable_or_nested_sort_uses_default_order():
    compiled = scoped("o", {"sortField": "assigned_to.email", "sortDirection": "desc"})

    assert [sql(clause) for clause in compiled.order_by] == [
        "service_requests.created_at DESC",
        "service_requests.id ASC",
    ]


def test_tie_breaker_follows_requested_direction():
    compiled = scoped("o", {"sortField": "status", "sortDirection": "desc"})

    assert [sql(clause) for clause in compiled.order_by] == [
        "service_requests.status DESC",
        "service_requests.id DESC",
    ]


@pytest.mark.parametrize("take,skip,expected", [
    (None, None, (20, 0)),
    (1, 0, (1, 0)),
    (5000, 30, (1000, 30)),
])
def test_pagination_bounds(take, skip, expected):
    compiled = scoped("o", {"take": take, "skip": skip})

    assert (compiled.limit, compiled.offset) == expected


def test_query_input_rejects_out_of_range_pagination():
    with pytest.raises(ValidationError):
        QueryInput(take=0)
    with pytest.raises(ValidationError):
        QueryInput(skip=-1)


def test_query_input_parses_json_filters():
    query = QueryInput(filters='[{"field": "status", "operator": "eq", "value": "OPEN"}]', sortField="title")

    assert query.filters[0].operator is FilterOperator.EQ
    assert query.sort_direction is SortDirection.ASC
    assert query.sort.field == "title"


def test_query_input_rejects_malformed_filters():
    with pytest.raises(ValidationError):
        QueryInput(filters="[{not json")
    with pytest.raises(ValidationError):
        QueryInput(filters=[{"field": "status", "operator": "like", "value": "x"}])


def test_mapping_resolver_and_resolve_path():
    resolve = mapping_resolver({"email": User.email})

    assert resolve("email") is User.email
    assert resolve("name") is None
    assert resolve_path(ServiceRequest, "assigned_to.email").relationships == (ServiceRequest.assigned_to,)
    assert resolve_path(ServiceRequest, "title.length") is None
    assert resolve_path(ServiceRequest, "assigned_to") is None


def test_build_predicate_rejects_unsafe_values():
    assert build_predicate(User.email, FilterOperator.IN, "a@b.c") is None
    assert build_predicate(User.email, FilterOperator.CONTAINS, ["a"]) is None
    assert build_predicate(User.email, FilterOperator.LT, None) is None
    assert sql(build_predicate(User.email, FilterOperator.EQ, None)) == "users.email IS NULL"
