"""
Query compiler: QueryInput -> SQLAlchemy condition / order / limit / offset.

The compiler never hardcodes table shape. Callers inject a field resolver
mapping public field names (optionally dotted relationship paths) to columns.
Anything it cannot compile safely is dropped and logged; the tenant scope is
always the first conjunct, so a dropped predicate can only narrow less, never
cross the tenant boundary.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Union

from sqlalchemy import Select, and_, func, select
from sqlalchemy.orm import ColumnProperty, RelationshipProperty
from sqlalchemy.sql.elements import ColumnElement

from tenantdesk.core import config
from tenantdesk.features.query.schemas import Filter, FilterOperator, QueryInput, SortDirection
from tenantdesk.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class FieldPath:
    """
    A resolved field: the target column plus the relationship attributes
    walked to reach it (empty for a column on the queried model).
    """
    column: Any
    relationships: tuple = ()


FieldRef = Union[FieldPath, ColumnElement, Any]
FieldResolver = Callable[[str], Optional[FieldRef]]


# ============================================================================
# Field resolvers
# ============================================================================

def mapping_resolver(fields: Mapping[str, FieldRef]) -> FieldResolver:
    """
    Resolve public field names through an explicit mapping.

    Usage:
        resolver = mapping_resolver({"email": User.email, "createdAt": User.created_at})
    """
    table = dict(fields)
    return table.get


def resolve_path(model: type, path: str) -> Optional[FieldPath]:
    """Walk a dotted path ("assigned_to.email") across mapped relationships."""
    parts = path.split(".")
    current = model
    relationships = []
    for part in parts[:-1]:
        attr = getattr(current, part, None)
        prop = getattr(attr, "property", None)
        if not isinstance(prop, RelationshipProperty):
            return None
        relationships.append(attr)
        current = prop.mapper.class_
    attr = getattr(current, parts[-1], None)
    if not isinstance(getattr(attr, "property", None), ColumnProperty):
        return None
    return FieldPath(column=attr, relationships=tuple(relationships))


def model_resolver(
    model: type,
    fields: Iterable[str],
    aliases: Optional[Mapping[str, str]] = None,
) -> FieldResolver:
    """
    Resolve an allow-list of attribute paths on a mapped model.

    Usage:
        resolver = model_resolver(
            ServiceRequest,
            ["title", "status", "created_at", "assigned_to.email"],
            aliases={"createdAt": "created_at"},
        )
    """
    allowed = frozenset(fields)
    aliases = dict(aliases or {})

    def resolve(name: str) -> Optional[FieldPath]:
        path = aliases.get(name, name)
        if path not in allowed:
            return None
        return resolve_path(model, path)

    return resolve


def _as_field_path(ref: FieldRef) -> FieldPath:
    if isinstance(ref, FieldPath):
        return ref
    return FieldPath(column=ref)


# ============================================================================
# Predicates
# ============================================================================

def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_predicate(column: Any, operator: FilterOperator, value: Any) -> Optional[ColumnElement]:
    """
    Compile one operator/value pair against a column.

    Returns None for combinations that have no safe meaning (the caller drops
    them): non-array values for in/notIn, arrays for scalar operators, and
    null for anything but eq/neq.
    """
    if value is None:
        if operator is FilterOperator.EQ:
            return column.is_(None)
        if operator is FilterOperator.NEQ:
            return column.is_not(None)
        return None

    if operator in (FilterOperator.IN, FilterOperator.NOT_IN):
        if not isinstance(value, (list, tuple)):
            return None
        values = list(value)
        return column.in_(values) if operator is FilterOperator.IN else column.not_in(values)

    if isinstance(value, (list, tuple, dict)):
        return None

    if operator is FilterOperator.EQ:
        return column == value
    if operator is FilterOperator.NEQ:
        return column != value
    if operator is FilterOperator.GT:
        return column > value
    if operator is FilterOperator.LT:
        return column < value
    if operator is FilterOperator.GTE:
        return column >= value
    if operator is FilterOperator.LTE:
        return column <= value

    text = _escape_like(str(value))
    if operator is FilterOperator.CONTAINS:
        return column.ilike(f"%{text}%", escape="\\")
    if operator is FilterOperator.STARTS_WITH:
        return column.ilike(f"{text}%", escape="\\")
    if operator is FilterOperator.ENDS_WITH:
        return column.ilike(f"%{text}", escape="\\")
    return None


def _wrap_relationships(predicate: ColumnElement, relationships: Sequence[Any]) -> ColumnElement:
    # innermost relationship first: a.b.c -> a.any(b.any(c == x))
    for rel in reversed(relationships):
        predicate = rel.any(predicate) if rel.property.uselist else rel.has(predicate)
    return predicate


def compile_filter(item: Filter, field_resolver: FieldResolver) -> Optional[ColumnElement]:
    ref = field_resolver(item.field)
    if ref is None:
        log.warning("Dropping filter on unresolvable field %r", item.field)
        return None
    path = _as_field_path(ref)
    predicate = build_predicate(path.column, FilterOperator(item.operator), item.value)
    if predicate is None:
        log.warning(
            "Dropping filter %r: operator %s does not accept value %r",
            item.field, FilterOperator(item.operator).value, item.value,
        )
        return None
    return _wrap_relationships(predicate, path.relationships)


# ============================================================================
# Compiled query
# ============================================================================

@dataclass
class CompiledQuery:
    """
    Backend-native query parts. The same `condition` must be used for the
    list and the count query.
    """
    condition: Optional[ColumnElement]
    order_by: list = field(default_factory=list)
    limit: int = 20
    offset: int = 0

    def apply(self, statement: Select) -> Select:
        """Apply condition, ordering and pagination to a select()."""
        if self.condition is not None:
            statement = statement.where(self.condition)
        if self.order_by:
            statement = statement.order_by(*self.order_by)
        return statement.limit(self.limit).offset(self.offset)

    def count_statement(self, entity: Any) -> Select:
        statement = select(func.count()).select_from(entity)
        if self.condition is not None:
            statement = statement.where(self.condition)
        return statement


def _bounded(take: Optional[int], skip: Optional[int], default_take: int, max_take: int) -> tuple[int, int]:
    limit = default_take if take is None else take
    limit = max(1, min(limit, max_take))
    offset = max(0, skip or 0)
    return limit, offset


def compile_query(
    query_input: Union[QueryInput, Mapping[str, Any]],
    field_resolver: FieldResolver,
    tenant_scope: Optional[ColumnElement] = None,
    *,
    default_order: Optional[Sequence[Any]] = None,
    tie_breaker: Any = None,
    default_take: Optional[int] = None,
    max_take: Optional[int] = None,
) -> CompiledQuery:
    """
    Compile a QueryInput into a CompiledQuery.

    Args:
        query_input: Filters, sort and pagination (model or plain dict)
        field_resolver: Maps public field names to columns / FieldPath
        tenant_scope: Predicate restricting rows to the caller's tenant; always
            the first AND conjunct
        default_order: Order clauses used when no (resolvable) sort is given
        tie_breaker: Unique column appended to every ordering so pagination is
            stable across calls
        default_take / max_take: Pagination bounds (config defaults)

    Example:
        compiled = compile_query(
            query,
            model_resolver(ServiceRequest, ["status", "title"]),
            ServiceRequest.organization_id == org_id,
            default_order=[ServiceRequest.created_at.desc()],
            tie_breaker=ServiceRequest.id,
        )
        rows = (await db.execute(compiled.apply(select(ServiceRequest)))).scalars().all()
    """
    if not isinstance(query_input, QueryInput):
        query_input = QueryInput.model_validate(query_input)

    conditions = []
    if tenant_scope is not None:
        conditions.append(tenant_scope)
    for item in query_input.filters:
        predicate = compile_filter(item, field_resolver)
        if predicate is not None:
            conditions.append(predicate)

    if not conditions:
        condition = None
    elif len(conditions) == 1:
        condition = conditions[0]
    else:
        condition = and_(*conditions)

    order_by = []
    sort_column = None
    direction = query_input.sort_direction or SortDirection.ASC
    if query_input.sort_field:
        ref = field_resolver(query_input.sort_field)
        path = _as_field_path(ref) if ref is not None else None
        if path is None or path.relationships:
            log.warning("Ignoring sort on unresolvable field %r", query_input.sort_field)
        else:
            sort_column = path.column
            order_by.append(sort_column.desc() if direction is SortDirection.DESC else sort_column.asc())
    if not order_by and default_order:
        order_by.extend(default_order)
    if tie_breaker is not None and sort_column is not tie_breaker:
        order_by.append(
            tie_breaker.desc() if sort_column is not None and direction is SortDirection.DESC else tie_breaker.asc()
        )

    limit, offset = _bounded(
        query_input.take,
        query_input.skip,
        config.QUERY_DEFAULT_TAKE if default_take is None else default_take,
        config.QUERY_MAX_TAKE if max_take is None else max_take,
    )
    return CompiledQuery(condition=condition, order_by=order_by, limit=limit, offset=offset)
