"""
Pydantic schemas for declarative list queries.

Wire shape (query string or JSON body):
    filters=[{"field":"status","operator":"eq","value":"OPEN"}]
    sortField=created_at&sortDirection=desc&take=20&skip=0
"""
import enum
import json
from typing import Annotated, List, Optional, Union
from fastapi import Query
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator


class FilterOperator(str, enum.Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    IN = "in"
    NOT_IN = "notIn"


class SortDirection(str, enum.Enum):
    ASC = "asc"
    DESC = "desc"


ScalarValue = Union[bool, int, float, str]


class Filter(BaseModel):
    """A single `{field, operator, value}` predicate."""
    field: str = Field(..., min_length=1, max_length=200)
    operator: FilterOperator
    value: Union[ScalarValue, List[ScalarValue], None] = None


class SortSpec(BaseModel):
    field: str
    direction: SortDirection = SortDirection.ASC


class QueryInput(BaseModel):
    """
    Caller-supplied list query. Untrusted: only the query compiler turns it
    into a storage condition.
    """
    filters: List[Filter] = Field(default_factory=list)
    sort_field: Optional[str] = Field(None, alias="sortField", max_length=200)
    sort_direction: Optional[SortDirection] = Field(None, alias="sortDirection")
    take: Optional[int] = Field(None, ge=1)
    skip: Optional[int] = Field(None, ge=0)

    model_config = {"populate_by_name": True}

    @field_validator("filters", mode="before")
    @classmethod
    def parse_filters(cls, v):
        """Accept a JSON encoded array (query string transport)."""
        if v is None or v == "":
            return []
        if isinstance(v, str):
            try:
                return json.loads(v)
            except ValueError:
                raise ValueError("filters must be a JSON encoded array")
        return v

    @model_validator(mode="after")
    def default_sort_direction(self) -> "QueryInput":
        if self.sort_field and self.sort_direction is None:
            self.sort_direction = SortDirection.ASC
        return self

    @property
    def sort(self) -> Optional[SortSpec]:
        if not self.sort_field:
            return None
        return SortSpec(field=self.sort_field, direction=self.sort_direction or SortDirection.ASC)


async def query_input_params(
    filters: Annotated[Optional[str], Query(description="JSON array of {field, operator, value}")] = None,
    sortField: Annotated[Optional[str], Query()] = None,
    sortDirection: Annotated[Optional[str], Query(pattern="^(asc|desc)$")] = None,
    take: Annotated[Optional[int], Query(ge=1)] = None,
    skip: Annotated[Optional[int], Query(ge=0)] = None,
) -> QueryInput:
    """
    FastAPI dependency building a QueryInput from query string parameters.

    Usage:
        @router.get("")
        async def list_items(query: QueryInput = Depends(query_input_params)):
            ...
    """
    try:
        return QueryInput(
            filters=filters,
            sortField=sortField,
            sortDirection=sortDirection,
            take=take,
            skip=skip,
        )
    except ValidationError as exc:
        raise RequestValidationError(exc.errors())


class PageResponse(BaseModel):
    """Pagination envelope shared by list endpoints."""
    total: int
    take: int
    skip: int
