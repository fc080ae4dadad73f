"""Query definition Pydantic v2 schemas.

A ``QueryDefinition`` is pure data: it describes what to select from the
warehouse and is turned into SQL by ``analytics_engine.lib.query_compiler``.
Operator, aggregation, join and sort vocabularies are kept as strings on the
model so that stored definitions always load; ``validate_vocabulary`` enforces
the closed sets when a definition is saved.
"""

import enum
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class QueryType(enum.StrEnum):
    """Closed set of query categories."""

    EFFICIENCY = "EFFICIENCY"
    DRIVER = "DRIVER"
    FINANCIAL = "FINANCIAL"
    OPERATIONAL = "OPERATIONAL"
    CUSTOM = "CUSTOM"


class FilterOperator(enum.StrEnum):
    """Closed set of filter operators."""

    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    GREATER_THAN_EQUALS = "GREATER_THAN_EQUALS"
    LESS_THAN_EQUALS = "LESS_THAN_EQUALS"
    CONTAINS = "CONTAINS"
    NOT_CONTAINS = "NOT_CONTAINS"
    IN = "IN"
    NOT_IN = "NOT_IN"
    BETWEEN = "BETWEEN"
    NULL = "NULL"
    NOT_NULL = "NOT_NULL"


# Accepted shorthands for comparison operators
OPERATOR_ALIASES: dict[str, FilterOperator] = {
    "GT": FilterOperator.GREATER_THAN,
    "LT": FilterOperator.LESS_THAN,
    "GTE": FilterOperator.GREATER_THAN_EQUALS,
    "LTE": FilterOperator.LESS_THAN_EQUALS,
}


class AggregationType(enum.StrEnum):
    """Closed set of aggregation functions."""

    SUM = "SUM"
    AVG = "AVG"
    MIN = "MIN"
    MAX = "MAX"
    COUNT = "COUNT"


class JoinType(enum.StrEnum):
    """Closed set of join kinds."""

    LEFT = "left"
    RIGHT = "right"
    INNER = "inner"
    OUTER = "outer"


class SortDirection(enum.StrEnum):
    """Sort directions."""

    ASC = "ASC"
    DESC = "DESC"


class FieldDataType(enum.StrEnum):
    """Optional result coercions applied to a selected field."""

    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "boolean"
    DATE = "date"


def resolve_operator(operator: str) -> FilterOperator | None:
    """Map an operator string (or shorthand) onto the closed set, or None."""
    key = operator.strip().upper()
    if key in OPERATOR_ALIASES:
        return OPERATOR_ALIASES[key]
    try:
        return FilterOperator(key)
    except ValueError:
        return None


def resolve_join_type(join_type: str) -> JoinType | None:
    """Map ``left``/``leftJoin``/``LEFT`` style join names onto the closed set."""
    key = join_type.strip().lower()
    key = key.removesuffix("join").strip("_ ")
    if key == "full":
        key = "outer"
    try:
        return JoinType(key)
    except ValueError:
        return None


class QueryField(BaseModel):
    """A selected column expression."""

    field: str = Field(min_length=1, description="Source column or SQL expression")
    alias: str | None = Field(default=None, description="Output column name")
    data_type: FieldDataType | None = Field(default=None, description="Optional result coercion")

    @field_validator("field")
    @classmethod
    def field_not_blank(cls, v: str) -> str:
        if not v.strip():
            msg = "field expression must not be blank"
            raise ValueError(msg)
        return v

    @property
    def output_name(self) -> str:
        return self.alias or self.field


class QueryFilter(BaseModel):
    """A single predicate on a field."""

    field: str = Field(min_length=1)
    operator: str = Field(min_length=1)
    value: Any = None


class QueryJoin(BaseModel):
    """A join onto another warehouse table."""

    table: str = Field(min_length=1)
    alias: str | None = None
    type: str = "inner"
    condition: list[str] = Field(description="Two column expressions: [left, right]")


class QueryAggregation(BaseModel):
    """An aggregate column."""

    type: str = Field(min_length=1)
    field: str = Field(min_length=1)
    alias: str | None = None

    @property
    def output_name(self) -> str:
        if self.alias:
            return self.alias
        column = "all" if self.field.strip() == "*" else self.field
        return f"{self.type.lower()}_{column}"


class QuerySort(BaseModel):
    """A sort key."""

    field: str = Field(min_length=1)
    direction: str = SortDirection.ASC.value


class QueryDefinition(BaseModel):
    """Declarative description of a tabular warehouse query."""

    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    type: QueryType = QueryType.CUSTOM
    collection: str = Field(min_length=1, description="Source table, optionally schema-qualified")
    fields: list[QueryField] = Field(default_factory=list)
    filters: list[QueryFilter] = Field(default_factory=list)
    joins: list[QueryJoin] = Field(default_factory=list)
    aggregations: list[QueryAggregation] = Field(default_factory=list)
    group_by: list[str] = Field(default_factory=list)
    sort: list[QuerySort] = Field(default_factory=list)
    limit: int | None = Field(default=None, ge=0)
    offset: int | None = Field(default=None, ge=0)
    parameters: dict[str, Any] = Field(default_factory=dict, description="Placeholder defaults")

    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

    def cache_payload(self) -> dict[str, Any]:
        """Return the serialization used for cache keys (provenance excluded)."""
        return self.model_dump(
            mode="json",
            exclude={"created_by", "created_at", "updated_at", "description"},
        )


def validate_vocabulary(definition: QueryDefinition) -> list[str]:
    """Check the closed operator/aggregation/join/sort vocabularies.

    Returns:
        Human-readable problems; empty when the definition is acceptable.
    """
    problems: list[str] = []
    if not definition.fields:
        problems.append("fields must not be empty")
    for i, flt in enumerate(definition.filters):
        if resolve_operator(flt.operator) is None:
            problems.append(f"filters[{i}]: unknown operator {flt.operator!r}")
    for i, agg in enumerate(definition.aggregations):
        if agg.type.strip().upper() not in AggregationType.__members__:
            problems.append(f"aggregations[{i}]: unknown aggregation {agg.type!r}")
    for i, join in enumerate(definition.joins):
        if resolve_join_type(join.type) is None:
            problems.append(f"joins[{i}]: unsupported join type {join.type!r}")
        if len(join.condition) != 2:
            problems.append(f"joins[{i}]: condition must have exactly two expressions")
    for i, srt in enumerate(definition.sort):
        if srt.direction.strip().upper() not in SortDirection.__members__:
            problems.append(f"sort[{i}]: unknown direction {srt.direction!r}")
    return problems


class QueryCreateRequest(QueryDefinition):
    """Payload for saving a new query definition."""


class QueryUpdateRequest(BaseModel):
    """Partial update of a saved query; omitted fields are left unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    type: QueryType | None = None
    collection: str | None = Field(default=None, min_length=1)
    fields: list[QueryField] | None = None
    filters: list[QueryFilter] | None = None
    joins: list[QueryJoin] | None = None
    aggregations: list[QueryAggregation] | None = None
    group_by: list[str] | None = None
    sort: list[QuerySort] | None = None
    limit: int | None = Field(default=None, ge=0)
    offset: int | None = Field(default=None, ge=0)
    parameters: dict[str, Any] | None = None


class ExecutionOptions(BaseModel):
    """How a saved query should be executed."""

    page: int | None = Field(default=None, description="1-based page number; enables paginated mode")
    page_size: int | None = Field(default=None, description="Rows per page; enables paginated mode")
    timeout: float | None = Field(default=None, gt=0, description="Warehouse timeout override in seconds")

    @property
    def paginated(self) -> bool:
        return self.page is not None or self.page_size is not None


class SavedQueryResponse(QueryDefinition):
    """A saved query definition with its identifier."""

    id: UUID
