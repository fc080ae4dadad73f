"""Compile a ``QueryDefinition`` into a SQLAlchemy Core statement.

The compiled form is dialect-neutral: field and join expressions are carried
as literal column text, and every filter value is a bound parameter.
Unknown operators, aggregations and join kinds are skipped with a warning so
that stored definitions with a typo still produce a query; the closed
vocabularies are enforced when a definition is saved.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from sqlalchemy import Select, func, literal_column, select, table
from sqlalchemy.engine import Dialect
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.sql.selectable import FromClause

from analytics_engine.core.errors import InvalidArgumentError, ValidationError
from analytics_engine.lib.query_compiler.placeholders import (
    IDENTIFIER_RE,
    check_required,
    resolve_parameters,
    substitute_identifier,
    substitute_value,
)
from analytics_engine.schemas.query import (
    AggregationType,
    FilterOperator,
    JoinType,
    QueryDefinition,
    QueryFilter,
    QueryJoin,
    SortDirection,
    resolve_join_type,
    resolve_operator,
)

LIKE_ESCAPE = "/"


@dataclass(frozen=True)
class CompiledJoin:
    """A resolved join target and its ON clause."""

    kind: JoinType
    target: FromClause
    onclause: ColumnElement[bool]


@dataclass
class CompiledQuery:
    """Executable form of a query definition.

    Attributes:
        name: Name of the originating definition.
        columns: Labeled output columns in output order.
        source: Primary FROM clause.
        joins: Joins applied to ``source`` in definition order.
        where: Conjunctive predicates.
        group_by: GROUP BY expressions.
        order_by: ORDER BY expressions.
        limit: Row limit from the definition.
        offset: Row offset from the definition.
        parameters: Resolved runtime parameters (defaults merged).
    """

    name: str
    columns: list[ColumnElement[Any]]
    source: FromClause
    joins: list[CompiledJoin] = field(default_factory=list)
    where: list[ColumnElement[bool]] = field(default_factory=list)
    group_by: list[ColumnElement[Any]] = field(default_factory=list)
    order_by: list[ColumnElement[Any]] = field(default_factory=list)
    limit: int | None = None
    offset: int | None = None
    parameters: dict[str, Any] = field(default_factory=dict)

    @property
    def output_columns(self) -> list[str]:
        """Output column names in select order."""
        return [col.name for col in self.columns]  # type: ignore[attr-defined]

    def from_clause(self) -> FromClause:
        """Return the source with all joins applied."""
        source = self.source
        for join in self.joins:
            if join.kind is JoinType.LEFT:
                source = source.join(join.target, join.onclause, isouter=True)
            elif join.kind is JoinType.RIGHT:
                # RIGHT JOIN is not portable; swap sides of a LEFT OUTER JOIN
                source = join.target.join(source, join.onclause, isouter=True)
            elif join.kind is JoinType.OUTER:
                source = source.join(join.target, join.onclause, full=True)
            else:
                source = source.join(join.target, join.onclause)
        return source

    def _base(self) -> Select[Any]:
        stmt = select(*self.columns).select_from(self.from_clause())
        if self.where:
            stmt = stmt.where(*self.where)
        if self.group_by:
            stmt = stmt.group_by(*self.group_by)
        if self.order_by:
            stmt = stmt.order_by(*self.order_by)
        return stmt

    def statement(self) -> Select[Any]:
        """Full statement including the definition's limit and offset."""
        stmt = self._base()
        if self.limit is not None:
            stmt = stmt.limit(self.limit)
        if self.offset is not None:
            stmt = stmt.offset(self.offset)
        return stmt

    def page_statement(self, page: int, page_size: int) -> Select[Any]:
        """Statement for one page; pagination replaces the definition's limit/offset.

        Raises:
            InvalidArgumentError: If ``page`` or ``page_size`` is below 1.
        """
        if page < 1:
            msg = f"page must be >= 1, got {page}"
            raise InvalidArgumentError(msg)
        if page_size < 1:
            msg = f"page_size must be >= 1, got {page_size}"
            raise InvalidArgumentError(msg)
        return self._base().limit(page_size).offset((page - 1) * page_size)

    def count_statement(self) -> Select[Any]:
        """``SELECT COUNT(*)`` over the unpaginated query (limit/offset dropped)."""
        subquery = self._base().order_by(None).subquery("counted")
        return select(func.count().label("total")).select_from(subquery)

    def to_sql(self, dialect: Dialect | None = None) -> str:
        """Render the statement as SQL text with bind markers (for previews and logs)."""
        stmt = self.statement()
        return str(stmt.compile(dialect=dialect)) if dialect is not None else str(stmt)


def _table_ref(ref: str, alias: str | None = None) -> FromClause:
    """Build a table clause from ``schema.table``, ``table alias`` or ``table as alias``."""
    parts = ref.split()
    if len(parts) == 3 and parts[1].lower() == "as":
        name, alias = parts[0], alias or parts[2]
    elif len(parts) == 2:
        name, alias = parts[0], alias or parts[1]
    elif len(parts) == 1:
        name = parts[0]
    else:
        msg = f"Invalid table reference: {ref!r}"
        raise ValidationError(msg)

    if not IDENTIFIER_RE.match(name) or (alias is not None and not IDENTIFIER_RE.match(alias)):
        msg = f"Invalid table reference: {ref!r}"
        raise ValidationError(msg)

    schema, _, table_name = name.rpartition(".")
    clause = table(table_name, schema=schema or None)
    return clause.alias(alias) if alias else clause


def _contains_pattern(value: Any) -> str:
    """Wrap ``value`` in wildcards, escaping its own ``%`` and ``_`` so they match literally."""
    text = str(value)
    for char in (LIKE_ESCAPE, "%", "_"):
        text = text.replace(char, LIKE_ESCAPE + char)
    return f"%{text}%"


def _filter_clause(flt: QueryFilter, parameters: Mapping[str, Any]) -> ColumnElement[bool] | None:
    operator = resolve_operator(flt.operator)
    if operator is None:
        logger.warning("Skipping filter on {} with unknown operator {!r}", flt.field, flt.operator)
        return None

    column = literal_column(substitute_identifier(flt.field, parameters))
    value = substitute_value(flt.value, parameters)

    match operator:
        case FilterOperator.EQUALS:
            return column == value
        case FilterOperator.NOT_EQUALS:
            return column != value
        case FilterOperator.GREATER_THAN:
            return column > value
        case FilterOperator.LESS_THAN:
            return column < value
        case FilterOperator.GREATER_THAN_EQUALS:
            return column >= value
        case FilterOperator.LESS_THAN_EQUALS:
            return column <= value
        case FilterOperator.CONTAINS:
            return column.like(_contains_pattern(value), escape=LIKE_ESCAPE)
        case FilterOperator.NOT_CONTAINS:
            return column.not_like(_contains_pattern(value), escape=LIKE_ESCAPE)
        case FilterOperator.IN | FilterOperator.NOT_IN:
            if not isinstance(value, list | tuple):
                logger.warning("Skipping {} filter on {}: value must be a list", operator, flt.field)
                return None
            return column.in_(list(value)) if operator is FilterOperator.IN else column.not_in(list(value))
        case FilterOperator.BETWEEN:
            if not isinstance(value, list | tuple) or len(value) != 2:
                logger.warning("Skipping BETWEEN filter on {}: value must be a two-element list", flt.field)
                return None
            return column.between(value[0], value[1])
        case FilterOperator.NULL:
            return column.is_(None)
        case FilterOperator.NOT_NULL:
            return column.is_not(None)
    return None


def _join(join: QueryJoin, parameters: Mapping[str, Any]) -> CompiledJoin | None:
    kind = resolve_join_type(join.type)
    if kind is None:
        logger.warning("Skipping join on {} with unsupported type {!r}", join.table, join.type)
        return None
    if len(join.condition) != 2:
        logger.warning("Skipping join on {}: condition must have exactly two expressions", join.table)
        return None
    target = _table_ref(substitute_identifier(join.table, parameters), join.alias)
    left, right = (literal_column(substitute_identifier(expr, parameters)) for expr in join.condition)
    return CompiledJoin(kind=kind, target=target, onclause=left == right)


def compile_query(
    definition: QueryDefinition,
    parameters: Mapping[str, Any] | None = None,
) -> CompiledQuery:
    """Compile a definition and runtime parameters into a ``CompiledQuery``.

    Pure: performs no I/O and does not touch the warehouse.

    Args:
        definition: The query definition.
        parameters: Runtime values for ``:name`` placeholders; override
            the definition's declared defaults.

    Returns:
        The compiled query.

    Raises:
        ValidationError: If the definition has no fields, a required
            placeholder has no value, or an identifier value is unsafe.
    """
    if not definition.fields:
        msg = f"Query {definition.name!r} must select at least one field"
        raise ValidationError(msg)

    resolved = resolve_parameters(definition, parameters)
    check_required(definition, resolved)

    source = _table_ref(substitute_identifier(definition.collection, resolved))

    columns: dict[str, ColumnElement[Any]] = {}

    def _add(name: str, expr: ColumnElement[Any]) -> None:
        if name in columns:
            logger.warning("Duplicate output column {!r} in query {}; last definition wins", name, definition.name)
        columns[name] = expr.label(name)

    for fld in definition.fields:
        expr = fld.field.strip()
        if not expr:
            msg = f"Query {definition.name!r} has a blank field expression"
            raise ValidationError(msg)
        _add(fld.output_name, literal_column(substitute_identifier(expr, resolved)))

    for agg in definition.aggregations:
        agg_key = agg.type.strip().upper()
        if agg_key not in AggregationType.__members__:
            logger.warning("Skipping aggregation with unknown type {!r}", agg.type)
            continue
        agg_type = AggregationType[agg_key]
        target = agg.field.strip()
        if agg_type is AggregationType.COUNT and target == "*":
            agg_expr = func.count()
        else:
            agg_expr = getattr(func, agg_type.value.lower())(literal_column(substitute_identifier(target, resolved)))
        _add(agg.output_name, agg_expr)

    where = [clause for flt in definition.filters if (clause := _filter_clause(flt, resolved)) is not None]
    joins = [compiled for join in definition.joins if (compiled := _join(join, resolved)) is not None]
    group_by = [literal_column(substitute_identifier(expr, resolved)) for expr in definition.group_by]

    order_by: list[ColumnElement[Any]] = []
    for srt in definition.sort:
        direction = srt.direction.strip().upper()
        sort_col = literal_column(substitute_identifier(srt.field, resolved))
        if direction == SortDirection.DESC:
            order_by.append(sort_col.desc())
        else:
            if direction != SortDirection.ASC:
                logger.warning("Unknown sort direction {!r} on {}; using ASC", srt.direction, srt.field)
            order_by.append(sort_col.asc())

    return CompiledQuery(
        name=definition.name,
        columns=list(columns.values()),
        source=source,
        joins=joins,
        where=where,
        group_by=group_by,
        order_by=order_by,
        limit=definition.limit,
        offset=definition.offset,
        parameters=resolved,
    )
