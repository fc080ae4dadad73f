"""Runtime parameter placeholders (``:name``) in query definitions.

Placeholders in filter *values* become bound parameter values, so their
content can never change the shape of the SQL. Placeholders inside
*expressions* (table names, field expressions, join conditions) are only
accepted when the supplied value is identifier-shaped.
"""

import re
from collections.abc import Iterable, Mapping
from typing import Any

from analytics_engine.core.errors import ValidationError
from analytics_engine.schemas.query import QueryDefinition

# ``::`` casts and ``12:30`` style literals are not placeholders
_PLACEHOLDER_RE = re.compile(r"(?<![\w:]):([A-Za-z_]\w*)")
_WHOLE_PLACEHOLDER_RE = re.compile(r"^:([A-Za-z_]\w*)$")
IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")


def find_placeholders(text: str) -> list[str]:
    """Return placeholder names referenced in ``text``, in order of appearance."""
    return _PLACEHOLDER_RE.findall(text)


def resolve_parameters(
    definition: QueryDefinition,
    runtime: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Merge declared defaults with runtime values (runtime wins).

    A declared parameter whose default is ``None`` has no default.
    """
    resolved = {name: value for name, value in definition.parameters.items() if value is not None}
    if runtime:
        resolved.update(runtime)
    return resolved


def _expressions(definition: QueryDefinition) -> Iterable[str]:
    yield definition.collection
    for fld in definition.fields:
        yield fld.field
    for agg in definition.aggregations:
        yield agg.field
    for flt in definition.filters:
        yield flt.field
    for join in definition.joins:
        yield join.table
        yield from join.condition
    yield from definition.group_by
    for srt in definition.sort:
        yield srt.field


def _value_placeholders(value: Any) -> Iterable[str]:
    if isinstance(value, str):
        match = _WHOLE_PLACEHOLDER_RE.match(value)
        if match:
            yield match.group(1)
    elif isinstance(value, list | tuple):
        for item in value:
            yield from _value_placeholders(item)


def required_placeholders(definition: QueryDefinition) -> set[str]:
    """Placeholders that must have a value before the query can run.

    Every placeholder inside an expression is required. In filter values only
    a value that is entirely a placeholder (``":status"``) is required;
    placeholders embedded in longer strings are substituted when known.
    """
    names: set[str] = set()
    for expr in _expressions(definition):
        names.update(find_placeholders(expr))
    for flt in definition.filters:
        names.update(_value_placeholders(flt.value))
    return names


def check_required(definition: QueryDefinition, parameters: Mapping[str, Any]) -> None:
    """Raise ValidationError listing placeholders that have no value."""
    missing = sorted(required_placeholders(definition) - parameters.keys())
    if missing:
        msg = f"Missing required query parameters: {', '.join(missing)}"
        raise ValidationError(msg)


def substitute_identifier(expr: str, parameters: Mapping[str, Any]) -> str:
    """Substitute placeholders inside a SQL expression.

    Raises:
        ValidationError: If a substituted value is not identifier-shaped.
    """

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in parameters:
            return match.group(0)
        value = str(parameters[name])
        if not IDENTIFIER_RE.match(value):
            msg = f"Parameter {name!r} is used as an identifier and must match {IDENTIFIER_RE.pattern}"
            raise ValidationError(msg)
        return value

    return _PLACEHOLDER_RE.sub(_replace, expr)


def substitute_value(value: Any, parameters: Mapping[str, Any]) -> Any:
    """Resolve placeholders in a filter value.

    A value that is exactly ``:name`` is replaced by the parameter value
    itself, keeping its type (so ``IN`` filters can receive a list).
    """
    if isinstance(value, str):
        match = _WHOLE_PLACEHOLDER_RE.match(value)
        if match and match.group(1) in parameters:
            return parameters[match.group(1)]

        def _replace(m: re.Match[str]) -> str:
            name = m.group(1)
            return str(parameters[name]) if name in parameters else m.group(0)

        return _PLACEHOLDER_RE.sub(_replace, value)
    if isinstance(value, list | tuple):
        return [substitute_value(item, parameters) for item in value]
    return value
