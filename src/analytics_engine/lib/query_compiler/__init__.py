"""Query compiler: turns a declarative QueryDefinition into SQLAlchemy Core SQL."""

from analytics_engine.lib.query_compiler.compiler import CompiledJoin, CompiledQuery, compile_query
from analytics_engine.lib.query_compiler.placeholders import (
    find_placeholders,
    required_placeholders,
    resolve_parameters,
)

__all__ = [
    "CompiledJoin",
    "CompiledQuery",
    "compile_query",
    "find_placeholders",
    "required_placeholders",
    "resolve_parameters",
]
