"""Query executor: compiled query execution with content-addressed result caching.

Results are cached under ``<prefix>:<query-slug>:<sha256>`` keys for a fixed
TTL. Concurrent identical cache misses share one warehouse call. A failing
cache is logged and bypassed; it never fails a query.
"""

import asyncio
import math
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from loguru import logger
from sqlalchemy import Select

from analytics_engine.core.errors import CacheError, InvalidArgumentError, QueryTimeoutError
from analytics_engine.lib.cache import CacheStore, decode_rows, encode_rows, make_cache_key
from analytics_engine.lib.query_compiler import CompiledQuery, compile_query
from analytics_engine.lib.warehouse import Warehouse
from analytics_engine.schemas.query import FieldDataType, QueryDefinition

Row = dict[str, Any]

_TRUE_STRINGS = frozenset({"true", "t", "yes", "y", "1"})


@dataclass
class PaginatedResult:
    """One page of query results."""

    data: list[Row]
    total: int
    page: int
    page_size: int
    page_count: int


def coerce_value(value: Any, data_type: FieldDataType) -> Any:
    """Convert a raw warehouse (or cached JSON) value to the declared data type.

    Values that cannot be converted become None; None stays None.
    """
    if value is None:
        return None
    match data_type:
        case FieldDataType.STRING:
            return value if isinstance(value, str) else str(value)
        case FieldDataType.NUMBER:
            if isinstance(value, bool):
                return int(value)
            if isinstance(value, int | float):
                return value
            try:
                number = Decimal(str(value).strip())
            except InvalidOperation:
                return None
            return int(number) if number == number.to_integral_value() else float(number)
        case FieldDataType.BOOLEAN:
            if isinstance(value, str):
                return value.strip().lower() in _TRUE_STRINGS
            return bool(value)
        case FieldDataType.DATE:
            if isinstance(value, datetime | date):
                return value
            try:
                return datetime.fromisoformat(str(value))
            except ValueError:
                return None
    return value


def _coercions(definition: QueryDefinition) -> dict[str, FieldDataType]:
    return {fld.output_name: fld.data_type for fld in definition.fields if fld.data_type is not None}


def _apply_coercions(row: Row, coercions: Mapping[str, FieldDataType]) -> Row:
    if not coercions:
        return row
    return {k: coerce_value(v, coercions[k]) if k in coercions else v for k, v in row.items()}


class QueryExecutor:
    """Executes query definitions against a warehouse, caching results.

    Args:
        warehouse: Warehouse collaborator.
        cache: Cache store, or None to disable caching.
        ttl_seconds: Lifetime of cached results.
        key_prefix: Prefix for every cache key.
        default_timeout: Warehouse timeout (seconds) used when a call does
            not pass one; None waits indefinitely.
    """

    def __init__(
        self,
        warehouse: Warehouse,
        cache: CacheStore | None = None,
        *,
        ttl_seconds: int = 3600,
        key_prefix: str = "analytics",
        default_timeout: float | None = 30.0,
    ) -> None:
        self._warehouse = warehouse
        self._cache = cache
        self._ttl_seconds = ttl_seconds
        self._key_prefix = key_prefix
        self._default_timeout = default_timeout
        self._inflight: dict[str, asyncio.Task[list[Row]]] = {}

    @property
    def key_prefix(self) -> str:
        return self._key_prefix

    def cache_key(self, definition: QueryDefinition, parameters: Mapping[str, Any] | None = None) -> str:
        """Return the cache key for a definition and its runtime parameters."""
        return make_cache_key(self._key_prefix, definition, compile_query(definition, parameters).parameters)

    def preview_sql(self, definition: QueryDefinition, parameters: Mapping[str, Any] | None = None) -> str:
        """Compile without executing and return the SQL text (values stay bound)."""
        return compile_query(definition, parameters).to_sql()

    def output_columns(self, definition: QueryDefinition, parameters: Mapping[str, Any] | None = None) -> list[str]:
        """Names of the columns the query returns, known even when it returns no rows."""
        return compile_query(definition, parameters).output_columns

    async def execute_query(
        self,
        definition: QueryDefinition,
        parameters: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> list[Row]:
        """Execute a definition, serving from the cache when possible.

        Args:
            definition: Query definition.
            parameters: Runtime placeholder values.
            timeout: Warehouse timeout override in seconds.

        Returns:
            Result rows with declared field data types applied.

        Raises:
            ValidationError: If the definition does not compile.
            QueryExecutionError: If the warehouse fails.
            QueryTimeoutError: If the warehouse does not answer in time.
        """
        compiled = compile_query(definition, parameters)
        coercions = _coercions(definition)
        key = make_cache_key(self._key_prefix, definition, compiled.parameters)

        cached = await self._cache_get(key)
        if cached is not None:
            logger.info("Cache hit for query {} ({} rows)", definition.name, len(cached))
            return [_apply_coercions(row, coercions) for row in cached]

        task = self._inflight.get(key)
        if task is None:
            logger.info("Cache miss for query {}", definition.name)
            task = asyncio.create_task(self._fetch_and_store(key, compiled, timeout))
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))
        else:
            logger.debug("Joining in-flight warehouse call for query {}", definition.name)

        # Shielded so one caller's cancellation does not cancel the shared call
        rows = await asyncio.shield(task)
        return [_apply_coercions(row, coercions) for row in rows]

    async def execute_query_paginated(
        self,
        definition: QueryDefinition,
        parameters: Mapping[str, Any] | None,
        page_size: int,
        page_number: int,
        *,
        timeout: float | None = None,
    ) -> PaginatedResult:
        """Execute one page of a definition plus a total count.

        Pagination replaces the definition's own limit/offset. Pages beyond
        the last one return no data.

        Raises:
            InvalidArgumentError: If ``page_size`` or ``page_number`` is below 1.
        """
        if page_size < 1:
            msg = f"page_size must be >= 1, got {page_size}"
            raise InvalidArgumentError(msg)
        if page_number < 1:
            msg = f"page_number must be >= 1, got {page_number}"
            raise InvalidArgumentError(msg)

        compiled = compile_query(definition, parameters)
        coercions = _coercions(definition)

        total = await self._with_timeout(self._warehouse.count(compiled.count_statement()), timeout, compiled)
        rows = await self._with_timeout(
            self._warehouse.execute(compiled.page_statement(page_number, page_size)),
            timeout,
            compiled,
        )
        return PaginatedResult(
            data=[_apply_coercions(row, coercions) for row in decode_rows(encode_rows(rows))],
            total=total,
            page=page_number,
            page_size=page_size,
            page_count=math.ceil(total / page_size),
        )

    def execute_query_stream(
        self,
        definition: QueryDefinition,
        parameters: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[Row]:
        """Return a lazy, single-pass iterator over the query's rows.

        The definition is compiled eagerly so validation errors surface here.
        Streams bypass the cache. Closing the iterator (``aclose()``) or
        cancelling its consumer closes the warehouse cursor.
        """
        compiled = compile_query(definition, parameters)
        return self._stream(compiled.statement(), _coercions(definition))

    async def _stream(self, statement: Select[Any], coercions: Mapping[str, FieldDataType]) -> AsyncIterator[Row]:
        rows = self._warehouse.stream(statement)
        try:
            async for row in rows:
                yield _apply_coercions(row, coercions)
        finally:
            await rows.aclose()  # type: ignore[attr-defined]

    async def invalidate(self, pattern: str | None = None) -> int:
        """Delete cached results whose key matches the glob ``pattern``.

        Args:
            pattern: Glob over cache keys; defaults to every key under this
                executor's prefix.

        Returns:
            Number of entries removed (0 when caching is disabled or the
            cache is unavailable).
        """
        if self._cache is None:
            return 0
        pattern = pattern or f"{self._key_prefix}:*"
        try:
            keys = await self._cache.scan_keys(pattern)
            removed = await self._cache.delete(keys) if keys else 0
        except CacheError as e:
            logger.error("Cache invalidation failed for {}: {}", pattern, e)
            return 0
        logger.info("Invalidated {} cache entries matching {}", removed, pattern)
        return removed

    async def close(self) -> None:
        """Close the warehouse and cache store."""
        for task in list(self._inflight.values()):
            task.cancel()
        await self._warehouse.close()
        if self._cache is not None:
            await self._cache.close()

    async def _fetch_and_store(self, key: str, compiled: CompiledQuery, timeout: float | None) -> list[Row]:
        rows = await self._with_timeout(self._warehouse.execute(compiled.statement()), timeout, compiled)
        # Hits and misses return the same JSON-shaped values
        payload = encode_rows(rows)
        await self._cache_set(key, payload)
        return decode_rows(payload)

    async def _with_timeout(self, coro: Any, timeout: float | None, compiled: CompiledQuery) -> Any:
        limit = timeout if timeout is not None else self._default_timeout
        try:
            return await asyncio.wait_for(coro, limit)
        except TimeoutError as e:
            if isinstance(e, QueryTimeoutError):
                raise
            msg = f"Query {compiled.name} timed out after {limit}s"
            raise QueryTimeoutError(msg) from e

    async def _cache_get(self, key: str) -> list[Row] | None:
        if self._cache is None:
            return None
        try:
            payload = await self._cache.get(key)
        except CacheError as e:
            logger.warning("Cache read failed, querying warehouse: {}", e)
            return None
        if payload is None:
            return None
        try:
            return decode_rows(payload)
        except ValueError as e:
            logger.warning("Discarding undecodable cache entry {}: {}", key, e)
            return None

    async def _cache_set(self, key: str, payload: str) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.set(key, payload, self._ttl_seconds)
        except CacheError as e:
            logger.warning("Cache write failed for {}: {}", key, e)
