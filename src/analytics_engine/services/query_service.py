"""Query catalog service: CRUD for saved query definitions and their execution."""

import uuid
from collections.abc import AsyncIterator
from typing import Any

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from analytics_engine.core.errors import NotFoundError, ValidationError
from analytics_engine.models.analytics_query import AnalyticsQuery
from analytics_engine.schemas.query import (
    ExecutionOptions,
    QueryCreateRequest,
    QueryDefinition,
    QueryType,
    QueryUpdateRequest,
    validate_vocabulary,
)
from analytics_engine.services.query_executor import PaginatedResult, QueryExecutor

DEFAULT_PAGE_SIZE = 100


def _ensure_valid(definition: QueryDefinition) -> None:
    problems = validate_vocabulary(definition)
    if problems:
        msg = f"Invalid query definition {definition.name!r}: {'; '.join(problems)}"
        raise ValidationError(msg)


async def create_query(session: AsyncSession, request: QueryCreateRequest) -> AnalyticsQuery:
    """Validate and persist a new query definition.

    Args:
        session: Database session.
        request: The definition to save.

    Returns:
        The created AnalyticsQuery.

    Raises:
        ValidationError: If the definition uses an unknown operator,
            aggregation, join type or sort direction, or has no fields.
    """
    _ensure_valid(request)
    record = AnalyticsQuery(created_by=request.created_by)
    record.apply_definition(request)
    session.add(record)
    await session.commit()
    await session.refresh(record)
    logger.info("Created analytics query {} ({})", record.id, record.name)
    return record


async def get_query(session: AsyncSession, query_id: uuid.UUID) -> AnalyticsQuery | None:
    """Get a saved query by ID."""
    return await session.get(AnalyticsQuery, query_id)


async def require_query(session: AsyncSession, query_id: uuid.UUID) -> AnalyticsQuery:
    """Get a saved query by ID or raise NotFoundError."""
    record = await get_query(session, query_id)
    if record is None:
        raise NotFoundError("Analytics query", query_id)
    return record


async def list_queries(
    session: AsyncSession,
    *,
    query_type: QueryType | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[AnalyticsQuery], int]:
    """List saved queries, newest first.

    Args:
        session: Database session.
        query_type: Optional type filter.
        page: Page number (1-based).
        page_size: Items per page.

    Returns:
        Tuple of (queries, total count).
    """
    query = select(AnalyticsQuery)
    count_query = select(func.count(AnalyticsQuery.id))
    if query_type is not None:
        query = query.where(AnalyticsQuery.query_type == query_type.value)
        count_query = count_query.where(AnalyticsQuery.query_type == query_type.value)

    total = (await session.execute(count_query)).scalar_one()
    offset = (page - 1) * page_size
    query = query.order_by(AnalyticsQuery.created_at.desc(), AnalyticsQuery.name).offset(offset).limit(page_size)
    result = await session.execute(query)
    return list(result.scalars().all()), total


async def update_query(
    session: AsyncSession,
    query_id: uuid.UUID,
    request: QueryUpdateRequest,
) -> AnalyticsQuery:
    """Apply a partial update to a saved query.

    Raises:
        NotFoundError: If the query does not exist.
        ValidationError: If the merged definition is invalid.
    """
    record = await require_query(session, query_id)
    merged = record.to_definition().model_dump()
    merged.update(request.model_dump(exclude_unset=True))
    definition = QueryDefinition.model_validate(merged)
    _ensure_valid(definition)

    record.apply_definition(definition)
    await session.commit()
    await session.refresh(record)
    logger.info("Updated analytics query {}", query_id)
    return record


async def delete_query(session: AsyncSession, query_id: uuid.UUID) -> bool:
    """Delete a saved query. Returns False when it did not exist."""
    record = await get_query(session, query_id)
    if record is None:
        return False
    await session.delete(record)
    await session.commit()
    logger.info("Deleted analytics query {}", query_id)
    return True


async def execute_saved_query(
    session: AsyncSession,
    executor: QueryExecutor,
    query_id: uuid.UUID,
    parameters: dict[str, Any] | None = None,
    options: ExecutionOptions | None = None,
) -> list[dict[str, Any]] | PaginatedResult:
    """Execute a saved query.

    When ``options`` requests a page (``page`` or ``page_size``), the result
    is a ``PaginatedResult``; otherwise all rows are returned, served from the
    result cache when possible.

    Raises:
        NotFoundError: If the query does not exist.
    """
    options = options or ExecutionOptions()
    definition = (await require_query(session, query_id)).to_definition()

    if options.paginated:
        return await executor.execute_query_paginated(
            definition,
            parameters,
            options.page_size if options.page_size is not None else DEFAULT_PAGE_SIZE,
            options.page if options.page is not None else 1,
            timeout=options.timeout,
        )
    return await executor.execute_query(definition, parameters, timeout=options.timeout)


async def stream_saved_query(
    session: AsyncSession,
    executor: QueryExecutor,
    query_id: uuid.UUID,
    parameters: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """Return a lazy row iterator for a saved query (cache bypassed).

    Raises:
        NotFoundError: If the query does not exist.
    """
    definition = (await require_query(session, query_id)).to_definition()
    return executor.execute_query_stream(definition, parameters)
