"""Warehouse backed by an async SQLAlchemy engine."""

from collections.abc import AsyncIterator
from typing import Any

from loguru import logger
from sqlalchemy import Select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from analytics_engine.core.database import build_engine
from analytics_engine.core.errors import QueryExecutionError


class SQLAlchemyWarehouse:
    """Executes compiled queries on an ``AsyncEngine``.

    The engine (and its pool) is owned by this object once handed over;
    ``close()`` disposes it.

    Args:
        engine: Async engine connected to the warehouse.
        stream_batch_size: Rows fetched per round trip when streaming.
    """

    def __init__(self, engine: AsyncEngine, *, stream_batch_size: int = 1000) -> None:
        self._engine = engine
        self._stream_batch_size = stream_batch_size

    @classmethod
    def from_url(cls, url: str, **engine_kwargs: Any) -> "SQLAlchemyWarehouse":
        """Create a warehouse with its own engine."""
        return cls(build_engine(url, **engine_kwargs))

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def execute(self, statement: Select[Any]) -> list[dict[str, Any]]:
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(statement)
                return [dict(row) for row in result.mappings()]
        except SQLAlchemyError as e:
            logger.error("Warehouse query failed: {}", e)
            msg = f"Warehouse query failed: {e}"
            raise QueryExecutionError(msg) from e

    async def stream(self, statement: Select[Any]) -> AsyncIterator[dict[str, Any]]:
        try:
            async with self._engine.connect() as conn:
                result = await conn.stream(statement.execution_options(yield_per=self._stream_batch_size))
                try:
                    async for row in result.mappings():
                        yield dict(row)
                finally:
                    await result.close()
        except SQLAlchemyError as e:
            logger.error("Warehouse stream failed: {}", e)
            msg = f"Warehouse stream failed: {e}"
            raise QueryExecutionError(msg) from e

    async def count(self, statement: Select[Any]) -> int:
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(statement)
                return int(result.scalar_one())
        except SQLAlchemyError as e:
            logger.error("Warehouse count failed: {}", e)
            msg = f"Warehouse count failed: {e}"
            raise QueryExecutionError(msg) from e

    async def close(self) -> None:
        await self._engine.dispose()
