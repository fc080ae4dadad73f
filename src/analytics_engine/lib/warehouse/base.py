"""Warehouse collaborator contract."""

from collections.abc import AsyncIterator
from typing import Any, Protocol

from sqlalchemy import Select


class Warehouse(Protocol):
    """Relational store that executes compiled queries.

    Rows are returned as plain ``dict`` objects keyed by output column name.
    Implementations raise ``QueryExecutionError`` on driver failures.
    """

    async def execute(self, statement: Select[Any]) -> list[dict[str, Any]]:
        """Run ``statement`` and return all rows."""
        ...

    def stream(self, statement: Select[Any]) -> AsyncIterator[dict[str, Any]]:
        """Yield rows of ``statement`` lazily; closing the iterator closes the cursor."""
        ...

    async def count(self, statement: Select[Any]) -> int:
        """Run a ``SELECT COUNT(*)`` statement and return the scalar."""
        ...

    async def close(self) -> None:
        """Release warehouse connections."""
        ...
