"""Async database engine and session management.

Provides an explicitly constructed ``Database`` owning an async engine and
session factory, used for the records database (saved queries and export
jobs). The warehouse engine is built with the same helper.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool


def build_engine(database_url: str, *, schema: str | None = None, **kwargs: object) -> AsyncEngine:
    """Create an async engine with pool defaults and optional schema search path.

    Args:
        database_url: Async connection string.
        schema: Optional PostgreSQL schema for isolated environments.
        **kwargs: Additional arguments passed to create_async_engine.

    Returns:
        The created async engine.
    """
    if schema is not None:
        connect_args = kwargs.pop("connect_args", {})
        if not isinstance(connect_args, dict):
            msg = "connect_args must be a dict"
            raise TypeError(msg)
        connect_args["options"] = f"-c search_path={schema},public"
        kwargs["connect_args"] = connect_args
    # Only set pool defaults for connection-pooled engines (not SQLite/StaticPool)
    uses_static_pool = kwargs.get("poolclass") is StaticPool or "sqlite" in database_url
    if not uses_static_pool:
        kwargs.setdefault("pool_size", 10)
        kwargs.setdefault("max_overflow", 5)
    return create_async_engine(database_url, **kwargs)


class Database:
    """Owns the records database engine and its session factory.

    Call ``connect()`` before use and ``dispose()`` on shutdown.
    """

    def __init__(self, database_url: str, *, schema: str | None = None, **engine_kwargs: object) -> None:
        self._database_url = database_url
        self._schema = schema
        self._engine_kwargs = engine_kwargs
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def from_engine(cls, engine: AsyncEngine) -> "Database":
        """Wrap an existing engine (used by tests and embedding callers)."""
        db = cls(str(engine.url))
        db._engine = engine
        db._session_factory = async_sessionmaker(engine, expire_on_commit=False)
        return db

    def connect(self) -> AsyncEngine:
        """Create the engine and session factory if not already created."""
        if self._engine is None:
            self._engine = build_engine(self._database_url, schema=self._schema, **self._engine_kwargs)
            self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)
        return self._engine

    @property
    def engine(self) -> AsyncEngine:
        """Return the engine.

        Raises:
            RuntimeError: If ``connect()`` has not been called.
        """
        if self._engine is None:
            msg = "Database engine not initialized. Call connect() first."
            raise RuntimeError(msg)
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Return the session factory.

        Raises:
            RuntimeError: If ``connect()`` has not been called.
        """
        if self._session_factory is None:
            msg = "Session factory not initialized. Call connect() first."
            raise RuntimeError(msg)
        return self._session_factory

    async def dispose(self) -> None:
        """Dispose of the engine and release connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
