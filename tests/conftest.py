"""Shared test fixtures: records database, SQLite warehouse, executor and export job manager."""

import asyncio
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from pathlib import Path

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from analytics_engine.lib.cache import InMemoryCacheStore
from analytics_engine.lib.warehouse import SQLAlchemyWarehouse
from analytics_engine.models.base import Base
from analytics_engine.schemas.query import QueryDefinition
from analytics_engine.services.export_service import ExportJobManager
from analytics_engine.services.query_executor import QueryExecutor

# 20 loads: 1-15 DELIVERED, 16-18 IN_TRANSIT, 19-20 CANCELLED.
# Odd load ids belong to Acme, even ones to Globex.
LOAD_ROWS = [
    {
        "load_id": i,
        "customer": "Acme" if i % 2 else "Globex",
        "status": "DELIVERED" if i <= 15 else ("IN_TRANSIT" if i <= 18 else "CANCELLED"),
        "revenue": 100.0 * i,
        "distance_km": 10.5 * i,
        "driver_id": i % 3 + 1,
        "delivered_at": f"2026-01-{i:02d}T08:00:00",
    }
    for i in range(1, 21)
]

DRIVER_ROWS = [
    {"driver_id": 1, "name": "Ada"},
    {"driver_id": 2, "name": "Brook"},
    {"driver_id": 3, "name": "Casey"},
]

DELIVERED_COUNT = 15
ACME_DELIVERED_COUNT = 8


@pytest.fixture
async def records_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine]:
    """File-backed SQLite records database (separate connections for concurrency tests)."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'records.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(records_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(records_engine, expire_on_commit=False)


@pytest.fixture
async def async_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    async with session_factory() as session:
        yield session


async def seed_warehouse(engine: AsyncEngine) -> None:
    """Create and fill the ``loads`` and ``drivers`` tables."""
    async with engine.begin() as conn:
        await conn.execute(
            text(
                "CREATE TABLE loads ("
                "load_id INTEGER PRIMARY KEY, customer TEXT, status TEXT, revenue REAL, "
                "distance_km REAL, driver_id INTEGER, delivered_at TEXT)"
            )
        )
        await conn.execute(text("CREATE TABLE drivers (driver_id INTEGER PRIMARY KEY, name TEXT)"))
        await conn.execute(
            text(
                "INSERT INTO loads VALUES "
                "(:load_id, :customer, :status, :revenue, :distance_km, :driver_id, :delivered_at)"
            ),
            LOAD_ROWS,
        )
        await conn.execute(text("INSERT INTO drivers VALUES (:driver_id, :name)"), DRIVER_ROWS)


@pytest.fixture
async def warehouse_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'warehouse.db'}", echo=False)
    await seed_warehouse(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def warehouse(warehouse_engine: AsyncEngine) -> SQLAlchemyWarehouse:
    return SQLAlchemyWarehouse(warehouse_engine, stream_batch_size=4)


@pytest.fixture
def cache() -> InMemoryCacheStore:
    return InMemoryCacheStore(max_entries=100)


@pytest.fixture
def executor(warehouse: SQLAlchemyWarehouse, cache: InMemoryCacheStore) -> QueryExecutor:
    return QueryExecutor(warehouse, cache, ttl_seconds=3600, key_prefix="analytics", default_timeout=10.0)


@pytest.fixture
def fixed_now() -> list[datetime]:
    """Mutable clock value shared by the manager fixture; tests may advance it."""
    return [datetime(2026, 3, 1, 12, 0, tzinfo=UTC)]


@pytest.fixture
def export_dir(tmp_path: Path) -> Path:
    return tmp_path / "exports"


@pytest.fixture
def export_manager(
    session_factory: async_sessionmaker[AsyncSession],
    executor: QueryExecutor,
    export_dir: Path,
    fixed_now: list[datetime],
) -> ExportJobManager:
    return ExportJobManager(
        session_factory,
        executor,
        export_dir=export_dir,
        retention_days=7,
        base_url="/api/v1/exports/download",
        query_timeout=10.0,
        clock=lambda: fixed_now[0],
    )


@pytest.fixture
def loads_definition() -> QueryDefinition:
    """Delivered loads, parameterized on status with a DELIVERED default."""
    return QueryDefinition.model_validate(
        {
            "name": "Delivered Loads",
            "type": "OPERATIONAL",
            "collection": "loads",
            "fields": [
                {"field": "load_id", "alias": "loadId"},
                {"field": "customer"},
                {"field": "status"},
                {"field": "revenue", "data_type": "number"},
            ],
            "filters": [{"field": "status", "operator": "EQUALS", "value": ":status"}],
            "sort": [{"field": "load_id", "direction": "ASC"}],
            "parameters": {"status": "DELIVERED"},
        }
    )


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point settings at prepared SQLite files for commands that build their own services.

    Synchronous so CLI tests (which call ``asyncio.run`` themselves) can use it.
    """
    records_url = f"sqlite+aiosqlite:///{tmp_path / 'cli-records.db'}"
    warehouse_url = f"sqlite+aiosqlite:///{tmp_path / 'cli-warehouse.db'}"

    async def _prepare() -> None:
        records = create_async_engine(records_url)
        async with records.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await records.dispose()
        warehouse = create_async_engine(warehouse_url)
        await seed_warehouse(warehouse)
        await warehouse.dispose()

    asyncio.run(_prepare())
    monkeypatch.setenv("DATABASE_URL", records_url)
    monkeypatch.setenv("WAREHOUSE_URL", warehouse_url)
    monkeypatch.setenv("EXPORT_DIR", str(tmp_path / "cli-exports"))
    monkeypatch.setenv("CACHE_BACKEND", "memory")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.delenv("LOG_DIR", raising=False)
    monkeypatch.delenv("DATABASE_SCHEMA", raising=False)
    return tmp_path
