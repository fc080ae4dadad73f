"""Service container: explicitly constructed services with an init/close lifecycle.

Nothing here is a module-level singleton; callers (the CLI, tests, embedding
applications) build a container from ``Settings`` and own its lifetime.
"""

from pathlib import Path
from types import TracebackType

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics_engine.core.background import ExportWorkerPool
from analytics_engine.core.config import Settings
from analytics_engine.core.database import Database
from analytics_engine.lib.cache import build_cache_store
from analytics_engine.lib.warehouse import SQLAlchemyWarehouse, Warehouse
from analytics_engine.services.export_service import ExportJobManager, ReportSource
from analytics_engine.services.query_executor import QueryExecutor


class ServiceContainer:
    """Owns the records database, warehouse, cache, executor and job manager.

    Args:
        settings: Application settings.
        warehouse: Optional pre-built warehouse (otherwise built from
            ``settings.warehouse_url``).
        report_source: Optional collaborator for report-based exports.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        warehouse: Warehouse | None = None,
        report_source: ReportSource | None = None,
    ) -> None:
        self._settings = settings
        self._warehouse = warehouse
        self._report_source = report_source
        self._database: Database | None = None
        self._executor: QueryExecutor | None = None
        self._manager: ExportJobManager | None = None
        self._pool: ExportWorkerPool | None = None

    async def init(self) -> "ServiceContainer":
        """Connect and wire every service. Idempotent."""
        if self._database is not None:
            return self
        settings = self._settings

        self._database = Database(settings.database_url, schema=settings.database_schema)
        self._database.connect()

        warehouse = self._warehouse or SQLAlchemyWarehouse.from_url(settings.warehouse_url)
        cache = (
            build_cache_store(
                settings.cache_backend,
                redis_url=settings.redis_url,
                max_entries=settings.cache_max_entries,
            )
            if settings.cache_enabled
            else None
        )
        self._executor = QueryExecutor(
            warehouse,
            cache,
            ttl_seconds=settings.cache_ttl_seconds,
            key_prefix=settings.cache_key_prefix,
            default_timeout=settings.warehouse_query_timeout,
        )
        self._manager = ExportJobManager(
            self._database.session_factory,
            self._executor,
            export_dir=Path(settings.export_dir),
            retention_days=settings.export_retention_days,
            base_url=settings.export_base_url,
            report_source=self._report_source,
            query_timeout=settings.warehouse_query_timeout,
        )
        self._pool = ExportWorkerPool(self._manager, worker_count=settings.export_worker_count)
        logger.info(
            "Services initialized (environment={}, cache={})",
            settings.environment,
            settings.cache_backend if settings.cache_enabled else "disabled",
        )
        return self

    @staticmethod
    def _not_initialized() -> RuntimeError:
        return RuntimeError("Services not initialized. Call init() first.")

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._database is None:
            raise self._not_initialized()
        return self._database.session_factory

    @property
    def executor(self) -> QueryExecutor:
        if self._executor is None:
            raise self._not_initialized()
        return self._executor

    @property
    def export_manager(self) -> ExportJobManager:
        if self._manager is None:
            raise self._not_initialized()
        return self._manager

    @property
    def worker_pool(self) -> ExportWorkerPool:
        if self._pool is None:
            raise self._not_initialized()
        return self._pool

    async def close(self) -> None:
        """Stop workers and release every connection."""
        if self._pool is not None and self._pool.running:
            await self._pool.stop()
        if self._executor is not None:
            await self._executor.close()
        if self._database is not None:
            await self._database.dispose()
        self._database = self._executor = self._manager = self._pool = None

    async def __aenter__(self) -> "ServiceContainer":
        return await self.init()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
