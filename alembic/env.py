"""Alembic environment for the analytics records database (saved queries, export jobs).

The target URL comes from ``sqlalchemy.url`` when the caller sets it (tests,
one-off migrations of another database) and from application settings
otherwise. Only settings-driven runs honour ``DATABASE_SCHEMA``.
"""

import asyncio
from dataclasses import dataclass
from logging.config import fileConfig
from typing import Any

from alembic import context
from sqlalchemy import pool, text
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from analytics_engine.core.config import get_settings

# Importing the models package registers every table with Base.metadata
from analytics_engine.models import AnalyticsQuery, ExportJob  # noqa: F401
from analytics_engine.models.base import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


@dataclass(frozen=True)
class MigrationTarget:
    url: str
    schema: str | None = None


def resolve_target() -> MigrationTarget:
    explicit_url = config.get_main_option("sqlalchemy.url")
    if explicit_url:
        return MigrationTarget(explicit_url)
    settings = get_settings()
    return MigrationTarget(settings.database_url, settings.database_schema)


def _context_options(target: MigrationTarget, **options: Any) -> dict[str, Any]:
    options.update(target_metadata=target_metadata, compare_type=True)
    if target.schema is not None:
        options["version_table_schema"] = target.schema
    return options


def run_migrations_offline(target: MigrationTarget) -> None:
    """Emit SQL for the migrations without connecting."""
    context.configure(
        **_context_options(
            target,
            url=target.url,
            literal_binds=True,
            dialect_opts={"paramstyle": "named"},
        )
    )
    with context.begin_transaction():
        context.run_migrations()


def _migrate(connection: Connection, target: MigrationTarget) -> None:
    if target.schema is not None:
        connection.execute(text(f'SET search_path TO "{target.schema}", public'))
    # SQLite cannot ALTER most constraints in place
    context.configure(
        **_context_options(
            target,
            connection=connection,
            render_as_batch=connection.dialect.name == "sqlite",
        )
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online(target: MigrationTarget) -> None:
    """Migrate through an async engine (asyncpg or aiosqlite)."""
    engine = create_async_engine(target.url, poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            if target.schema is not None:
                await connection.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{target.schema}"'))
                await connection.commit()
            await connection.run_sync(_migrate, target)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline(resolve_target())
else:
    asyncio.run(run_migrations_online(resolve_target()))
