"""Unit tests for database engine and session management."""

from pathlib import Path
from unittest.mock import patch

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

from analytics_engine.core.database import Database, build_engine


class TestBuildEngine:
    def test_pool_defaults_for_server_databases(self) -> None:
        with patch("analytics_engine.core.database.create_async_engine") as create:
            build_engine("postgresql+asyncpg://localhost/db")

        create.assert_called_once_with("postgresql+asyncpg://localhost/db", pool_size=10, max_overflow=5)

    def test_schema_sets_search_path(self) -> None:
        with patch("analytics_engine.core.database.create_async_engine") as create:
            build_engine("postgresql+asyncpg://localhost/db", schema="pr_42")

        kwargs = create.call_args.kwargs
        assert kwargs["connect_args"] == {"options": "-c search_path=pr_42,public"}

    def test_sqlite_skips_pool_defaults(self) -> None:
        with patch("analytics_engine.core.database.create_async_engine") as create:
            build_engine("sqlite+aiosqlite:///:memory:")

        create.assert_called_once_with("sqlite+aiosqlite:///:memory:")

    def test_connect_args_must_be_dict(self) -> None:
        with pytest.raises(TypeError, match="connect_args"):
            build_engine("postgresql+asyncpg://localhost/db", schema="s", connect_args="bad")


class TestDatabase:
    def test_accessors_require_connect(self) -> None:
        db = Database("sqlite+aiosqlite:///:memory:")
        with pytest.raises(RuntimeError, match="connect"):
            _ = db.engine
        with pytest.raises(RuntimeError, match="connect"):
            _ = db.session_factory

    async def test_connect_session_and_dispose(self, tmp_path: Path) -> None:
        db = Database(f"sqlite+aiosqlite:///{tmp_path / 'db.sqlite'}")
        engine = db.connect()
        assert db.connect() is engine

        async with db.session_factory() as session:
            assert (await session.execute(text("SELECT 1"))).scalar_one() == 1

        await db.dispose()
        with pytest.raises(RuntimeError):
            _ = db.engine

    async def test_from_engine(self) -> None:
        engine = create_async_engine("sqlite+aiosqlite:///:memory:")
        db = Database.from_engine(engine)

        assert db.engine is engine
        async with db.session_factory() as session:
            assert (await session.execute(text("SELECT 2"))).scalar_one() == 2
        await db.dispose()
