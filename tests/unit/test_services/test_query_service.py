"""Tests for the saved query catalog service."""

import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from analytics_engine.core.errors import InvalidArgumentError, NotFoundError, ValidationError
from analytics_engine.schemas.query import (
    ExecutionOptions,
    QueryCreateRequest,
    QueryDefinition,
    QueryType,
    QueryUpdateRequest,
)
from analytics_engine.services.query_executor import PaginatedResult, QueryExecutor
from analytics_engine.services.query_service import (
    create_query,
    delete_query,
    execute_saved_query,
    get_query,
    list_queries,
    require_query,
    stream_saved_query,
    update_query,
)


def _request(definition: QueryDefinition, **overrides: object) -> QueryCreateRequest:
    data = definition.model_dump()
    data.update(overrides)
    return QueryCreateRequest.model_validate(data)


class TestCreateQuery:
    async def test_persists_definition(self, async_session: AsyncSession, loads_definition: QueryDefinition) -> None:
        record = await create_query(async_session, _request(loads_definition, created_by="ops"))

        assert record.id is not None
        assert record.query_type == "OPERATIONAL"
        assert record.created_by == "ops"
        restored = record.to_definition()
        assert restored.fields == loads_definition.fields
        assert restored.filters == loads_definition.filters
        assert restored.parameters == {"status": "DELIVERED"}

    @pytest.mark.parametrize(
        ("overrides", "problem"),
        [
            ({"filters": [{"field": "status", "operator": "LIKE_ISH", "value": "x"}]}, "unknown operator"),
            ({"aggregations": [{"type": "MEDIAN", "field": "revenue"}]}, "unknown aggregation"),
            ({"joins": [{"table": "drivers", "type": "cross", "condition": ["a", "b"]}]}, "unsupported join type"),
            ({"joins": [{"table": "drivers", "type": "left", "condition": ["a"]}]}, "exactly two expressions"),
            ({"sort": [{"field": "load_id", "direction": "UP"}]}, "unknown direction"),
            ({"fields": []}, "fields must not be empty"),
        ],
    )
    async def test_rejects_invalid_vocabulary(
        self,
        async_session: AsyncSession,
        loads_definition: QueryDefinition,
        overrides: dict,
        problem: str,
    ) -> None:
        with pytest.raises(ValidationError, match=problem):
            await create_query(async_session, _request(loads_definition, **overrides))

    async def test_accepts_operator_shorthands(
        self, async_session: AsyncSession, loads_definition: QueryDefinition
    ) -> None:
        request = _request(loads_definition, filters=[{"field": "revenue", "operator": "gte", "value": 100}])
        record = await create_query(async_session, request)
        assert record.filters[0]["operator"] == "gte"


class TestReadQueries:
    async def test_get_and_require(self, async_session: AsyncSession, loads_definition: QueryDefinition) -> None:
        record = await create_query(async_session, _request(loads_definition))

        assert (await get_query(async_session, record.id)) is record
        assert await get_query(async_session, uuid.uuid4()) is None
        with pytest.raises(NotFoundError, match="Analytics query not found"):
            await require_query(async_session, uuid.uuid4())

    async def test_list_filters_by_type_and_paginates(
        self, async_session: AsyncSession, loads_definition: QueryDefinition
    ) -> None:
        for i in range(3):
            await create_query(async_session, _request(loads_definition, name=f"Ops {i}"))
        await create_query(async_session, _request(loads_definition, name="Money", type="FINANCIAL"))

        queries, total = await list_queries(async_session, query_type=QueryType.OPERATIONAL, page=1, page_size=2)
        assert total == 3
        assert len(queries) == 2
        assert all(q.query_type == "OPERATIONAL" for q in queries)

        _, everything = await list_queries(async_session)
        assert everything == 4


class TestUpdateAndDelete:
    async def test_partial_update_keeps_other_fields(
        self, async_session: AsyncSession, loads_definition: QueryDefinition
    ) -> None:
        record = await create_query(async_session, _request(loads_definition))

        updated = await update_query(async_session, record.id, QueryUpdateRequest(name="Renamed", limit=5))

        assert updated.name == "Renamed"
        assert updated.row_limit == 5
        assert updated.collection == "loads"
        assert updated.to_definition().filters == loads_definition.filters

    async def test_update_revalidates(self, async_session: AsyncSession, loads_definition: QueryDefinition) -> None:
        record = await create_query(async_session, _request(loads_definition))

        with pytest.raises(ValidationError, match="unknown direction"):
            await update_query(
                async_session,
                record.id,
                QueryUpdateRequest.model_validate({"sort": [{"field": "load_id", "direction": "UP"}]}),
            )

    async def test_update_missing_query(self, async_session: AsyncSession) -> None:
        with pytest.raises(NotFoundError):
            await update_query(async_session, uuid.uuid4(), QueryUpdateRequest(name="x"))

    async def test_delete(self, async_session: AsyncSession, loads_definition: QueryDefinition) -> None:
        record = await create_query(async_session, _request(loads_definition))

        assert await delete_query(async_session, record.id) is True
        assert await delete_query(async_session, record.id) is False
        assert await get_query(async_session, record.id) is None


class TestExecuteSavedQuery:
    async def test_returns_all_rows(
        self, async_session: AsyncSession, executor: QueryExecutor, loads_definition: QueryDefinition
    ) -> None:
        record = await create_query(async_session, _request(loads_definition))

        rows = await execute_saved_query(async_session, executor, record.id)

        assert isinstance(rows, list)
        assert len(rows) == 15
        assert rows[0]["loadId"] == 1

    async def test_runtime_parameters_override_defaults(
        self, async_session: AsyncSession, executor: QueryExecutor, loads_definition: QueryDefinition
    ) -> None:
        record = await create_query(async_session, _request(loads_definition))

        rows = await execute_saved_query(async_session, executor, record.id, {"status": "CANCELLED"})

        assert [row["loadId"] for row in rows] == [19, 20]

    async def test_paginated_mode(
        self, async_session: AsyncSession, executor: QueryExecutor, loads_definition: QueryDefinition
    ) -> None:
        record = await create_query(async_session, _request(loads_definition))

        result = await execute_saved_query(
            async_session, executor, record.id, options=ExecutionOptions(page=2, page_size=4)
        )

        assert isinstance(result, PaginatedResult)
        assert result.total == 15
        assert result.page_count == 4
        assert [row["loadId"] for row in result.data] == [5, 6, 7, 8]

    async def test_page_size_only_defaults_to_first_page(
        self, async_session: AsyncSession, executor: QueryExecutor, loads_definition: QueryDefinition
    ) -> None:
        record = await create_query(async_session, _request(loads_definition))

        result = await execute_saved_query(async_session, executor, record.id, options=ExecutionOptions(page_size=5))

        assert isinstance(result, PaginatedResult)
        assert result.page == 1
        assert len(result.data) == 5

    async def test_invalid_page(
        self, async_session: AsyncSession, executor: QueryExecutor, loads_definition: QueryDefinition
    ) -> None:
        record = await create_query(async_session, _request(loads_definition))

        with pytest.raises(InvalidArgumentError):
            await execute_saved_query(async_session, executor, record.id, options=ExecutionOptions(page=0))

    async def test_missing_query(self, async_session: AsyncSession, executor: QueryExecutor) -> None:
        with pytest.raises(NotFoundError):
            await execute_saved_query(async_session, executor, uuid.uuid4())

    async def test_stream_saved_query(
        self, async_session: AsyncSession, executor: QueryExecutor, loads_definition: QueryDefinition
    ) -> None:
        record = await create_query(async_session, _request(loads_definition))

        rows = await stream_saved_query(async_session, executor, record.id, {"status": "IN_TRANSIT"})

        assert [row["loadId"] async for row in rows] == [16, 17, 18]
