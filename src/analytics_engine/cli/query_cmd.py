"""Saved query CLI commands."""

import asyncio
import json
import uuid
from pathlib import Path

import typer

from analytics_engine.core.errors import AnalyticsError

query_app = typer.Typer()


def _fail(error: Exception) -> typer.Exit:
    typer.echo(f"Error: {error}", err=True)
    return typer.Exit(code=1)


@query_app.command("create")
def create(
    definition_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON query definition"),
) -> None:
    """Save a query definition read from a JSON file."""
    try:
        query_id = asyncio.run(_create(definition_file))
    except (AnalyticsError, ValueError) as e:
        raise _fail(e) from e
    typer.echo(f"Query created: {query_id}")


async def _create(definition_file: Path) -> uuid.UUID:
    from analytics_engine.cli.common import services
    from analytics_engine.schemas.query import QueryCreateRequest
    from analytics_engine.services.query_service import create_query

    request = QueryCreateRequest.model_validate(json.loads(definition_file.read_text(encoding="utf-8")))
    async with services() as container, container.session_factory() as session:
        record = await create_query(session, request)
        return record.id


@query_app.command("list")
def list_cmd(
    query_type: str | None = typer.Option(None, "--type", help="Filter by query type"),
    page: int = typer.Option(1, "--page", min=1),
    page_size: int = typer.Option(20, "--page-size", min=1, max=100),
) -> None:
    """List saved queries."""
    asyncio.run(_list(query_type, page, page_size))


async def _list(query_type: str | None, page: int, page_size: int) -> None:
    from analytics_engine.cli.common import services
    from analytics_engine.schemas.common import PaginationMeta
    from analytics_engine.schemas.query import QueryType
    from analytics_engine.services.query_service import list_queries

    try:
        type_filter = QueryType(query_type.upper()) if query_type else None
    except ValueError:
        typer.echo(f"Unknown query type: {query_type}", err=True)
        raise typer.Exit(code=2) from None

    async with services() as container, container.session_factory() as session:
        queries, total = await list_queries(session, query_type=type_filter, page=page, page_size=page_size)

    meta = PaginationMeta.for_page(total, page, page_size)
    typer.echo(f"{total} saved queries (page {meta.page} of {max(meta.total_pages, 1)})")
    for record in queries:
        typer.echo(f"  {record.id}  {record.query_type:<12} {record.name}")


@query_app.command("show")
def show(query_id: uuid.UUID = typer.Argument(..., help="Saved query ID")) -> None:
    """Print a saved query definition as JSON."""
    try:
        asyncio.run(_show(query_id))
    except AnalyticsError as e:
        raise _fail(e) from e


async def _show(query_id: uuid.UUID) -> None:
    from analytics_engine.cli.common import echo_json, services
    from analytics_engine.schemas.query import SavedQueryResponse
    from analytics_engine.services.query_service import require_query

    async with services() as container, container.session_factory() as session:
        record = await require_query(session, query_id)
        response = SavedQueryResponse.model_validate({**record.to_definition().model_dump(), "id": record.id})
    echo_json(response.model_dump(mode="json"))


@query_app.command("run")
def run(
    query_id: uuid.UUID = typer.Argument(..., help="Saved query ID"),
    param: list[str] | None = typer.Option(None, "--param", "-p", help="Runtime parameter name=value"),
    page: int | None = typer.Option(None, "--page", help="Page number (enables pagination)"),
    page_size: int | None = typer.Option(None, "--page-size", help="Rows per page (enables pagination)"),
    timeout: float | None = typer.Option(None, "--timeout", help="Warehouse timeout in seconds"),
) -> None:
    """Execute a saved query and print the rows as JSON."""
    from analytics_engine.cli.common import parse_params

    params = parse_params(param)
    try:
        asyncio.run(_run(query_id, params, page, page_size, timeout))
    except (AnalyticsError, TimeoutError) as e:
        raise _fail(e) from e


async def _run(
    query_id: uuid.UUID,
    params: dict,
    page: int | None,
    page_size: int | None,
    timeout: float | None,
) -> None:
    from dataclasses import asdict

    from analytics_engine.cli.common import echo_json, services
    from analytics_engine.schemas.query import ExecutionOptions
    from analytics_engine.services.query_executor import PaginatedResult
    from analytics_engine.services.query_service import execute_saved_query

    options = ExecutionOptions(page=page, page_size=page_size, timeout=timeout)
    async with services() as container, container.session_factory() as session:
        result = await execute_saved_query(session, container.executor, query_id, params, options)
    echo_json(asdict(result) if isinstance(result, PaginatedResult) else result)


@query_app.command("preview")
def preview(
    query_id: uuid.UUID = typer.Argument(..., help="Saved query ID"),
    param: list[str] | None = typer.Option(None, "--param", "-p", help="Runtime parameter name=value"),
) -> None:
    """Print the SQL a saved query compiles to, without executing it."""
    from analytics_engine.cli.common import parse_params

    try:
        asyncio.run(_preview(query_id, parse_params(param)))
    except AnalyticsError as e:
        raise _fail(e) from e


async def _preview(query_id: uuid.UUID, params: dict) -> None:
    from analytics_engine.cli.common import services
    from analytics_engine.services.query_service import require_query

    async with services() as container, container.session_factory() as session:
        definition = (await require_query(session, query_id)).to_definition()
        typer.echo(container.executor.preview_sql(definition, params))


@query_app.command("delete")
def delete(query_id: uuid.UUID = typer.Argument(..., help="Saved query ID")) -> None:
    """Delete a saved query."""
    deleted = asyncio.run(_delete(query_id))
    if not deleted:
        typer.echo(f"Query not found: {query_id}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Query deleted: {query_id}")


async def _delete(query_id: uuid.UUID) -> bool:
    from analytics_engine.cli.common import services
    from analytics_engine.services.query_service import delete_query

    async with services() as container, container.session_factory() as session:
        return await delete_query(session, query_id)
