"""Export CLI commands."""

import asyncio
import uuid
from typing import TYPE_CHECKING

import typer

from analytics_engine.core.errors import AnalyticsError

if TYPE_CHECKING:
    from analytics_engine.schemas.export import ExportRequest

export_app = typer.Typer()


@export_app.command("run")
def export_run(
    query_id: uuid.UUID | None = typer.Option(None, "--query-id", help="Saved query to export"),
    report_id: str | None = typer.Option(None, "--report-id", help="Report to export"),
    output_format: str = typer.Option("csv", "--format", help="Output format (csv, excel, pdf, json)"),
    file_name: str = typer.Option("export", "--file-name", help="Artifact file name"),
    name: str | None = typer.Option(None, "--name", help="Export title"),
    param: list[str] | None = typer.Option(None, "--param", "-p", help="Runtime parameter name=value"),
    delimiter: str = typer.Option(",", "--delimiter", help="CSV delimiter"),
    orientation: str = typer.Option("portrait", "--orientation", help="PDF orientation (portrait, landscape)"),
    no_headers: bool = typer.Option(False, "--no-headers", help="Omit the header row"),
) -> None:
    """Create an export job and process it immediately."""
    from analytics_engine.cli.common import parse_params
    from analytics_engine.schemas.export import ExportOptions, ExportRequest

    try:
        request = ExportRequest(
            output_format=output_format,
            file_name=file_name,
            query_id=query_id,
            report_id=report_id,
            name=name,
            parameters=parse_params(param),
            options=ExportOptions(delimiter=delimiter, orientation=orientation, include_headers=not no_headers),
            created_by="cli",
        )
        asyncio.run(_export_run(request))
    except (AnalyticsError, ValueError, TimeoutError) as e:
        typer.echo(f"Export failed: {e}", err=True)
        raise typer.Exit(code=1) from e


async def _export_run(request: "ExportRequest") -> None:
    from analytics_engine.cli.common import services

    async with services() as container:
        manager = container.export_manager
        job = await manager.create(request)
        typer.echo(f"Export job created: {job.id}")
        typer.echo(f"Format: {job.output_format}")
        typer.echo("Processing...")

        job = await manager.process(job.id)

    typer.echo(f"\nExport {job.status}:")
    typer.echo(f"  Rows:       {job.row_count or 0}")
    typer.echo(f"  File size:  {job.file_size_bytes or 0} bytes")
    typer.echo(f"  File path:  {job.file_path or 'N/A'}")
    typer.echo(f"  URL:        {job.file_url or 'N/A'}")
    if job.error:
        typer.echo(f"  Error:      {job.error}")
        raise typer.Exit(code=1)


@export_app.command("status")
def export_status(job_id: uuid.UUID = typer.Argument(..., help="Export job ID")) -> None:
    """Show an export job."""
    asyncio.run(_export_status(job_id))


async def _export_status(job_id: uuid.UUID) -> None:
    from analytics_engine.cli.common import echo_json, services
    from analytics_engine.schemas.export import ExportJobResponse

    async with services() as container:
        job = await container.export_manager.get(job_id)
    if job is None:
        typer.echo(f"Export job not found: {job_id}", err=True)
        raise typer.Exit(code=1)
    echo_json(ExportJobResponse.model_validate(job).model_dump(mode="json"))


@export_app.command("list")
def export_list(
    status: str | None = typer.Option(None, "--status", help="Filter by status"),
    page: int = typer.Option(1, "--page", min=1),
    page_size: int = typer.Option(20, "--page-size", min=1, max=100),
) -> None:
    """List export jobs."""
    asyncio.run(_export_list(status, page, page_size))


async def _export_list(status: str | None, page: int, page_size: int) -> None:
    from analytics_engine.cli.common import echo_json, services
    from analytics_engine.models.export_job import ExportStatus
    from analytics_engine.schemas.common import PaginationMeta
    from analytics_engine.schemas.export import ExportJobResponse, PaginatedExportJobResponse

    try:
        status_filter = ExportStatus(status.lower()) if status else None
    except ValueError:
        typer.echo(f"Unknown status: {status}", err=True)
        raise typer.Exit(code=2) from None

    async with services() as container:
        jobs, total = await container.export_manager.list_jobs(status=status_filter, page=page, page_size=page_size)

    response = PaginatedExportJobResponse(
        items=[ExportJobResponse.model_validate(job) for job in jobs],
        pagination=PaginationMeta.for_page(total, page, page_size),
    )
    echo_json(response.model_dump(mode="json"))


@export_app.command("sweep")
def export_sweep() -> None:
    """Expire completed exports past their retention window and delete their files."""
    expired = asyncio.run(_export_sweep())
    typer.echo(f"Expired {expired} export job(s)")


async def _export_sweep() -> int:
    from analytics_engine.cli.common import services

    async with services() as container:
        return await container.export_manager.sweep()


@export_app.command("worker")
def export_worker() -> None:
    """Process queued export jobs and sweep expired ones until interrupted."""
    try:
        asyncio.run(_export_worker())
    except KeyboardInterrupt:
        typer.echo("Worker stopped")


async def _export_worker() -> None:
    from analytics_engine.cli.common import services

    async with services() as container:
        pool = container.worker_pool
        await pool.start()
        sweeper = asyncio.create_task(container.export_manager.sweep_loop(container.settings.export_sweep_interval))
        try:
            while True:
                await asyncio.sleep(30)
                for job_id in await container.export_manager.pending_job_ids():
                    await pool.enqueue(job_id)
        finally:
            sweeper.cancel()
            await asyncio.gather(sweeper, return_exceptions=True)
