"""Export service — export job lifecycle from request to downloadable artifact.

Jobs move PENDING -> PROCESSING -> COMPLETED | FAILED, and COMPLETED ->
EXPIRED once their retention window has passed. The PROCESSING transition is
a conditional UPDATE so a job can only be claimed once, even across
processes sharing the records database.
"""

import asyncio
import concurrent.futures
import threading
import uuid
from collections.abc import AsyncIterator, Callable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Protocol

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics_engine.core.errors import (
    AlreadyProcessingError,
    NotFoundError,
    QueryTimeoutError,
    RenderError,
    ValidationError,
)
from analytics_engine.lib.exporter import (
    FILE_EXTENSIONS,
    MIME_TYPES,
    Artifact,
    ExportFormat,
    Renderer,
    RenderSpec,
    encode_csv_row,
    parse_format,
    renderer_for,
    sanitize_file_name,
)
from analytics_engine.lib.exporter.base import header_labels
from analytics_engine.models.analytics_query import AnalyticsQuery
from analytics_engine.models.export_job import ExportJob, ExportStatus
from analytics_engine.schemas.export import ExportOptions, ExportRequest
from analytics_engine.schemas.query import FilterOperator, QueryDefinition, QueryFilter
from analytics_engine.services.query_executor import QueryExecutor

CSV_STREAM_CHUNK_ROWS = 500
EXPORT_STREAM_BATCH_ROWS = 500

# PDF tables are laid out in memory, so PDF exports keep the cached result path
STREAMED_FORMATS = frozenset({ExportFormat.CSV, ExportFormat.EXCEL, ExportFormat.JSON})

Row = dict[str, Any]


class ReportSource(Protocol):
    """Supplies pre-aggregated rows for report-based exports."""

    async def fetch_rows(
        self,
        report_id: str,
        parameters: dict[str, Any],
        filters: dict[str, Any],
    ) -> list[dict[str, Any]]: ...


@dataclass
class ExportArtifact:
    """Location and content type of a completed export."""

    file_path: Path
    file_name: str
    mime_type: str


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _error_message(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"[:2000]


def apply_export_filters(definition: QueryDefinition, filters: dict[str, Any]) -> QueryDefinition:
    """Return a copy of ``definition`` narrowed by ``field -> value`` filters.

    List values become ``IN`` filters, anything else ``EQUALS``.
    """
    if not filters:
        return definition
    extra = [
        QueryFilter(
            field=field,
            operator=FilterOperator.IN if isinstance(value, list) else FilterOperator.EQUALS,
            value=value,
        )
        for field, value in filters.items()
    ]
    return definition.model_copy(update={"filters": [*definition.filters, *extra]})


def _download_name(job: ExportJob) -> str:
    return f"{sanitize_file_name(job.file_name)}.{FILE_EXTENSIONS[parse_format(job.output_format)]}"


class _ThreadedRowFeed:
    """Feeds rows of an async stream to a renderer running in a worker thread.

    The thread pulls one batch at a time through the event loop, so no more
    than one batch is held ahead of the renderer. ``stop`` cancels the batch
    being fetched and makes the thread abandon the feed. ``timeout`` bounds
    the wait for each batch.
    """

    def __init__(
        self,
        rows: AsyncIterator[Row],
        loop: asyncio.AbstractEventLoop,
        *,
        batch_size: int = EXPORT_STREAM_BATCH_ROWS,
        timeout: float | None = None,
    ) -> None:
        self._rows = rows
        self._loop = loop
        self._batch_size = batch_size
        self._timeout = timeout
        self._stopped = threading.Event()
        self._pending: concurrent.futures.Future[list[Row]] | None = None

    def __iter__(self) -> Iterator[Row]:
        while True:
            batch = self._fetch()
            if not batch:
                return
            yield from batch

    def _fetch(self) -> list[Row]:
        if self._stopped.is_set():
            msg = "Export stopped before all rows were rendered"
            raise RenderError(msg)
        pending = asyncio.run_coroutine_threadsafe(self._next_batch(), self._loop)
        self._pending = pending
        # stop() may have run between the check above and the assignment
        if self._stopped.is_set():
            pending.cancel()
        return pending.result()

    async def _next_batch(self) -> list[Row]:
        batch: list[Row] = []
        try:
            async with asyncio.timeout(self._timeout):
                while len(batch) < self._batch_size:
                    try:
                        batch.append(await anext(self._rows))
                    except StopAsyncIteration:
                        break
        except TimeoutError as e:
            msg = f"Warehouse stream produced no batch within {self._timeout}s"
            raise QueryTimeoutError(msg) from e
        return batch

    def stop(self) -> None:
        self._stopped.set()
        if self._pending is not None:
            self._pending.cancel()

    async def aclose(self) -> None:
        await self._rows.aclose()  # type: ignore[attr-defined]


class ExportJobManager:
    """Creates, processes, serves and expires export jobs.

    Args:
        session_factory: Factory for records-database sessions.
        executor: Query executor used for ``query_id`` jobs.
        export_dir: Root directory for artifacts.
        retention_days: Days a job's artifact is kept.
        base_url: Base of download URLs (``<base_url>/<job-id>/<file-name>``).
        report_source: Collaborator for ``report_id`` jobs; such jobs fail
            when none is configured.
        query_timeout: Warehouse timeout for export queries (per batch for
            streamed exports).
        clock: Source of the current UTC time.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        executor: QueryExecutor,
        *,
        export_dir: Path,
        retention_days: int = 7,
        base_url: str = "/api/v1/exports/download",
        report_source: ReportSource | None = None,
        query_timeout: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._executor = executor
        self._export_dir = Path(export_dir)
        self._retention = timedelta(days=retention_days)
        self._base_url = base_url.rstrip("/")
        self._report_source = report_source
        self._query_timeout = query_timeout
        self._clock = clock

    def download_url(self, job_id: uuid.UUID, file_name: str) -> str:
        """Build the download URL for a job's artifact."""
        return f"{self._base_url}/{job_id}/{file_name}"

    async def create(self, request: ExportRequest) -> ExportJob:
        """Validate a request and persist it as a PENDING job.

        Raises:
            ValidationError: If not exactly one source is given or the file
                name is blank.
            UnsupportedFormatError: If the format has no renderer.
            NotFoundError: If ``query_id`` names no saved query.
        """
        if (request.query_id is None) == (request.report_id is None):
            msg = "Exactly one of query_id or report_id must be provided"
            raise ValidationError(msg)
        if not request.file_name.strip():
            msg = "file_name must not be empty"
            raise ValidationError(msg)
        output_format = parse_format(request.output_format)

        async with self._session_factory() as session:
            if request.query_id is not None and await session.get(AnalyticsQuery, request.query_id) is None:
                raise NotFoundError("Analytics query", request.query_id)

            now = self._clock()
            job = ExportJob(
                name=request.name,
                description=request.description,
                output_format=output_format.value,
                file_name=request.file_name.strip(),
                query_id=request.query_id,
                report_id=request.report_id,
                parameters=request.parameters,
                filters=request.filters,
                options=request.options.model_dump(exclude_none=True),
                status=ExportStatus.PENDING.value,
                created_by=request.created_by,
                created_at=now,
                updated_at=now,
                expires_at=now + self._retention,
            )
            session.add(job)
            await session.commit()
            await session.refresh(job)

        logger.info("Created export job {} (format={}, file={})", job.id, job.output_format, job.file_name)
        return job

    async def get(self, job_id: uuid.UUID) -> ExportJob | None:
        """Get an export job by ID."""
        async with self._session_factory() as session:
            return await session.get(ExportJob, job_id)

    async def list_jobs(
        self,
        *,
        status: ExportStatus | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[ExportJob], int]:
        """List export jobs, newest first.

        Returns:
            Tuple of (jobs, total count).
        """
        query = select(ExportJob)
        count_query = select(func.count(ExportJob.id))
        if status is not None:
            query = query.where(ExportJob.status == status.value)
            count_query = count_query.where(ExportJob.status == status.value)

        async with self._session_factory() as session:
            total = (await session.execute(count_query)).scalar_one()
            offset = (page - 1) * page_size
            query = query.order_by(ExportJob.created_at.desc()).offset(offset).limit(page_size)
            result = await session.execute(query)
            return list(result.scalars().all()), total

    async def pending_job_ids(self) -> list[uuid.UUID]:
        """IDs of jobs still waiting to be processed, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ExportJob.id)
                .where(ExportJob.status == ExportStatus.PENDING.value)
                .order_by(ExportJob.created_at)
            )
            return list(result.scalars().all())

    async def process(self, job_id: uuid.UUID) -> ExportJob:
        """Run a PENDING job to COMPLETED or FAILED.

        Processing failures are recorded on the job (status FAILED with the
        error message) and not raised. Cancellation also records FAILED
        before propagating.

        Raises:
            NotFoundError: If the job does not exist.
            UnsupportedFormatError: If the stored format has no renderer
                (checked before the job is touched).
            AlreadyProcessingError: If the job is not PENDING.
        """
        job, _ = await self._process(job_id)
        return job

    async def create_and_process(self, request: ExportRequest) -> ExportJob:
        """Create a job and process it inline, re-raising any processing error."""
        job = await self.create(request)
        job, error = await self._process(job.id)
        if error is not None:
            raise error
        return job

    async def _process(self, job_id: uuid.UUID) -> tuple[ExportJob, Exception | None]:
        async with self._session_factory() as session:
            job = await session.get(ExportJob, job_id)
            if job is None:
                raise NotFoundError("Export job", job_id)
            renderer = renderer_for(job.output_format)

            claimed = await session.execute(
                update(ExportJob)
                .where(ExportJob.id == job_id, ExportJob.status == ExportStatus.PENDING.value)
                .values(status=ExportStatus.PROCESSING.value, updated_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                await session.rollback()
                await session.refresh(job)
                raise AlreadyProcessingError(job_id, job.status)
            await session.commit()
            await session.refresh(job)
            logger.info("Processing export job {} ({})", job_id, job.output_format)

            try:
                options = ExportOptions.model_validate(job.options or {})
                spec = RenderSpec.from_options(
                    job.file_name,
                    options.model_dump(exclude_none=True),
                    title=job.name or "Data Export",
                    description=job.description,
                    generated_at=self._clock(),
                    file_suffix=job.id.hex,
                )
                if options.sheet_name is None and job.name:
                    spec.sheet_name = job.name
                rows = await self._load_rows(session, job, spec)
                if isinstance(rows, AsyncIterator):
                    artifact = await self._render_stream(renderer, rows, spec)
                else:
                    artifact = await asyncio.to_thread(renderer.render, rows, spec, self._export_dir)
            except asyncio.CancelledError:
                await asyncio.shield(self._record_failure(job_id, "Export cancelled"))
                raise
            except Exception as e:
                logger.exception("Export job {} failed", job_id)
                await session.rollback()
                await self._record_failure(job_id, _error_message(e))
                await session.refresh(job)
                return job, e

            now = self._clock()
            job.status = ExportStatus.COMPLETED.value
            job.file_path = str(artifact.file_path)
            job.file_url = self.download_url(job.id, _download_name(job))
            job.row_count = artifact.row_count
            job.file_size_bytes = artifact.file_size_bytes
            job.completed_at = now
            job.updated_at = now
            job.error = None
            await session.commit()
            await session.refresh(job)

        logger.info(
            "Export job {} completed: {} rows, {} bytes",
            job_id,
            job.row_count,
            job.file_size_bytes,
        )
        return job, None

    async def _load_rows(
        self, session: AsyncSession, job: ExportJob, spec: RenderSpec
    ) -> list[Row] | AsyncIterator[Row]:
        """Resolve the job's rows.

        Saved-query jobs in row-at-a-time formats get a warehouse stream
        (bypassing the result cache); PDF and report jobs get a list. For
        saved queries ``spec.columns`` defaults to the query's output columns
        so an empty result still renders its header.
        """
        if job.query_id is not None:
            record = await session.get(AnalyticsQuery, job.query_id)
            if record is None:
                raise NotFoundError("Analytics query", job.query_id)
            definition = apply_export_filters(record.to_definition(), job.filters or {})
            parameters = job.parameters or {}
            if not spec.columns:
                spec.columns = self._executor.output_columns(definition, parameters)
            if parse_format(job.output_format) in STREAMED_FORMATS:
                return self._executor.execute_query_stream(definition, parameters)
            return await self._executor.execute_query(definition, parameters, timeout=self._query_timeout)

        if self._report_source is None:
            msg = f"No report source configured for report {job.report_id}"
            raise ValidationError(msg)
        return await self._report_source.fetch_rows(job.report_id or "", job.parameters or {}, job.filters or {})

    async def _render_stream(self, renderer: Renderer, rows: AsyncIterator[Row], spec: RenderSpec) -> Artifact:
        feed = _ThreadedRowFeed(rows, asyncio.get_running_loop(), timeout=self._query_timeout)
        render = asyncio.ensure_future(asyncio.to_thread(renderer.render, feed, spec, self._export_dir))
        try:
            return await asyncio.shield(render)
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; let it drop the feed first
            feed.stop()
            await asyncio.gather(render, return_exceptions=True)
            raise
        finally:
            await feed.aclose()

    async def _record_failure(self, job_id: uuid.UUID, message: str) -> None:
        # Fresh session: the processing session may be mid-transaction or cancelled
        async with self._session_factory() as session:
            await session.execute(
                update(ExportJob)
                .where(ExportJob.id == job_id, ExportJob.status == ExportStatus.PROCESSING.value)
                .values(status=ExportStatus.FAILED.value, error=message, updated_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        logger.warning("Export job {} marked failed: {}", job_id, message)

    async def get_artifact(self, job_id: uuid.UUID) -> ExportArtifact:
        """Return the artifact of a COMPLETED job.

        Raises:
            NotFoundError: If the job or its file does not exist.
            ValidationError: If the job is not COMPLETED.
        """
        job = await self.get(job_id)
        if job is None:
            raise NotFoundError("Export job", job_id)
        if job.status != ExportStatus.COMPLETED or not job.file_path:
            msg = f"Export job {job_id} has no downloadable artifact (status={job.status})"
            raise ValidationError(msg)

        path = Path(job.file_path)
        if not path.is_file():
            raise NotFoundError("Export artifact", path.name)
        return ExportArtifact(
            file_path=path,
            file_name=_download_name(job),
            mime_type=MIME_TYPES[parse_format(job.output_format)],
        )

    async def delete(self, job_id: uuid.UUID) -> bool:
        """Delete a job and, best effort, its artifact. Returns False when absent."""
        async with self._session_factory() as session:
            job = await session.get(ExportJob, job_id)
            if job is None:
                return False
            if job.file_path:
                _unlink_artifact(Path(job.file_path))
            await session.delete(job)
            await session.commit()
        logger.info("Deleted export job {}", job_id)
        return True

    async def sweep(self) -> int:
        """Expire COMPLETED jobs past ``expires_at`` and delete their artifacts.

        Returns:
            Number of jobs expired.
        """
        now = self._clock()
        expired = 0
        async with self._session_factory() as session:
            result = await session.execute(
                select(ExportJob.id, ExportJob.file_path).where(
                    ExportJob.status == ExportStatus.COMPLETED.value,
                    ExportJob.expires_at < now,
                )
            )
            for job_id, file_path in result.all():
                moved = await session.execute(
                    update(ExportJob)
                    .where(ExportJob.id == job_id, ExportJob.status == ExportStatus.COMPLETED.value)
                    .values(status=ExportStatus.EXPIRED.value, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if moved.rowcount != 1:
                    continue
                await session.commit()
                if file_path:
                    _unlink_artifact(Path(file_path))
                expired += 1

        if expired:
            logger.info("Expired {} export job(s)", expired)
        return expired

    async def sweep_loop(self, interval: int) -> None:
        """Background asyncio loop that expires old exports.

        Args:
            interval: Seconds between sweeps.
        """
        log = logger.bind(component="sweeper")
        log.info("Export sweep loop started (interval={}s)", interval)

        while True:
            try:
                await asyncio.sleep(interval)
                await self.sweep()
            except asyncio.CancelledError:
                log.info("Export sweep loop cancelled")
                break
            except Exception:
                log.exception("Export sweep loop error")

    async def stream_query_csv(
        self,
        query_id: uuid.UUID,
        parameters: dict[str, Any] | None = None,
        options: ExportOptions | None = None,
    ) -> AsyncIterator[str]:
        """Stream a saved query as CSV text chunks without writing a file.

        Closing the returned iterator (e.g. an aborted download) closes the
        warehouse cursor.

        Raises:
            NotFoundError: If the query does not exist.
        """
        options = options or ExportOptions()
        async with self._session_factory() as session:
            record = await session.get(AnalyticsQuery, query_id)
            if record is None:
                raise NotFoundError("Analytics query", query_id)
            definition = record.to_definition()
        rows = self._executor.execute_query_stream(definition, parameters)
        spec = RenderSpec.from_options(record.name, options.model_dump(exclude_none=True))
        if not spec.columns:
            spec.columns = self._executor.output_columns(definition, parameters)
        return _csv_chunks(rows, spec)


async def _csv_chunks(rows: AsyncIterator[dict[str, Any]], spec: RenderSpec) -> AsyncIterator[str]:
    columns = list(spec.columns) if spec.columns else None
    chunk: list[str] = []
    if columns is not None and spec.include_headers:
        chunk.append(encode_csv_row(header_labels(columns, spec), spec.delimiter))
    try:
        async for row in rows:
            if columns is None:
                columns = list(row.keys())
                if spec.include_headers:
                    chunk.append(encode_csv_row(header_labels(columns, spec), spec.delimiter))
            chunk.append(encode_csv_row((row.get(c) for c in columns), spec.delimiter))
            if len(chunk) >= CSV_STREAM_CHUNK_ROWS:
                yield "".join(chunk)
                chunk.clear()
        if chunk:
            yield "".join(chunk)
    finally:
        await rows.aclose()  # type: ignore[attr-defined]


def _unlink_artifact(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove export artifact {}: {}", path, e)
