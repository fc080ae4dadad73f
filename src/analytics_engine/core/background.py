"""Background export processing.

Provides a protocol for handing export jobs to background execution and an
in-process asyncio implementation: a queue drained by a fixed number of
worker tasks. Job state lives in the records database, so a restarted pool
picks up whatever is still PENDING.
"""

import asyncio
import uuid
from typing import Protocol

from loguru import logger

from analytics_engine.core.errors import AlreadyProcessingError, NotFoundError
from analytics_engine.services.export_service import ExportJobManager


class ExportJobQueue(Protocol):
    """Protocol for background export execution."""

    async def enqueue(self, job_id: uuid.UUID) -> None:
        """Schedule a job for processing and return immediately.

        Enqueueing a job that is already queued or in progress is a no-op.

        Args:
            job_id: ID of a PENDING export job.
        """
        ...


class ExportWorkerPool:
    """In-process worker pool using asyncio.

    Suitable for single-process deployments. Several pools (or processes)
    may share one records database: the job manager's compare-and-swap makes
    sure each job is processed once.

    Within one pool a job ID is held at most once between enqueue and the
    end of its processing, so periodic re-enqueueing of PENDING jobs does
    not pile up duplicates.

    Args:
        manager: Job manager that processes jobs.
        worker_count: Number of concurrent workers.
    """

    def __init__(self, manager: ExportJobManager, *, worker_count: int = 2) -> None:
        self._manager = manager
        self._worker_count = worker_count
        self._queue: asyncio.Queue[uuid.UUID] = asyncio.Queue()
        self._workers: list[asyncio.Task[None]] = []
        self._scheduled: set[uuid.UUID] = set()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def queued(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Start workers and re-enqueue jobs left PENDING by a previous run."""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"export-worker-{i}") for i in range(self._worker_count)
        ]
        pending = await self._manager.pending_job_ids()
        for job_id in pending:
            await self.enqueue(job_id)
        logger.info("Export worker pool started ({} workers, {} pending jobs)", self._worker_count, len(pending))

    async def enqueue(self, job_id: uuid.UUID) -> None:
        if job_id in self._scheduled:
            logger.debug("Export job {} already scheduled", job_id)
            return
        self._scheduled.add(job_id)
        self._queue.put_nowait(job_id)

    async def join(self) -> None:
        """Wait until every queued job has been handled."""
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel workers. A job interrupted mid-processing is recorded FAILED."""
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Export worker pool stopped")

    async def _worker(self, index: int) -> None:
        log = logger.bind(component=f"worker-{index}")
        while True:
            job_id = await self._queue.get()
            try:
                job = await self._manager.process(job_id)
                log.info("Finished export job {} ({})", job_id, job.status)
            except (AlreadyProcessingError, NotFoundError) as e:
                log.info("Skipped export job {}: {}", job_id, e)
            except Exception:
                log.exception("Could not process export job {}", job_id)
            finally:
                self._scheduled.discard(job_id)
                self._queue.task_done()
