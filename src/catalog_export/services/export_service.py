"""Export service — orchestrates resumable CSV export jobs."""

import uuid

from loguru import logger

from catalog_export.core.background import ExportRunner
from catalog_export.lib.exporter.engine import ExecutionHandle, JobStore, ProductSource
from catalog_export.lib.exporter.sink import ProgressSink
from catalog_export.lib.exporter.types import ExportFilters, ExportJobRecord, ExportJobStatus
from catalog_export.services.export_job_store import SqlExportJobStore


async def create_export_job(
    store: SqlExportJobStore,
    source: ProductSource,
    filters: ExportFilters,
) -> ExportJobRecord:
    """Create a new export job record.

    Counts the matching rows once; the count is kept as an estimate and is
    not reconciled with later inserts or deletes.

    Args:
        store: Job store to persist into.
        source: Product source used for the row count.
        filters: Filter snapshot for the lifetime of the job.

    Returns:
        The created job (pending, cursor 0).
    """
    total_rows = await source.count(filters)
    return await store.create(filters, total_rows)


async def get_export_job(store: JobStore, job_id: uuid.UUID) -> ExportJobRecord:
    """Get an export job by ID.

    Raises:
        ExportJobNotFoundError: If the job does not exist.
    """
    return await store.get(job_id)


async def list_export_jobs(
    store: SqlExportJobStore,
    *,
    status_filter: ExportJobStatus | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[ExportJobRecord], int]:
    """List export jobs with optional status filter.

    Args:
        store: Job store to read from.
        status_filter: Optional status to filter by.
        page: Page number.
        page_size: Items per page.

    Returns:
        Tuple of (jobs, total count).
    """
    return await store.list_jobs(status=status_filter, page=page, page_size=page_size)


async def check_export_startable(runner: ExportRunner, store: JobStore, job_id: uuid.UUID) -> ExportJobRecord:
    """Verify that an export job exists and could be started now, without starting it.

    Raises:
        ExportJobNotFoundError: If the job does not exist.
        JobAlreadyRunningError: If the job already has a running loop.
        InvalidTransitionError: If the job is already done.
    """
    job = await store.get(job_id)
    runner.check_startable(job)
    return job


async def run_export(
    runner: ExportRunner,
    store: JobStore,
    job_id: uuid.UUID,
    sink: ProgressSink,
) -> ExecutionHandle:
    """Start or resume an export job, streaming into ``sink``.

    The job is re-read from the store so the persisted cursor, not any
    caller-side state, decides where the export resumes.

    Args:
        runner: Runner that enforces one active loop per job.
        store: Job store to read the job from.
        job_id: The job to run.
        sink: Receives the CSV output, progress and terminal event.

    Returns:
        Handle to cancel or await the loop.

    Raises:
        ExportJobNotFoundError: If the job does not exist.
        JobAlreadyRunningError: If the job already has a running loop.
        InvalidTransitionError: If the job is already done.
    """
    job = await store.get(job_id)
    handle = runner.start(job, sink)
    mode = "resume" if job.is_resume else "start"
    logger.info(f"Export job {job_id} {mode} requested (status={job.status}, cursor={job.cursor})")
    return handle
