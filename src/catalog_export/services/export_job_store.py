"""SQL-backed export job store.

Every write is a read-modify-write inside one transaction, taken under a
per-job ``asyncio.Lock`` (and a row lock where the dialect supports
``SELECT ... FOR UPDATE``), so writes to the same job never interleave.
Callers receive immutable ``ExportJobRecord`` snapshots, never ORM objects.
"""

import asyncio
import uuid
import weakref
from collections.abc import Callable
from datetime import UTC, datetime

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_export.lib.exporter.errors import ConflictError, ExportJobNotFoundError, StoreUnavailableError
from catalog_export.lib.exporter.state import check_advance, check_status_change
from catalog_export.lib.exporter.types import ExportFilters, ExportJobRecord, ExportJobStatus
from catalog_export.models.base import utcnow
from catalog_export.models.export_job import ExportJob


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they were written as UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def to_record(job: ExportJob) -> ExportJobRecord:
    """Snapshot an ORM export job."""
    return ExportJobRecord(
        id=job.id,
        filters=ExportFilters.from_dict(job.filters),
        status=ExportJobStatus(job.status),
        cursor=job.cursor,
        rows_exported=job.rows_exported,
        total_rows=job.total_rows,
        created_at=_aware(job.created_at),
        updated_at=_aware(job.updated_at),
    )


class SqlExportJobStore:
    """Persists export jobs through an explicitly provided session factory.

    Args:
        session_factory: Factory for short-lived sessions, one per operation.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, job_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[job_id] = lock
        return lock

    async def create(self, filters: ExportFilters, total_rows: int) -> ExportJobRecord:
        """Persist a new pending job with cursor 0.

        Raises:
            StoreUnavailableError: If the job cannot be written.
        """
        try:
            async with self._session_factory() as session, session.begin():
                job = ExportJob(
                    filters=filters.to_dict(),
                    status=ExportJobStatus.PENDING.value,
                    cursor=0,
                    rows_exported=0,
                    total_rows=total_rows,
                )
                session.add(job)
                await session.flush()
                record = to_record(job)
        except SQLAlchemyError as exc:
            msg = f"Cannot create export job: {exc}"
            raise StoreUnavailableError(msg) from exc
        logger.info(f"Created export job {record.id} ({total_rows} rows, filters={record.filters.to_dict()})")
        return record

    async def get(self, job_id: uuid.UUID) -> ExportJobRecord:
        """Return the job's current state.

        Raises:
            ExportJobNotFoundError: If no job has this id.
            StoreUnavailableError: If the store cannot be read.
        """
        try:
            async with self._session_factory() as session:
                job = await session.get(ExportJob, job_id)
                if job is None:
                    raise ExportJobNotFoundError(job_id)
                return to_record(job)
        except SQLAlchemyError as exc:
            msg = f"Cannot read export job {job_id}: {exc}"
            raise StoreUnavailableError(msg) from exc

    async def list_jobs(
        self,
        *,
        status: ExportJobStatus | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[ExportJobRecord], int]:
        """List jobs, newest first, optionally filtered by status.

        Returns:
            Tuple of (jobs, total count).
        """
        query = select(ExportJob)
        count_query = select(func.count(ExportJob.id))
        if status is not None:
            query = query.where(ExportJob.status == status.value)
            count_query = count_query.where(ExportJob.status == status.value)

        offset = (page - 1) * page_size
        query = query.order_by(ExportJob.created_at.desc()).offset(offset).limit(page_size)
        try:
            async with self._session_factory() as session:
                total = (await session.execute(count_query)).scalar_one()
                jobs = (await session.execute(query)).scalars().all()
                return [to_record(j) for j in jobs], total
        except SQLAlchemyError as exc:
            msg = f"Cannot list export jobs: {exc}"
            raise StoreUnavailableError(msg) from exc

    async def advance(
        self,
        job_id: uuid.UUID,
        cursor: int,
        rows_exported: int,
        status: ExportJobStatus,
    ) -> ExportJobRecord:
        """Compare-and-write the job's progress and status.

        Repeating a call with identical arguments is a no-op, so a write
        whose acknowledgement was lost can be retried.

        Raises:
            ConflictError: If the job no longer exists.
            InvalidTransitionError: If progress would move backwards or the
                status change is illegal.
            StoreUnavailableError: If the store cannot be written.
        """

        def apply(job: ExportJob) -> None:
            check_advance(to_record(job), cursor, rows_exported, status)
            job.cursor = cursor
            job.rows_exported = rows_exported
            job.status = status.value

        return await self._write(job_id, apply)

    async def set_status(self, job_id: uuid.UUID, status: ExportJobStatus) -> ExportJobRecord:
        """Move the job to ``status`` if the state machine allows it.

        Raises:
            ConflictError: If the job no longer exists.
            InvalidTransitionError: If the transition is illegal.
            StoreUnavailableError: If the store cannot be written.
        """

        def apply(job: ExportJob) -> None:
            check_status_change(to_record(job), status)
            job.status = status.value

        record = await self._write(job_id, apply)
        logger.debug(f"Export job {job_id} status -> {status}")
        return record

    async def _write(self, job_id: uuid.UUID, apply: Callable[[ExportJob], None]) -> ExportJobRecord:
        async with self._lock_for(job_id):
            try:
                async with self._session_factory() as session, session.begin():
                    job = await session.get(ExportJob, job_id, with_for_update=True)
                    if job is None:
                        msg = f"Export job {job_id} no longer exists"
                        raise ConflictError(msg)
                    apply(job)
                    job.updated_at = utcnow()
                    await session.flush()
                    return to_record(job)
            except SQLAlchemyError as exc:
                msg = f"Cannot write export job {job_id}: {exc}"
                raise StoreUnavailableError(msg) from exc
