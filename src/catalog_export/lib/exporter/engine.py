"""Resumable chunked export loop.

The engine scans products in ascending ``id`` order, ``CHUNK_SIZE`` rows at a
time, strictly after the job's persisted cursor. After each chunk is pushed
to the sink the new cursor and row count are persisted before the next fetch,
so a later run resumes exactly after the last completed chunk.

Resume is derived from state alone: a job with ``cursor > 0`` continues from
that cursor. Each run starts its output with a fresh header.
"""

import asyncio
import contextlib
import uuid
from collections.abc import Awaitable, Callable
from typing import Protocol

from loguru import logger

from catalog_export.lib.exporter import csv_codec
from catalog_export.lib.exporter.errors import InvalidTransitionError, SinkUnavailableError
from catalog_export.lib.exporter.sink import ProgressSink
from catalog_export.lib.exporter.types import (
    ExportFilters,
    ExportJobRecord,
    ExportJobStatus,
    ExportOutcome,
    ProductRow,
)

CHUNK_SIZE = 1000
DEFAULT_CHUNK_DELAY = 0.05


class _EmitAbandonedError(Exception):
    """A blocked sink call was given up because the loop was cancelled."""


class ProductSource(Protocol):
    """Read-only, ordered access to the exported products."""

    async def scan(self, filters: ExportFilters, after_id: int, limit: int) -> list[ProductRow]:
        """Return up to ``limit`` rows with ``id > after_id`` in ascending id order."""
        ...

    async def count(self, filters: ExportFilters) -> int:
        """Return the number of rows matching ``filters``."""
        ...


class JobStore(Protocol):
    """Durable export job storage with per-job atomic writes."""

    async def get(self, job_id: uuid.UUID) -> ExportJobRecord: ...

    async def advance(
        self,
        job_id: uuid.UUID,
        cursor: int,
        rows_exported: int,
        status: ExportJobStatus,
    ) -> ExportJobRecord: ...

    async def set_status(self, job_id: uuid.UUID, status: ExportJobStatus) -> ExportJobRecord: ...


class ExecutionHandle:
    """Control handle for one running export loop."""

    def __init__(self, job_id: uuid.UUID) -> None:
        self.job_id = job_id
        self.error: BaseException | None = None
        self._cancel_requested = asyncio.Event()
        self._task: asyncio.Task[ExportOutcome] | None = None

    def cancel(self) -> None:
        """Request a cooperative stop after the chunk in flight completes.

        A sink call that is blocked waiting on its consumer is abandoned, so
        the loop stops promptly even when nobody reads the stream.
        """
        self._cancel_requested.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested.is_set()

    def done(self) -> bool:
        return self._task is not None and self._task.done()

    async def wait(self) -> ExportOutcome:
        """Wait for the loop to exit and return how it ended."""
        if self._task is None:
            msg = "Export loop has not been started"
            raise RuntimeError(msg)
        return await asyncio.shield(self._task)

    def add_done_callback(self, callback: Callable[["ExecutionHandle"], object]) -> None:
        """Call ``callback(handle)`` once the loop has exited."""
        if self._task is None:
            msg = "Export loop has not been started"
            raise RuntimeError(msg)
        self._task.add_done_callback(lambda _task: callback(self))

    async def _emit(self, call: Awaitable[None]) -> None:
        """Await a sink call unless a cancel request arrives while it is blocked."""
        emit = asyncio.ensure_future(call)
        stopper = asyncio.ensure_future(self._cancel_requested.wait())
        try:
            await asyncio.wait({emit, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not emit.done():
                emit.cancel()
                await asyncio.wait({emit})
        if emit.cancelled():
            raise _EmitAbandonedError
        emit.result()

    async def _pace(self, delay: float) -> None:
        """Sleep between chunks; a cancel request ends the pause early."""
        if delay <= 0:
            return
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._cancel_requested.wait(), timeout=delay)


class ExportEngine:
    """Runs export jobs against a product source and a job store.

    Args:
        source: Where product rows are scanned from.
        store: Where job progress is persisted.
        chunk_size: Rows fetched, encoded and persisted per iteration.
        chunk_delay: Seconds to pause between chunks to bound read load.
    """

    def __init__(
        self,
        source: ProductSource,
        store: JobStore,
        *,
        chunk_size: int = CHUNK_SIZE,
        chunk_delay: float = DEFAULT_CHUNK_DELAY,
    ) -> None:
        if chunk_size <= 0:
            msg = f"chunk_size must be positive, got {chunk_size}"
            raise ValueError(msg)
        self.source = source
        self.store = store
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay

    @staticmethod
    def check_startable(job: ExportJobRecord) -> None:
        """Raise ``InvalidTransitionError`` if ``job`` cannot be (re)started."""
        if job.status == ExportJobStatus.DONE:
            msg = f"Export job {job.id} is already done"
            raise InvalidTransitionError(msg)

    def start(self, job: ExportJobRecord, sink: ProgressSink) -> ExecutionHandle:
        """Start (or resume, when ``job.cursor > 0``) the export loop as a task.

        Args:
            job: The job snapshot whose cursor is the resume point.
            sink: Receives the header, CSV chunks, progress and the terminal event.

        Returns:
            A handle to cancel or await the loop.

        Raises:
            InvalidTransitionError: If the job is already done.
        """
        self.check_startable(job)
        handle = ExecutionHandle(job.id)
        handle._task = asyncio.create_task(self._run(job, sink, handle), name=f"export-{job.id}")
        return handle

    async def run(self, job: ExportJobRecord, sink: ProgressSink) -> ExportOutcome:
        """Run the export loop to completion in the current task."""
        return await self.start(job, sink).wait()

    async def _run(self, job: ExportJobRecord, sink: ProgressSink, handle: ExecutionHandle) -> ExportOutcome:
        cursor = job.cursor
        rows_exported = job.rows_exported
        if job.is_resume:
            logger.info(f"Resuming export job {job.id} after id {cursor} ({rows_exported}/{job.total_rows} rows)")
        else:
            logger.info(f"Starting export job {job.id} ({job.total_rows} rows estimated)")

        try:
            await self.store.set_status(job.id, ExportJobStatus.PROCESSING)
            await handle._emit(sink.emit_data(csv_codec.header()))

            while True:
                rows = await self.source.scan(job.filters, cursor, self.chunk_size)
                if not rows:
                    await self.store.set_status(job.id, ExportJobStatus.DONE)
                    logger.info(f"Export job {job.id} done: {rows_exported} rows")
                    break

                await handle._emit(sink.emit_data(csv_codec.encode_rows(rows)))
                cursor = rows[-1].id
                rows_exported += len(rows)
                await self.store.advance(job.id, cursor, rows_exported, ExportJobStatus.PROCESSING)
                logger.debug(f"Export job {job.id}: chunk of {len(rows)} rows persisted, cursor={cursor}")
                await handle._emit(sink.emit_progress(rows_exported, job.total_rows))

                await handle._pace(self.chunk_delay)
                if handle.cancelled:
                    logger.info(f"Export job {job.id} cancelled at cursor {cursor} ({rows_exported} rows)")
                    return ExportOutcome.CANCELLED

        except _EmitAbandonedError:
            logger.info(f"Export job {job.id} cancelled while waiting on its sink (cursor={cursor})")
            return ExportOutcome.CANCELLED

        except SinkUnavailableError as exc:
            handle.error = exc
            logger.warning(f"Export job {job.id} stopped, sink unavailable: {exc} (cursor={cursor})")
            return ExportOutcome.DISCONNECTED

        except Exception as exc:
            handle.error = exc
            logger.exception(f"Export job {job.id} failed at cursor {cursor}")
            await self._mark_failed(job, sink, handle, rows_exported)
            return ExportOutcome.FAILED

        await self._deliver_done(job, sink, handle, rows_exported)
        return ExportOutcome.DONE

    async def _deliver_done(
        self, job: ExportJobRecord, sink: ProgressSink, handle: ExecutionHandle, rows_exported: int
    ) -> None:
        # The job is already committed as done; delivery problems cannot change that.
        try:
            await handle._emit(sink.emit_done(rows_exported))
        except _EmitAbandonedError:
            logger.info(f"Export job {job.id} done; cancelled before the done event was delivered")
        except Exception as exc:
            handle.error = exc
            logger.warning(f"Export job {job.id} done; done event not delivered: {exc}")

    async def _mark_failed(
        self, job: ExportJobRecord, sink: ProgressSink, handle: ExecutionHandle, rows_exported: int
    ) -> None:
        try:
            await self.store.set_status(job.id, ExportJobStatus.FAILED)
        except Exception:
            logger.exception(f"Could not mark export job {job.id} as failed; it remains processing")
        try:
            await handle._emit(sink.emit_failed(rows_exported, job.total_rows))
        except _EmitAbandonedError:
            logger.info(f"Export job {job.id}: cancelled before the failure was delivered")
        except SinkUnavailableError as exc:
            logger.warning(f"Export job {job.id}: failure not delivered, sink unavailable: {exc}")
