"""Background export runner.

Keeps a registry of export loops running in this process so that at most one
loop advances a given job at a time, and so loops can be cancelled by job id
or stopped together at shutdown.
"""

import asyncio
import uuid

from loguru import logger

from catalog_export.lib.exporter.engine import ExecutionHandle, ExportEngine
from catalog_export.lib.exporter.errors import JobAlreadyRunningError
from catalog_export.lib.exporter.sink import ProgressSink
from catalog_export.lib.exporter.types import ExportJobRecord


class ExportRunner:
    """In-process runner for export loops, one per job.

    Suitable for a single API process. Tasks run in the same event loop as
    the server via the export engine.

    Args:
        engine: The export engine that executes the loops.
    """

    def __init__(self, engine: ExportEngine) -> None:
        self.engine = engine
        self._handles: dict[uuid.UUID, ExecutionHandle] = {}

    def check_startable(self, job: ExportJobRecord) -> None:
        """Raise if ``start(job, ...)`` would be rejected right now.

        Raises:
            JobAlreadyRunningError: If a loop for this job is still active.
            InvalidTransitionError: If the job is already done.
        """
        if self.is_running(job.id):
            raise JobAlreadyRunningError(job.id)
        self.engine.check_startable(job)

    def start(self, job: ExportJobRecord, sink: ProgressSink) -> ExecutionHandle:
        """Start or resume the export loop for ``job``.

        Raises:
            JobAlreadyRunningError: If a loop for this job is still active.
            InvalidTransitionError: If the job is already done.
        """
        self.check_startable(job)
        handle = self.engine.start(job, sink)
        self._handles[job.id] = handle
        handle.add_done_callback(self._forget)
        return handle

    def _forget(self, handle: ExecutionHandle) -> None:
        if self._handles.get(handle.job_id) is handle:
            del self._handles[handle.job_id]

    def is_running(self, job_id: uuid.UUID) -> bool:
        handle = self._handles.get(job_id)
        return handle is not None and not handle.done()

    def cancel(self, job_id: uuid.UUID) -> bool:
        """Request a cooperative stop of the job's loop.

        Returns:
            True if a running loop was asked to stop, False if none was running.
        """
        handle = self._handles.get(job_id)
        if handle is None or handle.done():
            return False
        handle.cancel()
        logger.info(f"Cancellation requested for export job {job_id}")
        return True

    async def shutdown(self) -> None:
        """Cancel every running loop and wait for them to exit."""
        handles = list(self._handles.values())
        for handle in handles:
            handle.cancel()
        if handles:
            logger.info(f"Waiting for {len(handles)} export loop(s) to stop")
            await asyncio.gather(*(h.wait() for h in handles), return_exceptions=True)
