"""Export error taxonomy.

Every error raised by the export pipeline derives from ``ExportError`` so
transport layers can map the whole family with a handful of handlers.
"""

import uuid


class ExportError(Exception):
    """Base class for export pipeline errors."""


class ExportJobNotFoundError(ExportError):
    """Raised when a job id is unknown to the store.

    Args:
        job_id: The id that was looked up.
    """

    def __init__(self, job_id: uuid.UUID) -> None:
        self.job_id = job_id
        super().__init__(f"Export job {job_id} not found")


class ConflictError(ExportError):
    """Raised when a write cannot be applied to the job's current state."""


class InvalidTransitionError(ConflictError):
    """Raised when a write would rewind progress or make an illegal status move."""


class JobAlreadyRunningError(ConflictError):
    """Raised when a job already has an active export loop in this process.

    Args:
        job_id: The job that is already running.
    """

    def __init__(self, job_id: uuid.UUID) -> None:
        self.job_id = job_id
        super().__init__(f"Export job {job_id} is already running")


class StoreUnavailableError(ExportError):
    """Raised when the job store cannot be read or written."""


class DataSourceUnavailableError(ExportError):
    """Raised when the product data source fails to scan or count."""


class SinkUnavailableError(ExportError):
    """Raised by a sink whose consumer has gone away (e.g. client disconnected)."""
