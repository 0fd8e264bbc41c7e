"""Export job state machine and write validation.

The job store calls these before every write so that progress only moves
forward and statuses only follow legal transitions::

    pending    -> processing
    processing -> processing | done | failed
    failed     -> processing | failed
    done       -> (terminal)
"""

from catalog_export.lib.exporter.errors import InvalidTransitionError
from catalog_export.lib.exporter.types import ExportJobRecord, ExportJobStatus

_TRANSITIONS: dict[ExportJobStatus, frozenset[ExportJobStatus]] = {
    ExportJobStatus.PENDING: frozenset({ExportJobStatus.PROCESSING}),
    ExportJobStatus.PROCESSING: frozenset(
        {ExportJobStatus.PROCESSING, ExportJobStatus.DONE, ExportJobStatus.FAILED}
    ),
    ExportJobStatus.FAILED: frozenset({ExportJobStatus.PROCESSING, ExportJobStatus.FAILED}),
    ExportJobStatus.DONE: frozenset(),
}


def is_legal_transition(current: ExportJobStatus, new: ExportJobStatus) -> bool:
    """Return whether ``current -> new`` is allowed by the state machine."""
    return new in _TRANSITIONS[current]


def check_status_change(job: ExportJobRecord, status: ExportJobStatus) -> None:
    """Validate a status-only write.

    Re-writing ``done`` onto a ``done`` job is accepted as a retried write.

    Raises:
        InvalidTransitionError: If the move is not allowed.
    """
    if job.status == status == ExportJobStatus.DONE:
        return
    if not is_legal_transition(job.status, status):
        msg = f"Export job {job.id}: illegal status transition {job.status} -> {status}"
        raise InvalidTransitionError(msg)


def check_advance(job: ExportJobRecord, cursor: int, rows_exported: int, status: ExportJobStatus) -> None:
    """Validate a compare-and-write of progress plus status.

    A call carrying exactly the job's current values is an idempotent retry
    and always passes.

    Raises:
        InvalidTransitionError: If the cursor or row count would decrease,
            or the status move is illegal.
    """
    if (cursor, rows_exported, status) == (job.cursor, job.rows_exported, job.status):
        return
    if cursor < job.cursor:
        msg = f"Export job {job.id}: cursor cannot move backwards ({job.cursor} -> {cursor})"
        raise InvalidTransitionError(msg)
    if rows_exported < job.rows_exported:
        msg = f"Export job {job.id}: rows_exported cannot decrease ({job.rows_exported} -> {rows_exported})"
        raise InvalidTransitionError(msg)
    if not is_legal_transition(job.status, status):
        msg = f"Export job {job.id}: illegal status transition {job.status} -> {status}"
        raise InvalidTransitionError(msg)
