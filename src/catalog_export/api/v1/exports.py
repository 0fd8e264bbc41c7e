"""Export API endpoints: job creation, status, push stream and cancellation."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from catalog_export.core.background import ExportRunner
from catalog_export.core.config import Settings, get_settings
from catalog_export.core.dependencies import get_export_runner, get_job_store, get_product_source
from catalog_export.lib.exporter.errors import ExportError
from catalog_export.lib.exporter.sink import StreamSink
from catalog_export.lib.exporter.sse import error_event
from catalog_export.lib.exporter.types import ExportJobStatus
from catalog_export.schemas.common import ErrorResponse, PaginationMeta
from catalog_export.schemas.export import (
    ExportJobCreatedResponse,
    ExportJobResponse,
    ExportRequest,
    PaginatedExportJobResponse,
)
from catalog_export.services.export_job_store import SqlExportJobStore
from catalog_export.services.export_service import (
    check_export_startable,
    create_export_job,
    get_export_job,
    list_export_jobs,
    run_export,
)
from catalog_export.services.product_source import SqlProductSource

exports_router = APIRouter(prefix="/exports", tags=["exports"])

_NOT_FOUND = {status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}}
_CONFLICT = {status.HTTP_409_CONFLICT: {"model": ErrorResponse}}

_SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@exports_router.post(
    "",
    response_model=ExportJobCreatedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def request_export(
    request: ExportRequest,
    store: SqlExportJobStore = Depends(get_job_store),
    source: SqlProductSource = Depends(get_product_source),
) -> ExportJobCreatedResponse:
    """Create an export job for the given filters."""
    job = await create_export_job(store, source, request.to_filters())
    return ExportJobCreatedResponse(job_id=job.id, total_rows=job.total_rows)


@exports_router.get(
    "",
    response_model=PaginatedExportJobResponse,
)
async def list_exports(
    status_filter: ExportJobStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    store: SqlExportJobStore = Depends(get_job_store),
) -> PaginatedExportJobResponse:
    """List export jobs."""
    jobs, total = await list_export_jobs(
        store,
        status_filter=status_filter,
        page=page,
        page_size=page_size,
    )
    return PaginatedExportJobResponse(
        items=[ExportJobResponse.from_record(j) for j in jobs],
        pagination=PaginationMeta.build(total, page, page_size),
    )


@exports_router.get(
    "/{job_id}",
    response_model=ExportJobResponse,
    responses=_NOT_FOUND,
)
async def get_export_status(
    job_id: uuid.UUID,
    store: SqlExportJobStore = Depends(get_job_store),
) -> ExportJobResponse:
    """Get export job status and progress."""
    job = await get_export_job(store, job_id)
    return ExportJobResponse.from_record(job)


@exports_router.get(
    "/{job_id}/stream",
    response_class=StreamingResponse,
    responses={**_NOT_FOUND, **_CONFLICT},
)
async def stream_export(
    job_id: uuid.UUID,
    store: SqlExportJobStore = Depends(get_job_store),
    runner: ExportRunner = Depends(get_export_runner),
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    """Start or resume an export and stream it as Server-Sent Events.

    The first message is the CSV header; each following message carries one
    chunk of CSV lines, followed by a ``progress`` event. The stream ends
    with a ``done`` or ``error`` event. A resumed export streams only the
    rows after the persisted cursor.

    Not-found and conflict checks run before the response starts. The loop
    itself starts only once the body is being sent. The sink is closed when
    the body ends or the response finishes, so a client that goes away at any
    point stops the loop.
    """
    await check_export_startable(runner, store, job_id)
    sink = StreamSink(max_queue_size=settings.export_stream_queue_size)

    async def _event_stream():  # type: ignore[no-untyped-def]
        try:
            try:
                handle = await run_export(runner, store, job_id, sink)
            except ExportError as exc:
                # Lost a race with another request after the checks above
                yield error_event(str(exc)).to_sse()
                return
            handle.add_done_callback(lambda _handle: sink.finish())
            async for event in sink.events():
                yield event.to_sse()
        finally:
            sink.close()

    return StreamingResponse(
        _event_stream(),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
        background=BackgroundTask(sink.close),
    )


@exports_router.post(
    "/{job_id}/cancel",
    status_code=status.HTTP_202_ACCEPTED,
    responses={**_NOT_FOUND, **_CONFLICT},
)
async def cancel_export(
    job_id: uuid.UUID,
    store: SqlExportJobStore = Depends(get_job_store),
    runner: ExportRunner = Depends(get_export_runner),
) -> dict[str, object]:
    """Ask a running export to stop after its current chunk."""
    await get_export_job(store, job_id)
    if not runner.cancel(job_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Export job is not running",
        )
    return {"job_id": str(job_id), "cancel_requested": True}
