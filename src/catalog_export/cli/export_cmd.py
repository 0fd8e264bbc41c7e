"""Export CLI commands: create, run/resume to a file, inspect jobs."""

import asyncio
import contextlib
import signal
import uuid
from collections.abc import AsyncIterator, Coroutine
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import typer

from catalog_export.lib.exporter.errors import ExportError
from catalog_export.lib.exporter.types import ExportFilters, ExportJobRecord, ExportJobStatus, ExportOutcome

if TYPE_CHECKING:
    from catalog_export.core.config import Settings
    from catalog_export.services.export_job_store import SqlExportJobStore
    from catalog_export.services.product_source import SqlProductSource

export_app = typer.Typer()


@dataclass
class _Collaborators:
    store: "SqlExportJobStore"
    source: "SqlProductSource"
    settings: "Settings"


@contextlib.asynccontextmanager
async def _open_collaborators() -> AsyncIterator[_Collaborators]:
    """Create the database handle for one command and dispose it afterwards."""
    from catalog_export.core.config import get_settings
    from catalog_export.core.database import create_engine, create_session_factory, dispose_engine
    from catalog_export.services.export_job_store import SqlExportJobStore
    from catalog_export.services.product_source import SqlProductSource

    settings = get_settings()
    engine = create_engine(settings.database_url, echo=settings.database_echo)
    factory = create_session_factory(engine)
    try:
        yield _Collaborators(SqlExportJobStore(factory), SqlProductSource(factory), settings)
    finally:
        await dispose_engine(engine)


def _echo_job(job: ExportJobRecord) -> None:
    typer.echo(f"  Job ID:        {job.id}")
    typer.echo(f"  Status:        {job.status}")
    typer.echo(f"  Rows exported: {job.rows_exported}/{job.total_rows}")
    typer.echo(f"  Cursor:        {job.cursor}")
    typer.echo(f"  Filters:       {job.filters.to_dict()}")
    typer.echo(f"  Created:       {job.created_at.isoformat()}")
    typer.echo(f"  Updated:       {job.updated_at.isoformat()}")


def _run_or_exit(coro: Coroutine[Any, Any, None]) -> None:
    try:
        asyncio.run(coro)
    except ExportError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@export_app.command("create")
def export_create(
    category: str = typer.Option("", "--category", help="Filter by category"),
    status_filter: str = typer.Option("", "--status", help="Filter by product status"),
    search: str = typer.Option("", "--search", help="Case-insensitive product name search"),
) -> None:
    """Create an export job for the given filters."""
    _run_or_exit(_export_create(ExportFilters(category=category, status=status_filter, search=search)))


async def _export_create(filters: ExportFilters) -> None:
    from catalog_export.services.export_service import create_export_job

    async with _open_collaborators() as c:
        job = await create_export_job(c.store, c.source, filters)
        typer.echo(f"Export job created: {job.id}")
        typer.echo(f"Matching rows: {job.total_rows}")


@export_app.command("run")
def export_run(
    job_id: uuid.UUID = typer.Argument(..., help="Export job ID"),
    output: Path | None = typer.Option(None, "--output", help="Output CSV file"),  # noqa: B008
) -> None:
    """Run or resume an export job, writing CSV to a file.

    A resumed job writes a new file containing only the rows after the last
    checkpoint. Press Ctrl-C to stop after the current chunk.
    """
    _run_or_exit(_export_run(job_id, output))


async def _export_run(job_id: uuid.UUID, output: Path | None) -> None:
    from catalog_export.core.background import ExportRunner
    from catalog_export.lib.exporter.engine import ExportEngine
    from catalog_export.lib.exporter.sink import FileSink
    from catalog_export.services.export_service import run_export

    async with _open_collaborators() as c:
        engine = ExportEngine(
            c.source,
            c.store,
            chunk_size=c.settings.export_chunk_size,
            chunk_delay=c.settings.export_chunk_delay,
        )
        runner = ExportRunner(engine)
        output_path = output or Path(c.settings.export_dir) / f"export-{job_id}.csv"

        with FileSink(output_path) as sink:
            handle = await run_export(runner, c.store, job_id, sink)
            loop = asyncio.get_running_loop()
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(signal.SIGINT, handle.cancel)
            try:
                outcome = await handle.wait()
            finally:
                with contextlib.suppress(NotImplementedError):
                    loop.remove_signal_handler(signal.SIGINT)

        job = await c.store.get(job_id)
        typer.echo(f"\nExport {outcome}:")
        _echo_job(job)
        typer.echo(f"  Output:        {output_path}")
        if outcome != ExportOutcome.DONE:
            typer.echo(f"Resume with: catalog-export export run {job_id}", err=True)
            raise typer.Exit(code=1)


@export_app.command("status")
def export_status(
    job_id: uuid.UUID = typer.Argument(..., help="Export job ID"),
) -> None:
    """Show an export job's status and progress."""
    _run_or_exit(_export_status(job_id))


async def _export_status(job_id: uuid.UUID) -> None:
    async with _open_collaborators() as c:
        job = await c.store.get(job_id)
        _echo_job(job)


@export_app.command("list")
def export_list(
    status_filter: ExportJobStatus | None = typer.Option(None, "--status", help="Filter by job status"),
    page: int = typer.Option(1, "--page", min=1),
    page_size: int = typer.Option(20, "--page-size", min=1, max=100),
) -> None:
    """List export jobs, newest first."""
    _run_or_exit(_export_list(status_filter, page, page_size))


async def _export_list(status_filter: ExportJobStatus | None, page: int, page_size: int) -> None:
    from catalog_export.services.export_service import list_export_jobs

    async with _open_collaborators() as c:
        jobs, total = await list_export_jobs(c.store, status_filter=status_filter, page=page, page_size=page_size)
        typer.echo(f"{total} export job(s)")
        for job in jobs:
            typer.echo(f"{job.id}  {job.status:<10}  {job.rows_exported}/{job.total_rows}  {job.created_at.isoformat()}")
