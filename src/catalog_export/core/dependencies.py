"""FastAPI dependency injection for sessions and export collaborators.

The database handle, job store, product source and export runner are built
once in the application lifespan and kept on ``app.state``; these
dependencies hand them to request handlers.
"""

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_export.core.background import ExportRunner
from catalog_export.services.export_job_store import SqlExportJobStore
from catalog_export.services.product_source import SqlProductSource


async def get_async_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Yield an async database session with per-request lifecycle."""
    factory = request.app.state.session_factory
    async with factory() as session:
        yield session


def get_job_store(request: Request) -> SqlExportJobStore:
    """Return the application's export job store."""
    return request.app.state.job_store


def get_product_source(request: Request) -> SqlProductSource:
    """Return the application's product source."""
    return request.app.state.product_source


def get_export_runner(request: Request) -> ExportRunner:
    """Return the application's export runner."""
    return request.app.state.export_runner
