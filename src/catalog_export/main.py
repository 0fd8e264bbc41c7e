"""FastAPI application factory.

Creates the FastAPI app with lifespan management, exception handlers,
and OpenAPI metadata.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from catalog_export.core.background import ExportRunner
from catalog_export.core.config import get_settings
from catalog_export.core.database import create_engine, create_session_factory, dispose_engine
from catalog_export.core.logging import setup_logging
from catalog_export.lib.exporter.engine import ExportEngine
from catalog_export.lib.exporter.errors import (
    ConflictError,
    DataSourceUnavailableError,
    ExportJobNotFoundError,
    StoreUnavailableError,
)
from catalog_export.schemas.common import ErrorResponse
from catalog_export.services.export_job_store import SqlExportJobStore
from catalog_export.services.product_source import SqlProductSource


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Build the database handle and export collaborators; tear them down on shutdown."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir, json_logs=settings.log_json)
    engine = create_engine(settings.database_url, echo=settings.database_echo)
    session_factory = create_session_factory(engine)

    job_store = SqlExportJobStore(session_factory)
    product_source = SqlProductSource(session_factory)
    export_engine = ExportEngine(
        product_source,
        job_store,
        chunk_size=settings.export_chunk_size,
        chunk_delay=settings.export_chunk_delay,
    )
    runner = ExportRunner(export_engine)

    app.state.session_factory = session_factory
    app.state.job_store = job_store
    app.state.product_source = product_source
    app.state.export_runner = runner

    yield

    # Running exports keep their last checkpoint and can be resumed after restart
    await runner.shutdown()
    await dispose_engine(engine)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Catalog Export API",
        description="Resumable, streaming CSV export of filtered product catalogs",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Register exception handlers
    @app.exception_handler(ExportJobNotFoundError)
    async def not_found_handler(request: Request, exc: ExportJobNotFoundError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=ErrorResponse(detail=str(exc)).model_dump(),
        )

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=ErrorResponse(detail=str(exc)).model_dump(),
        )

    @app.exception_handler(StoreUnavailableError)
    @app.exception_handler(DataSourceUnavailableError)
    async def unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=ErrorResponse(detail=str(exc)).model_dump(),
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=ErrorResponse(detail=str(exc)).model_dump(),
        )

    # Register middleware and routers
    from catalog_export.api.router import create_router, setup_middleware

    setup_middleware(app, settings)
    app.include_router(create_router(settings))

    return app
