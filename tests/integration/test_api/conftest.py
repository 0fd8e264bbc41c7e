"""Fixtures for API integration tests: an app wired to the in-memory database."""

from collections.abc import AsyncGenerator
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_export.core.background import ExportRunner
from catalog_export.core.config import Settings, get_settings
from catalog_export.lib.exporter.engine import ExportEngine
from catalog_export.main import create_app
from catalog_export.services.export_job_store import SqlExportJobStore
from catalog_export.services.product_source import SqlProductSource

API_CHUNK_SIZE = 10


@pytest.fixture
def runner(job_store: SqlExportJobStore, product_source: SqlProductSource) -> ExportRunner:
    return ExportRunner(ExportEngine(product_source, job_store, chunk_size=API_CHUNK_SIZE, chunk_delay=0))


@pytest.fixture
def app(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    job_store: SqlExportJobStore,
    product_source: SqlProductSource,
    runner: ExportRunner,
) -> FastAPI:
    with patch("catalog_export.main.get_settings", return_value=settings):
        application = create_app()
    application.state.session_factory = session_factory
    application.state.job_store = job_store
    application.state.product_source = product_source
    application.state.export_runner = runner
    application.dependency_overrides[get_settings] = lambda: settings
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
