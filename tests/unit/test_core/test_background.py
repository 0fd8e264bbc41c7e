"""Tests for the in-process export runner."""

import asyncio
from collections.abc import Awaitable, Callable

import pytest

from catalog_export.core.background import ExportRunner
from catalog_export.lib.exporter.engine import ExportEngine
from catalog_export.lib.exporter.errors import InvalidTransitionError, JobAlreadyRunningError
from catalog_export.lib.exporter.sink import MemorySink, StreamSink
from catalog_export.lib.exporter.types import ExportFilters, ExportJobStatus, ExportOutcome
from catalog_export.services.export_job_store import SqlExportJobStore
from catalog_export.services.product_source import SqlProductSource

InsertProducts = Callable[..., Awaitable[list[int]]]


class GatedSink(MemorySink):
    """Memory sink that holds every data chunk until the gate opens."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def emit_data(self, text: str) -> None:
        await self.gate.wait()
        await super().emit_data(text)


@pytest.fixture
def runner(job_store: SqlExportJobStore, product_source: SqlProductSource) -> ExportRunner:
    return ExportRunner(ExportEngine(product_source, job_store, chunk_size=10, chunk_delay=0))


class TestExportRunner:
    """Tests for ExportRunner."""

    @pytest.mark.asyncio
    async def test_second_start_is_rejected(
        self, runner: ExportRunner, job_store: SqlExportJobStore, insert_products: InsertProducts
    ) -> None:
        await insert_products(5)
        job = await job_store.create(ExportFilters(), 5)
        sink = GatedSink()

        handle = runner.start(job, sink)
        assert runner.is_running(job.id)

        with pytest.raises(JobAlreadyRunningError):
            runner.start(job, MemorySink())

        sink.gate.set()
        assert await handle.wait() == ExportOutcome.DONE

    @pytest.mark.asyncio
    async def test_finished_job_is_forgotten(
        self, runner: ExportRunner, job_store: SqlExportJobStore, insert_products: InsertProducts
    ) -> None:
        await insert_products(3)
        job = await job_store.create(ExportFilters(), 3)

        handle = runner.start(job, MemorySink())
        await handle.wait()
        await asyncio.sleep(0)

        assert not runner.is_running(job.id)

    @pytest.mark.asyncio
    async def test_cancel_running_job(
        self, runner: ExportRunner, job_store: SqlExportJobStore, insert_products: InsertProducts
    ) -> None:
        await insert_products(50)
        job = await job_store.create(ExportFilters(), 50)
        sink = GatedSink()
        handle = runner.start(job, sink)

        assert runner.cancel(job.id) is True

        # The header emit is held by the gate; cancel releases it without the gate opening
        assert await asyncio.wait_for(handle.wait(), timeout=1) == ExportOutcome.CANCELLED
        stored = await job_store.get(job.id)
        assert stored.status == ExportJobStatus.PROCESSING
        assert stored.cursor == 0

    @pytest.mark.asyncio
    async def test_cancel_unknown_job(self, runner: ExportRunner, job_store: SqlExportJobStore) -> None:
        job = await job_store.create(ExportFilters(), 0)
        assert runner.cancel(job.id) is False

    @pytest.mark.asyncio
    async def test_shutdown_stops_running_loops(
        self, runner: ExportRunner, job_store: SqlExportJobStore, insert_products: InsertProducts
    ) -> None:
        await insert_products(50)
        job = await job_store.create(ExportFilters(), 50)
        sink = GatedSink()
        handle = runner.start(job, sink)

        await asyncio.wait_for(runner.shutdown(), timeout=5)

        assert handle.done()
        assert await handle.wait() == ExportOutcome.CANCELLED
        assert (await job_store.get(job.id)).status == ExportJobStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_shutdown_with_unread_stream(
        self, runner: ExportRunner, job_store: SqlExportJobStore, insert_products: InsertProducts
    ) -> None:
        await insert_products(200)
        job = await job_store.create(ExportFilters(), 200)
        handle = runner.start(job, StreamSink(max_queue_size=2))
        await asyncio.sleep(0.05)

        await asyncio.wait_for(runner.shutdown(), timeout=1)

        assert await handle.wait() == ExportOutcome.CANCELLED
        assert not runner.is_running(job.id)
        runner.check_startable(await job_store.get(job.id))

    @pytest.mark.asyncio
    async def test_check_startable(
        self, runner: ExportRunner, job_store: SqlExportJobStore, insert_products: InsertProducts
    ) -> None:
        await insert_products(5)
        job = await job_store.create(ExportFilters(), 5)
        runner.check_startable(job)

        sink = GatedSink()
        handle = runner.start(job, sink)
        with pytest.raises(JobAlreadyRunningError):
            runner.check_startable(job)
        sink.gate.set()
        await handle.wait()

        with pytest.raises(InvalidTransitionError):
            runner.check_startable(await job_store.get(job.id))
