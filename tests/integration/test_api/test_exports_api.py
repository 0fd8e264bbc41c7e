"""Integration tests for the export API endpoints."""

import asyncio
import json
import uuid
from collections.abc import Awaitable, Callable
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from httpx import AsyncClient

from catalog_export.core.background import ExportRunner
from catalog_export.lib.exporter.csv_codec import decode_rows, header
from catalog_export.lib.exporter.sink import MemorySink
from catalog_export.lib.exporter.types import ExportFilters, ExportJobStatus, ExportOutcome
from catalog_export.services.export_job_store import SqlExportJobStore

InsertProducts = Callable[..., Awaitable[list[int]]]


def _parse_sse(body: str) -> list[tuple[str, object]]:
    """Split an event-stream body into (event name, decoded data) pairs."""
    events = []
    for frame in body.split("\n\n"):
        if not frame.strip():
            continue
        name = "data"
        data = ""
        for line in frame.split("\n"):
            if line.startswith("event: "):
                name = line[len("event: ") :]
            elif line.startswith("data: "):
                data = line[len("data: ") :]
        events.append((name, json.loads(data)))
    return events


class GatedSink(MemorySink):
    """Memory sink that holds data until the gate opens."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def emit_data(self, text: str) -> None:
        await self.gate.wait()
        await super().emit_data(text)


class TestCreateExport:
    """Tests for POST /api/v1/exports."""

    @pytest.mark.asyncio
    async def test_creates_job(self, client: AsyncClient, insert_products: InsertProducts) -> None:
        await insert_products(3, category="Tools")
        await insert_products(2, category="Garden")

        response = await client.post("/api/v1/exports", json={"category": "Tools"})

        assert response.status_code == 202
        body = response.json()
        assert body["total_rows"] == 3
        uuid.UUID(body["job_id"])

    @pytest.mark.asyncio
    async def test_no_filters(self, client: AsyncClient, insert_products: InsertProducts) -> None:
        await insert_products(4)
        response = await client.post("/api/v1/exports", json={})
        assert response.status_code == 202
        assert response.json()["total_rows"] == 4

    @pytest.mark.asyncio
    async def test_rejects_oversized_filter(self, client: AsyncClient) -> None:
        response = await client.post("/api/v1/exports", json={"category": "x" * 101})
        assert response.status_code == 422


class TestGetExport:
    """Tests for GET /api/v1/exports/{job_id} and the job listing."""

    @pytest.mark.asyncio
    async def test_returns_job_state(self, client: AsyncClient, job_store: SqlExportJobStore) -> None:
        job = await job_store.create(ExportFilters(search="pro"), 12)

        response = await client.get(f"/api/v1/exports/{job.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["job_id"] == str(job.id)
        assert body["status"] == "pending"
        assert body["cursor"] == 0
        assert body["rows_exported"] == 0
        assert body["total_rows"] == 12
        assert body["filters"] == {"category": "", "status": "", "search": "pro"}

    @pytest.mark.asyncio
    async def test_unknown_job(self, client: AsyncClient) -> None:
        response = await client.get(f"/api/v1/exports/{uuid.uuid4()}")
        assert response.status_code == 404
        assert "not found" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_list_jobs(self, client: AsyncClient, job_store: SqlExportJobStore) -> None:
        for _ in range(3):
            await job_store.create(ExportFilters(), 0)

        response = await client.get("/api/v1/exports", params={"page_size": 2})

        assert response.status_code == 200
        body = response.json()
        assert len(body["items"]) == 2
        assert body["pagination"] == {"total": 3, "page": 1, "page_size": 2, "total_pages": 2}

    @pytest.mark.asyncio
    async def test_list_jobs_by_status(self, client: AsyncClient, job_store: SqlExportJobStore) -> None:
        job = await job_store.create(ExportFilters(), 0)
        await job_store.create(ExportFilters(), 0)
        await job_store.set_status(job.id, ExportJobStatus.PROCESSING)

        response = await client.get("/api/v1/exports", params={"status": "processing"})

        assert [item["job_id"] for item in response.json()["items"]] == [str(job.id)]

    @pytest.mark.asyncio
    async def test_list_rejects_unknown_status(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/exports", params={"status": "exploded"})
        assert response.status_code == 422


class TestStreamExport:
    """Tests for GET /api/v1/exports/{job_id}/stream."""

    @pytest.mark.asyncio
    async def test_streams_csv_progress_and_done(
        self, client: AsyncClient, job_store: SqlExportJobStore, insert_products: InsertProducts
    ) -> None:
        ids = await insert_products(25, name='Ultra, "Pro"')
        job = await job_store.create(ExportFilters(), 25)

        response = await client.get(f"/api/v1/exports/{job.id}/stream")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache, no-transform"

        events = _parse_sse(response.text)
        names = [name for name, _ in events]
        assert names == ["data", "data", "progress", "data", "progress", "data", "progress", "done"]
        assert events[0][1] == header()
        assert [p for n, p in events if n == "progress"] == [
            {"rowsExported": 10, "totalRows": 25},
            {"rowsExported": 20, "totalRows": 25},
            {"rowsExported": 25, "totalRows": 25},
        ]
        assert events[-1][1] == {"rowsExported": 25}

        csv_text = "".join(str(p) for n, p in events if n == "data")
        rows = decode_rows(csv_text)
        assert [int(r["id"]) for r in rows] == ids
        assert rows[0]["name"] == 'Ultra, "Pro" 0'

        stored = await job_store.get(job.id)
        assert stored.status == ExportJobStatus.DONE
        assert stored.rows_exported == 25

    @pytest.mark.asyncio
    async def test_resume_streams_remaining_rows(
        self, client: AsyncClient, job_store: SqlExportJobStore, insert_products: InsertProducts
    ) -> None:
        ids = await insert_products(25)
        job = await job_store.create(ExportFilters(), 25)
        await job_store.set_status(job.id, ExportJobStatus.PROCESSING)
        await job_store.advance(job.id, ids[9], 10, ExportJobStatus.PROCESSING)

        response = await client.get(f"/api/v1/exports/{job.id}/stream")

        events = _parse_sse(response.text)
        rows = decode_rows("".join(str(p) for n, p in events if n == "data"))
        assert [int(r["id"]) for r in rows] == ids[10:]
        assert events[-1] == ("done", {"rowsExported": 25})

    @pytest.mark.asyncio
    async def test_empty_dataset(self, client: AsyncClient, job_store: SqlExportJobStore) -> None:
        job = await job_store.create(ExportFilters(), 0)

        response = await client.get(f"/api/v1/exports/{job.id}/stream")

        assert _parse_sse(response.text) == [("data", header()), ("done", {"rowsExported": 0})]

    @pytest.mark.asyncio
    async def test_unknown_job(self, client: AsyncClient) -> None:
        response = await client.get(f"/api/v1/exports/{uuid.uuid4()}/stream")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_done_job_conflict(self, client: AsyncClient, job_store: SqlExportJobStore) -> None:
        job = await job_store.create(ExportFilters(), 0)
        await client.get(f"/api/v1/exports/{job.id}/stream")

        response = await client.get(f"/api/v1/exports/{job.id}/stream")

        assert response.status_code == 409
        assert "already done" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_running_job_conflict(
        self,
        client: AsyncClient,
        runner: ExportRunner,
        job_store: SqlExportJobStore,
        insert_products: InsertProducts,
    ) -> None:
        await insert_products(5)
        job = await job_store.create(ExportFilters(), 5)
        sink = GatedSink()
        handle = runner.start(job, sink)

        response = await client.get(f"/api/v1/exports/{job.id}/stream")

        assert response.status_code == 409
        assert "already running" in response.json()["detail"]
        sink.gate.set()
        await handle.wait()

    @pytest.mark.asyncio
    async def test_start_lost_to_concurrent_request(
        self,
        client: AsyncClient,
        runner: ExportRunner,
        job_store: SqlExportJobStore,
        insert_products: InsertProducts,
    ) -> None:
        await insert_products(5)
        job = await job_store.create(ExportFilters(), 5)
        sink = GatedSink()
        handle = runner.start(job, sink)

        # Another request started the job after this one passed its checks
        with patch("catalog_export.api.v1.exports.check_export_startable", new=AsyncMock()):
            response = await client.get(f"/api/v1/exports/{job.id}/stream")

        assert response.status_code == 200
        events = _parse_sse(response.text)
        assert len(events) == 1
        name, payload = events[0]
        assert name == "error"
        assert "already running" in payload["message"]
        sink.gate.set()
        await handle.wait()


def _stream_scope(job_id: uuid.UUID) -> dict[str, Any]:
    """ASGI scope for GET .../stream as an ASGI 2.3 server (e.g. uvicorn) sends it."""
    path = f"/api/v1/exports/{job_id}/stream"
    return {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": "2.3"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": b"",
        "headers": [(b"host", b"test")],
        "client": ("127.0.0.1", 50000),
        "server": ("test", 80),
    }


async def _wait_for_exit(runner: ExportRunner, job_id: uuid.UUID) -> None:
    for _ in range(100):
        if not runner.is_running(job_id):
            return
        await asyncio.sleep(0.01)


class TestStreamDisconnect:
    """Client disconnects on the push stream never leave a loop behind."""

    @pytest.mark.asyncio
    async def test_disconnect_before_body(
        self,
        app: FastAPI,
        client: AsyncClient,
        runner: ExportRunner,
        job_store: SqlExportJobStore,
        insert_products: InsertProducts,
    ) -> None:
        await insert_products(500)
        job = await job_store.create(ExportFilters(), 500)

        async def receive() -> dict[str, Any]:
            return {"type": "http.disconnect"}

        async def send(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                await asyncio.sleep(0.05)

        await app(_stream_scope(job.id), receive, send)
        await _wait_for_exit(runner, job.id)

        assert not runner.is_running(job.id)
        response = await client.get(f"/api/v1/exports/{job.id}/stream")
        assert response.status_code == 200
        assert _parse_sse(response.text)[-1] == ("done", {"rowsExported": 500})

    @pytest.mark.asyncio
    async def test_disconnect_mid_stream_leaves_resumable_job(
        self,
        app: FastAPI,
        client: AsyncClient,
        runner: ExportRunner,
        job_store: SqlExportJobStore,
        insert_products: InsertProducts,
    ) -> None:
        ids = await insert_products(500)
        job = await job_store.create(ExportFilters(), 500)
        body_sent = asyncio.Event()

        async def receive() -> dict[str, Any]:
            await body_sent.wait()
            return {"type": "http.disconnect"}

        async def send(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.body" and message.get("body"):
                body_sent.set()
                await asyncio.sleep(0.01)

        await asyncio.wait_for(app(_stream_scope(job.id), receive, send), timeout=5)
        await _wait_for_exit(runner, job.id)

        assert not runner.is_running(job.id)
        stored = await job_store.get(job.id)
        assert stored.status == ExportJobStatus.PROCESSING
        assert stored.rows_exported < 500

        response = await client.get(f"/api/v1/exports/{job.id}/stream")
        events = _parse_sse(response.text)
        rows = decode_rows("".join(str(p) for n, p in events if n == "data"))
        assert [int(r["id"]) for r in rows] == ids[stored.rows_exported :]
        assert events[-1] == ("done", {"rowsExported": 500})


class TestCancelExport:
    """Tests for POST /api/v1/exports/{job_id}/cancel."""

    @pytest.mark.asyncio
    async def test_cancels_running_job(
        self,
        client: AsyncClient,
        runner: ExportRunner,
        job_store: SqlExportJobStore,
        insert_products: InsertProducts,
    ) -> None:
        await insert_products(30)
        job = await job_store.create(ExportFilters(), 30)
        sink = GatedSink()
        handle = runner.start(job, sink)

        response = await client.post(f"/api/v1/exports/{job.id}/cancel")

        assert response.status_code == 202
        assert response.json() == {"job_id": str(job.id), "cancel_requested": True}
        assert await asyncio.wait_for(handle.wait(), timeout=1) == ExportOutcome.CANCELLED
        stored = await job_store.get(job.id)
        assert stored.status == ExportJobStatus.PROCESSING
        assert stored.rows_exported == 0

    @pytest.mark.asyncio
    async def test_not_running(self, client: AsyncClient, job_store: SqlExportJobStore) -> None:
        job = await job_store.create(ExportFilters(), 0)
        response = await client.post(f"/api/v1/exports/{job.id}/cancel")
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_job(self, client: AsyncClient) -> None:
        response = await client.post(f"/api/v1/exports/{uuid.uuid4()}/cancel")
        assert response.status_code == 404
