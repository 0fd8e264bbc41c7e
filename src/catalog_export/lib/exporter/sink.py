"""Progress sinks, where the export engine pushes its output.

The engine only depends on the ``ProgressSink`` protocol. Three
implementations ship with the library:

- ``StreamSink``: bounded in-memory queue feeding a push stream (SSE).
- ``FileSink``: writes the CSV to a file, logs progress.
- ``MemorySink``: records every event, for tests and small exports.

A sink whose consumer has gone away raises ``SinkUnavailableError`` from its
next emit so the engine stops instead of exporting into the void.
"""

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path
from types import TracebackType
from typing import IO, Protocol

from loguru import logger

from catalog_export.lib.exporter.errors import SinkUnavailableError
from catalog_export.lib.exporter.sse import (
    DATA_EVENT,
    PROGRESS_EVENT,
    ExportEvent,
    data_event,
    done_event,
    error_event,
    progress_event,
)


class ProgressSink(Protocol):
    """Consumer of export output: CSV text, progress ticks and terminal events."""

    async def emit_data(self, text: str) -> None:
        """Deliver a block of CSV text (the header or one encoded chunk)."""
        ...

    async def emit_progress(self, rows_exported: int, total_rows: int) -> None:
        """Report progress after a chunk has been persisted."""
        ...

    async def emit_done(self, rows_exported: int) -> None:
        """Report that the export reached the end of the dataset."""
        ...

    async def emit_failed(self, rows_exported: int, total_rows: int) -> None:
        """Report that the export stopped on an unrecoverable error."""
        ...


class MemorySink:
    """Sink that keeps every event in order."""

    def __init__(self) -> None:
        self.events: list[ExportEvent] = []

    async def emit_data(self, text: str) -> None:
        self.events.append(data_event(text))

    async def emit_progress(self, rows_exported: int, total_rows: int) -> None:
        self.events.append(progress_event(rows_exported, total_rows))

    async def emit_done(self, rows_exported: int) -> None:
        self.events.append(done_event(rows_exported))

    async def emit_failed(self, rows_exported: int, total_rows: int) -> None:
        self.events.append(error_event("Export failed", rows_exported, total_rows))

    @property
    def text(self) -> str:
        """All CSV text received, concatenated."""
        return "".join(e.payload for e in self.events if e.name == DATA_EVENT)

    @property
    def data_chunks(self) -> list[str]:
        return [e.payload for e in self.events if e.name == DATA_EVENT]

    @property
    def progress(self) -> list[tuple[int, int]]:
        return [(e.payload["rowsExported"], e.payload["totalRows"]) for e in self.events if e.name == PROGRESS_EVENT]

    @property
    def terminal(self) -> ExportEvent | None:
        """The done/error event, if one was emitted."""
        return next((e for e in self.events if e.is_terminal), None)


class FileSink:
    """Sink that writes CSV output to a file.

    Each run opens the file fresh; a resumed export writes only the rows
    after the resume point, prefixed by a new header.

    Args:
        path: Destination file path. Parent directories are created.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.rows_exported = 0
        self.total_rows: int | None = None
        self.completed: bool | None = None
        self._fh: IO[str] | None = None

    def open(self) -> "FileSink":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = self.path.open("w", newline="", encoding="utf-8")
        return self

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def __enter__(self) -> "FileSink":
        return self.open()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    async def emit_data(self, text: str) -> None:
        if self._fh is None:
            msg = f"File sink for {self.path} is not open"
            raise SinkUnavailableError(msg)
        try:
            self._fh.write(text)
            self._fh.flush()
        except OSError as exc:
            msg = f"Cannot write export file {self.path}: {exc}"
            raise SinkUnavailableError(msg) from exc

    async def emit_progress(self, rows_exported: int, total_rows: int) -> None:
        self.rows_exported = rows_exported
        self.total_rows = total_rows
        logger.info(f"Export progress: {rows_exported}/{total_rows} rows -> {self.path}")

    async def emit_done(self, rows_exported: int) -> None:
        self.rows_exported = rows_exported
        self.completed = True
        logger.info(f"Export finished: {rows_exported} rows written to {self.path}")

    async def emit_failed(self, rows_exported: int, total_rows: int) -> None:
        self.rows_exported = rows_exported
        self.total_rows = total_rows
        self.completed = False
        logger.warning(f"Export failed after {rows_exported}/{total_rows} rows; partial output in {self.path}")


class StreamSink:
    """Bounded queue between the export loop and a push-stream consumer.

    The engine blocks on a full queue, so a slow client throttles the export.
    Once ``close()`` is called every emit raises ``SinkUnavailableError``,
    including one that was waiting for queue space at the time.

    Args:
        max_queue_size: Maximum number of undelivered events.
    """

    def __init__(self, max_queue_size: int = 16) -> None:
        self._queue: asyncio.Queue[ExportEvent] = asyncio.Queue(maxsize=max_queue_size)
        self._closed = False
        self._finished = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Mark the consumer as gone and drop undelivered events."""
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()

    def finish(self) -> None:
        """Signal that no more events will be produced (loop ended without a terminal event)."""
        self._finished.set()

    async def _push(self, event: ExportEvent) -> None:
        if self._closed:
            msg = "Stream consumer disconnected"
            raise SinkUnavailableError(msg)
        await self._queue.put(event)
        if self._closed:
            msg = "Stream consumer disconnected"
            raise SinkUnavailableError(msg)

    async def emit_data(self, text: str) -> None:
        await self._push(data_event(text))

    async def emit_progress(self, rows_exported: int, total_rows: int) -> None:
        await self._push(progress_event(rows_exported, total_rows))

    async def emit_done(self, rows_exported: int) -> None:
        await self._push(done_event(rows_exported))

    async def emit_failed(self, rows_exported: int, total_rows: int) -> None:
        await self._push(error_event("Export failed", rows_exported, total_rows))

    async def events(self) -> AsyncIterator[ExportEvent]:
        """Yield events in order until a terminal event or ``finish()``.

        Closing the iterator early (client disconnect) closes the sink.
        """
        try:
            while not self._closed:
                if self._finished.is_set() and self._queue.empty():
                    return
                getter = asyncio.ensure_future(self._queue.get())
                finisher = asyncio.ensure_future(self._finished.wait())
                try:
                    done, _ = await asyncio.wait({getter, finisher}, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    finisher.cancel()
                    if not getter.done():
                        getter.cancel()
                if getter not in done:
                    continue
                event = getter.result()
                yield event
                if event.is_terminal:
                    return
        finally:
            self.close()
