"""Exporter library: resumable, chunked CSV export of products.

Provides the CSV codec, the export engine and its collaborator protocols,
progress sinks, SSE framing and the job state machine.
"""

from catalog_export.lib.exporter.csv_codec import CSV_COLUMNS, decode_rows, encode_row, encode_rows, header
from catalog_export.lib.exporter.engine import (
    CHUNK_SIZE,
    ExecutionHandle,
    ExportEngine,
    JobStore,
    ProductSource,
)
from catalog_export.lib.exporter.errors import (
    ConflictError,
    DataSourceUnavailableError,
    ExportError,
    ExportJobNotFoundError,
    InvalidTransitionError,
    JobAlreadyRunningError,
    SinkUnavailableError,
    StoreUnavailableError,
)
from catalog_export.lib.exporter.sink import FileSink, MemorySink, ProgressSink, StreamSink
from catalog_export.lib.exporter.types import (
    ExportFilters,
    ExportJobRecord,
    ExportJobStatus,
    ExportOutcome,
    ProductRow,
)

__all__ = [
    "CHUNK_SIZE",
    "CSV_COLUMNS",
    "ConflictError",
    "DataSourceUnavailableError",
    "ExecutionHandle",
    "ExportEngine",
    "ExportError",
    "ExportFilters",
    "ExportJobNotFoundError",
    "ExportJobRecord",
    "ExportJobStatus",
    "ExportOutcome",
    "FileSink",
    "InvalidTransitionError",
    "JobAlreadyRunningError",
    "JobStore",
    "MemorySink",
    "ProductRow",
    "ProductSource",
    "ProgressSink",
    "SinkUnavailableError",
    "StoreUnavailableError",
    "StreamSink",
    "decode_rows",
    "encode_row",
    "encode_rows",
    "header",
]
