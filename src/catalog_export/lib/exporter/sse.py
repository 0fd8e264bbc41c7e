"""Server-Sent Events framing for export events."""

import json
from dataclasses import dataclass
from typing import Any

DATA_EVENT = "data"
PROGRESS_EVENT = "progress"
DONE_EVENT = "done"
ERROR_EVENT = "error"

TERMINAL_EVENTS = frozenset({DONE_EVENT, ERROR_EVENT})


@dataclass(frozen=True)
class ExportEvent:
    """One event pushed from the export engine to a stream consumer."""

    name: str
    payload: Any

    @property
    def is_terminal(self) -> bool:
        return self.name in TERMINAL_EVENTS

    def to_sse(self) -> str:
        """Frame the event for a ``text/event-stream`` response.

        CSV chunks go out as unnamed messages so a browser ``EventSource``
        receives them through ``onmessage``; everything else is a named event.
        """
        data = json.dumps(self.payload)
        if self.name == DATA_EVENT:
            return f"data: {data}\n\n"
        return f"event: {self.name}\ndata: {data}\n\n"


def data_event(text: str) -> ExportEvent:
    return ExportEvent(DATA_EVENT, text)


def progress_event(rows_exported: int, total_rows: int) -> ExportEvent:
    return ExportEvent(PROGRESS_EVENT, {"rowsExported": rows_exported, "totalRows": total_rows})


def done_event(rows_exported: int) -> ExportEvent:
    return ExportEvent(DONE_EVENT, {"rowsExported": rows_exported})


def error_event(message: str, rows_exported: int | None = None, total_rows: int | None = None) -> ExportEvent:
    payload: dict[str, Any] = {"message": message}
    if rows_exported is not None:
        payload["rowsExported"] = rows_exported
    if total_rows is not None:
        payload["totalRows"] = total_rows
    return ExportEvent(ERROR_EVENT, payload)
