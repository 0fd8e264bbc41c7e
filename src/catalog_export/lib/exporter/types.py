"""Exporter value types.

Immutable snapshots passed between the job store, the data source and the
export engine.
"""

import enum
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any


class ExportJobStatus(enum.StrEnum):
    """Lifecycle status of an export job."""

    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class ExportOutcome(enum.StrEnum):
    """How a single run of the export loop ended."""

    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class ExportFilters:
    """Snapshot of the product predicate captured when a job is created.

    Empty strings mean the criterion is not applied.
    """

    category: str = ""
    status: str = ""
    search: str = ""

    def to_dict(self) -> dict[str, str]:
        """Serialize to a plain dict for JSON storage."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ExportFilters":
        """Build filters from a stored dict, treating missing/None keys as unset."""
        data = data or {}
        return cls(
            category=data.get("category") or "",
            status=data.get("status") or "",
            search=data.get("search") or "",
        )


@dataclass(frozen=True)
class ExportJobRecord:
    """Read-only view of a persisted export job."""

    id: uuid.UUID
    filters: ExportFilters
    status: ExportJobStatus
    cursor: int
    rows_exported: int
    total_rows: int
    created_at: datetime
    updated_at: datetime

    @property
    def is_resume(self) -> bool:
        """True when a previous run already advanced the cursor."""
        return self.cursor > 0


@dataclass(frozen=True)
class ProductRow:
    """One exportable product row. ``id`` is the ordering key."""

    id: int
    name: str
    category: str
    price: float
    quantity: int
    status: str
    created_at: datetime
