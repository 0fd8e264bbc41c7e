"""CSV codec for product rows.

Encodes one row per line with RFC 4180 quoting. Pure functions, no I/O.
"""

import csv
import io
from datetime import UTC, datetime
from typing import Any

CSV_COLUMNS = [
    "id",
    "name",
    "category",
    "price",
    "quantity",
    "status",
    "createdAt",
]


def _format_price(value: object) -> str:
    if isinstance(value, bool) or value is None:
        return ""
    try:
        return f"{float(value):.2f}"  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return ""


def _format_int(value: object) -> str:
    if isinstance(value, bool) or not isinstance(value, int):
        return ""
    return str(value)


def _format_timestamp(value: object) -> str:
    """Render a timestamp as ISO-8601 in UTC with an explicit offset.

    Naive datetimes (as returned by SQLite) are taken to be UTC.
    """
    if not isinstance(value, datetime):
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds")


def _format_text(value: object) -> str:
    return value if isinstance(value, str) else ""


def _write_line(fields: list[str]) -> str:
    # A CRLF terminator makes the writer quote fields holding either CR or LF.
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerow(fields)
    return buffer.getvalue()[:-2] + "\n"


def header() -> str:
    """Return the column header line."""
    return _write_line(CSV_COLUMNS)


def encode_row(row: Any) -> str:
    """Encode a product row as a single newline-terminated CSV line.

    Fields containing a comma, double quote or line break are wrapped in
    double quotes with embedded quotes doubled. Prices use two decimal
    places and ``createdAt`` is an ISO-8601 timestamp with UTC offset.
    Missing or malformed values are written as empty fields.

    Args:
        row: Any object exposing ``id``, ``name``, ``category``, ``price``,
            ``quantity``, ``status`` and ``created_at`` attributes.

    Returns:
        The encoded line.
    """
    return _write_line(
        [
            _format_int(getattr(row, "id", None)),
            _format_text(getattr(row, "name", None)),
            _format_text(getattr(row, "category", None)),
            _format_price(getattr(row, "price", None)),
            _format_int(getattr(row, "quantity", None)),
            _format_text(getattr(row, "status", None)),
            _format_timestamp(getattr(row, "created_at", None)),
        ]
    )


def encode_rows(rows: list[Any]) -> str:
    """Encode a chunk of rows into one block of CSV lines."""
    return "".join(encode_row(row) for row in rows)


def decode_rows(text: str) -> list[dict[str, str]]:
    """Parse CSV text (header first) back into a list of column dicts."""
    reader = csv.DictReader(io.StringIO(text, newline=""))
    return list(reader)
