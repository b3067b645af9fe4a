"""
CSV codec used for both collector output and sheet synchronization.

``serialize`` and ``parse`` are exact inverses for any field values that are
representable as text, including values that contain the delimiter, the
quote character or line breaks.
"""
import math
from collections.abc import Mapping, Sequence
from typing import Any

from iyield_ingest.exceptions import MalformedTableError

FIELD_DELIMITER = ","
ROW_DELIMITER = "\n"
QUOTE = '"'

_NEEDS_QUOTING = (FIELD_DELIMITER, ROW_DELIMITER, "\r", QUOTE)


def resolve_columns(records: Sequence[Mapping[str, Any]]) -> list[str]:
    """Union of all record keys, sorted, with ``date`` forced first."""
    keys: set[str] = set()
    for record in records:
        keys.update(record.keys())
    ordered = sorted(keys - {"date"})
    return ["date", *ordered] if "date" in keys else ordered


def format_value(value: Any) -> str:
    """Render a scalar the way it should appear in a cell."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    return str(value)


def escape_field(value: Any) -> str:
    text = format_value(value)
    if any(ch in text for ch in _NEEDS_QUOTING):
        return QUOTE + text.replace(QUOTE, QUOTE * 2) + QUOTE
    return text


def serialize(
    records: Sequence[Mapping[str, Any]],
    headers: Sequence[str] | None = None,
) -> str:
    """
    Serialize records to CSV text.

    Args:
        records: Mappings of column name to scalar value
        headers: Explicit column order; defaults to :func:`resolve_columns`

    Returns:
        Header row plus one row per record, ``\\n``-joined, with no trailing
        newline. An empty record sequence yields ``""``.
    """
    if not records:
        return ""
    columns = list(headers) if headers else resolve_columns(records)
    lines = [FIELD_DELIMITER.join(escape_field(column) for column in columns)]
    for record in records:
        lines.append(
            FIELD_DELIMITER.join(escape_field(record.get(column)) for column in columns)
        )
    return ROW_DELIMITER.join(lines)


def parse(text: str) -> list[list[str]]:
    """
    Parse CSV text into rows of raw string fields.

    Quoted fields may contain delimiters, newlines and doubled quotes.
    Carriage returns outside quotes are dropped. Empty input, or input that
    amounts to one empty field, yields no rows.
    """
    rows: list[list[str]] = []
    row: list[str] = []
    field: list[str] = []
    in_quotes = False
    i = 0
    length = len(text)

    while i < length:
        ch = text[i]
        if in_quotes:
            if ch == QUOTE:
                if i + 1 < length and text[i + 1] == QUOTE:
                    field.append(QUOTE)
                    i += 2
                    continue
                in_quotes = False
            else:
                field.append(ch)
        elif ch == QUOTE:
            in_quotes = True
        elif ch == FIELD_DELIMITER:
            row.append("".join(field))
            field = []
        elif ch == ROW_DELIMITER:
            row.append("".join(field))
            rows.append(row)
            row = []
            field = []
        elif ch != "\r":
            field.append(ch)
        i += 1

    row.append("".join(field))
    if len(row) > 1 or row[0] != "":
        rows.append(row)
    return rows


def normalize_rows(rows: list[list[str]]) -> list[list[str]]:
    """
    Make every row exactly as wide as the header row.

    Short rows are padded with empty fields.

    Raises:
        MalformedTableError: If the header is empty or a row is wider than it
    """
    if not rows:
        return rows
    header = rows[0]
    if not any(header):
        raise MalformedTableError("Header row is empty")
    width = len(header)
    normalized = [header]
    for number, row in enumerate(rows[1:], start=2):
        if len(row) > width:
            raise MalformedTableError(
                f"Row {number} has {len(row)} fields, header has {width}"
            )
        normalized.append(row + [""] * (width - len(row)))
    return normalized
