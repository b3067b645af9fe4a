"""
Helpers shared by the provider collectors.
"""
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from iyield_ingest.exceptions import FetchError
from iyield_ingest.models import ItemOutcome, OutcomeStatus, PassSummary, TableSchema
from iyield_ingest.utils.files import write_csv

logger = structlog.get_logger()

# Failures that end one item of a collection run without aborting the run;
# the lookup/type errors come from provider payloads of an unexpected shape
PROVIDER_ERRORS = (FetchError, AttributeError, KeyError, OverflowError, TypeError, ValueError)

# Timestamps below this are taken as seconds, above as milliseconds
_MILLIS_THRESHOLD = 100_000_000_000


def to_seconds(timestamp: float | int | str) -> float:
    """Unix timestamp in seconds from a value in seconds or milliseconds."""
    value = float(timestamp)
    return value / 1000 if value >= _MILLIS_THRESHOLD else value


def iso_date(timestamp: float | int | str) -> str:
    """UTC calendar date (YYYY-MM-DD) for a Unix timestamp in s or ms."""
    return datetime.fromtimestamp(to_seconds(timestamp), tz=timezone.utc).date().isoformat()


def payload_list(data: Any, source: str) -> list[dict[str, Any]]:
    """
    The objects of a list payload; ``None`` counts as empty.

    Raises:
        FetchError: If the provider answered with something other than a list
    """
    if data is None:
        return []
    if not isinstance(data, list):
        raise FetchError(
            f"Unexpected {source} payload: expected a list, got {type(data).__name__}"
        )
    return [item for item in data if isinstance(item, dict)]


def value_at(values: Sequence[Any] | None, index: int) -> Any:
    """``values[index]`` or ``""`` when missing."""
    if not values or index >= len(values) or values[index] is None:
        return ""
    return values[index]


def dedupe_by_date(records: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Keep the last record per date, sorted by date."""
    by_date: dict[str, dict[str, Any]] = {}
    for record in records:
        by_date[record["date"]] = dict(record)
    return [by_date[date] for date in sorted(by_date)]


def has_positive(records: Iterable[Mapping[str, Any]], column: str) -> bool:
    """True if any record holds a numeric value > 0 in ``column``."""
    for record in records:
        try:
            if float(record.get(column) or 0) > 0:
                return True
        except (TypeError, ValueError):
            continue
    return False


def record_written(
    summary: PassSummary,
    item: str,
    directory: str | Path,
    filename: str,
    records: Sequence[Mapping[str, Any]],
    schema: TableSchema,
) -> ItemOutcome:
    """Write ``records`` as CSV when there are any and record the outcome."""
    if not records:
        logger.warning("No data", item=item)
        return summary.add(ItemOutcome(item, OutcomeStatus.SKIPPED, detail="no data"))
    target = write_csv(directory, filename, records, schema.columns)
    logger.info("Wrote series", item=item, file=str(target), rows=len(records))
    return summary.add(
        ItemOutcome(item, OutcomeStatus.SUCCESS, rows=len(records), target=str(target))
    )


def record_failure(summary: PassSummary, item: str, error: BaseException) -> ItemOutcome:
    logger.warning("Collector failed", item=item, error=str(error))
    return summary.add(ItemOutcome(item, OutcomeStatus.FAILED, detail=str(error)))
