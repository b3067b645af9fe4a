"""
FRED collectors: interest rates and macro series.
"""
from pathlib import Path
from typing import Any

import structlog

from iyield_ingest.api.client import FetchClient
from iyield_ingest.collectors.base import (
    PROVIDER_ERRORS,
    dedupe_by_date,
    payload_list,
    record_failure,
    record_written,
)
from iyield_ingest.config import Settings
from iyield_ingest.exceptions import FetchError
from iyield_ingest.models import FRED_SERIES, ItemOutcome, OutcomeStatus, PassSummary, SourcesConfig

logger = structlog.get_logger()


async def fred_series(
    client: FetchClient,
    settings: Settings,
    series_id: str,
) -> list[dict[str, Any]]:
    """All observations of a FRED series, sorted by date."""
    data = await client.fetch_json(
        settings.fred_api_url,
        params={
            "series_id": series_id,
            "api_key": settings.fred_api_key,
            "file_type": "json",
        },
    )
    if not isinstance(data, dict):
        raise FetchError(f"Unexpected FRED payload for {series_id}: {type(data).__name__}")
    observations = payload_list(data.get("observations"), "FRED")
    return dedupe_by_date(
        FRED_SERIES.record(
            date=obs["date"],
            value=obs.get("value"),
            source="fred",
            series=series_id,
        )
        for obs in observations
        if obs.get("date")
    )


def _fred_disabled(summary: PassSummary) -> PassSummary:
    logger.warning("FRED disabled: FRED_API_KEY missing")
    summary.add(ItemOutcome("fred", OutcomeStatus.SKIPPED, detail="FRED_API_KEY missing"))
    return summary


async def collect_rates(
    client: FetchClient,
    settings: Settings,
    sources: SourcesConfig,
) -> PassSummary:
    """Write ``data/RATE_<SYMBOL>/prices.csv`` for every configured rate."""
    summary = PassSummary("rates")
    if not settings.fred_api_key:
        return _fred_disabled(summary)

    for rate in sources.rates:
        item = f"RATE {rate.symbol} ({rate.fred_id})"
        directory = Path(settings.data_dir) / f"RATE_{rate.symbol.upper()}"
        try:
            rows = await fred_series(client, settings, rate.fred_id)
            record_written(summary, item, directory, "prices.csv", rows, FRED_SERIES)
        except PROVIDER_ERRORS as e:
            record_failure(summary, item, e)
    return summary


async def collect_macro(
    client: FetchClient,
    settings: Settings,
    sources: SourcesConfig,
) -> PassSummary:
    """Write ``macro/fred_<ID>.csv`` for every configured macro series."""
    summary = PassSummary("macro")
    if not settings.fred_api_key:
        return _fred_disabled(summary)

    for series in sources.macro.series:
        item = f"macro {series.id}"
        try:
            rows = await fred_series(client, settings, series.id)
            record_written(
                summary, item, settings.macro_dir, f"fred_{series.id}.csv", rows, FRED_SERIES
            )
        except PROVIDER_ERRORS as e:
            record_failure(summary, item, e)
    return summary
