"""
Forex collector: daily OHLC from Stooq's CSV download.
"""
from pathlib import Path
from typing import Any

from iyield_ingest.api.client import FetchClient
from iyield_ingest.codec import parse
from iyield_ingest.collectors.base import (
    PROVIDER_ERRORS,
    dedupe_by_date,
    record_failure,
    record_written,
    value_at,
)
from iyield_ingest.config import Settings
from iyield_ingest.models import PRICES_OHLCV, PassSummary, SourcesConfig


async def stooq_fx_daily(
    client: FetchClient,
    settings: Settings,
    pair: str,
) -> list[dict[str, Any]]:
    """Daily candles for a Stooq pair such as ``eurusd``, sorted by date."""
    text = await client.fetch_text(
        settings.stooq_base_url,
        params={"s": pair.lower(), "i": "d"},
        headers={"Accept": "text/csv"},
    )
    rows = parse(text.strip())
    if len(rows) <= 1:
        return []
    return dedupe_by_date(
        PRICES_OHLCV.record(
            date=row[0],
            open=value_at(row, 1),
            high=value_at(row, 2),
            low=value_at(row, 3),
            close=value_at(row, 4),
            volume=value_at(row, 5),
            source="stooq_fx",
        )
        for row in rows[1:]
        if row and row[0]
    )


async def collect_forex(
    client: FetchClient,
    settings: Settings,
    sources: SourcesConfig,
) -> PassSummary:
    """Write ``data/FX_<SYMBOL>/prices.csv`` for every configured pair."""
    summary = PassSummary("forex")
    for pair in sources.forex:
        item = f"FX {pair.symbol} ({pair.stooq_pair})"
        directory = Path(settings.data_dir) / f"FX_{pair.symbol.upper()}"
        try:
            rows = await stooq_fx_daily(client, settings, pair.stooq_pair)
            record_written(summary, item, directory, "prices.csv", rows, PRICES_OHLCV)
        except PROVIDER_ERRORS as e:
            record_failure(summary, item, e)
    return summary
