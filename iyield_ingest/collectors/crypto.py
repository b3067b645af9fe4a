"""
Crypto collectors: Pyth prices, market cap with provider fallback, chain TVL.
"""
import asyncio
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable

import structlog

from iyield_ingest.api.client import FetchClient
from iyield_ingest.collectors.base import (
    PROVIDER_ERRORS,
    dedupe_by_date,
    has_positive,
    iso_date,
    payload_list,
    record_failure,
    record_written,
    to_seconds,
    value_at,
)
from iyield_ingest.config import Settings
from iyield_ingest.exceptions import FetchError
from iyield_ingest.models import (
    CHAIN_TVL,
    MARKET_CAP,
    PRICES_OHLCV,
    CryptoAsset,
    ItemOutcome,
    OutcomeStatus,
    PassSummary,
    SourcesConfig,
)

logger = structlog.get_logger()

PYTH_HISTORY_START = datetime(2018, 1, 1, tzinfo=timezone.utc)
PYTH_WINDOW_SECONDS = 365 * 24 * 60 * 60
PYTH_WINDOW_PAUSE = 0.12

ONE_DAY = 86400
# CoinPaprika rejects some windows with HTTP 402; shrink and try again
COINPAPRIKA_SHRINK_DAYS = (0, 7, 14)

Sleep = Callable[[float], Awaitable[Any]]


# =============================================================================
# PRICES
# =============================================================================

async def pyth_daily(
    client: FetchClient,
    settings: Settings,
    pyth_symbol: str,
    start: int | None = None,
    end: int | None = None,
    pause: Sleep = asyncio.sleep,
) -> list[dict[str, Any]]:
    """Daily OHLCV candles from Pyth benchmarks, fetched in yearly windows."""
    window_start = start if start is not None else int(PYTH_HISTORY_START.timestamp())
    end = end if end is not None else int(time.time())
    rows: list[dict[str, Any]] = []
    seen = False

    while window_start < end:
        window_end = min(window_start + PYTH_WINDOW_SECONDS, end)
        data = await client.fetch_json(
            settings.pyth_base_url,
            params={
                "symbol": pyth_symbol,
                "resolution": "D",
                "from": window_start,
                "to": window_end,
            },
            max_attempts=5,
            base_delay=0.7,
        )
        if isinstance(data, dict) and data.get("s") == "ok" and data.get("t"):
            seen = True
            for i, ts in enumerate(data["t"]):
                rows.append(PRICES_OHLCV.record(
                    date=iso_date(ts),
                    open=value_at(data.get("o"), i),
                    high=value_at(data.get("h"), i),
                    low=value_at(data.get("l"), i),
                    close=value_at(data.get("c"), i),
                    volume=value_at(data.get("v"), i),
                    source="pyth",
                ))
        await pause(PYTH_WINDOW_PAUSE)
        window_start = window_end

    if not seen:
        logger.warning("Pyth no_data", symbol=pyth_symbol)
    return dedupe_by_date(rows)


# =============================================================================
# MARKET CAP
# =============================================================================

def _llama_points(raw: Any, coingecko_id: str) -> list[Any]:
    """Pull the point list out of the shapes the coins chart has returned."""
    if isinstance(raw, list):
        return raw
    if not isinstance(raw, dict):
        return []
    for key in ("points", "prices"):
        if isinstance(raw.get(key), list):
            return raw[key]
    coin = (raw.get("coins") or {}).get(f"coingecko:{coingecko_id}")
    if isinstance(coin, list):
        return coin
    if isinstance(coin, dict) and isinstance(coin.get("prices"), list):
        return coin["prices"]
    return []


def _first_present(point: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if point.get(key) is not None:
            return point[key]
    return None


async def defillama_market_cap(
    client: FetchClient,
    settings: Settings,
    coingecko_id: str,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Last year of market cap from the DeFiLlama coins chart."""
    raw = await client.fetch_json(
        f"{settings.defillama_coins_url}/chart/coingecko:{coingecko_id}",
        max_attempts=5,
        base_delay=0.7,
    )
    cutoff = ((now or datetime.now(timezone.utc)) - timedelta(days=365)).timestamp()
    rows = []
    for point in _llama_points(raw, coingecko_id):
        if isinstance(point, dict):
            ts = _first_present(point, "timestamp", "time", "t")
            mcap = _first_present(point, "mcap", "market_cap", "marketCap")
        elif isinstance(point, (list, tuple)) and point:
            ts = point[0]
            mcap = point[2] if len(point) > 2 else None
        else:
            continue
        if not ts or mcap is None:
            continue
        seconds = to_seconds(ts)
        if seconds < cutoff:
            continue
        rows.append(MARKET_CAP.record(
            date=iso_date(seconds),
            market_cap_usd=mcap,
            source="defillama_coins",
        ))
    return dedupe_by_date(rows)


async def coinpaprika_market_cap(
    client: FetchClient,
    settings: Settings,
    coin_id: str,
    days: int = 360,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """
    Daily market cap from CoinPaprika historical tickers.

    The window is clamped to 300-364 days and shrunk on HTTP 402.

    Raises:
        FetchError: On any other failure, or when every window is rejected
    """
    today = (now or datetime.now(timezone.utc)).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    window_days = min(max(days, 300), 364)
    end = int(today.timestamp())

    for reduce in COINPAPRIKA_SHRINK_DAYS:
        actual_days = window_days - reduce
        start = end - actual_days * ONE_DAY + 60
        try:
            data = await client.fetch_json(
                f"{settings.coinpaprika_api_url}/tickers/{coin_id}/historical",
                params={
                    "start": start,
                    "end": end,
                    "interval": "1d",
                    "quote": "usd",
                },
                max_attempts=5,
                base_delay=0.8,
            )
        except FetchError as e:
            if e.status == 402:
                logger.warning(
                    "CoinPaprika 402, shrinking window",
                    coin_id=coin_id,
                    days=actual_days,
                )
                continue
            raise

        rows = [
            MARKET_CAP.record(
                date=tick["timestamp"][:10],
                market_cap_usd=tick.get("market_cap"),
                source="coinpaprika",
            )
            for tick in payload_list(data, "CoinPaprika")
            if tick.get("timestamp") and tick.get("market_cap") not in (None, "")
        ]
        out = dedupe_by_date(rows)
        if not out:
            logger.warning("CoinPaprika empty window", coin_id=coin_id, days=actual_days)
        return out

    raise FetchError(f"CoinPaprika failed after shrink attempts for {coin_id}", status=402)


async def coingecko_market_cap(
    client: FetchClient,
    settings: Settings,
    coingecko_id: str,
    days: int = 365,
) -> list[dict[str, Any]]:
    """Daily market cap from CoinGecko's market_chart."""
    headers = {"x-cg-demo-api-key": settings.coingecko_api_key} if settings.coingecko_api_key else None
    data = await client.fetch_json(
        f"{settings.coingecko_api_url}/coins/{coingecko_id}/market_chart",
        params={"vs_currency": "usd", "days": days},
        headers=headers,
        max_attempts=5,
        base_delay=0.7,
    )
    caps = (data.get("market_caps") or []) if isinstance(data, dict) else []
    return dedupe_by_date(
        MARKET_CAP.record(date=iso_date(ts), market_cap_usd=cap, source="coingecko")
        for ts, cap in caps
    )


# =============================================================================
# CHAIN TVL
# =============================================================================

async def defillama_chain_tvl_excl(
    client: FetchClient,
    settings: Settings,
    chain: str,
) -> list[dict[str, Any]]:
    """Historical chain TVL (excluding liquid staking) from DeFiLlama v2."""
    data = await client.fetch_json(f"{settings.defillama_api_url}/v2/historicalChainTvl/{chain}")
    return dedupe_by_date(
        CHAIN_TVL.record(
            date=iso_date(point["date"]),
            tvl_usd=point.get("tvl"),
            chain=chain,
            source="defillama_v2",
        )
        for point in payload_list(data, "DeFiLlama v2")
    )


async def defillama_chain_charts(
    client: FetchClient,
    settings: Settings,
    chain: str,
) -> list[dict[str, Any]]:
    """Historical chain TVL from the legacy DeFiLlama charts endpoint."""
    data = await client.fetch_json(f"{settings.defillama_api_url}/charts/{chain}")
    rows = []
    for point in payload_list(data, "DeFiLlama charts"):
        tvl = _first_present(point, "totalLiquidityUSD", "tvl", "totalLiquidityUsd")
        if tvl is None:
            continue
        rows.append(CHAIN_TVL.record(
            date=iso_date(point["date"]),
            tvl_usd=tvl,
            chain=chain,
            source="defillama_charts",
        ))
    return dedupe_by_date(rows)


# =============================================================================
# COLLECTOR
# =============================================================================

async def _collect_market_cap(
    client: FetchClient,
    settings: Settings,
    asset: CryptoAsset,
    directory: Path,
    summary: PassSummary,
) -> None:
    """First provider returning any positive market cap wins."""
    providers: list[tuple[str, Callable[[], Awaitable[list[dict[str, Any]]]]]] = []
    if asset.coingecko_id:
        providers.append(("DeFiLlama coins", lambda: defillama_market_cap(client, settings, asset.coingecko_id)))
    if asset.coinpaprika_id:
        providers.append(("CoinPaprika", lambda: coinpaprika_market_cap(client, settings, asset.coinpaprika_id)))
    if asset.coingecko_id:
        providers.append(("CoinGecko", lambda: coingecko_market_cap(client, settings, asset.coingecko_id)))
    if not providers:
        return

    item = f"{asset.symbol} marketcap"
    errors = []
    for provider, fetch in providers:
        try:
            rows = await fetch()
        except PROVIDER_ERRORS as e:
            logger.warning("Market cap provider failed", symbol=asset.symbol, provider=provider, error=str(e))
            errors.append(f"{provider}: {e}")
            continue
        if rows and has_positive(rows, "market_cap_usd"):
            record_written(summary, f"{item} ({provider})", directory, "marketcap.csv", rows, MARKET_CAP)
            return
        logger.warning("Market cap all zero or empty", symbol=asset.symbol, provider=provider)

    if errors:
        summary.add(ItemOutcome(item, OutcomeStatus.FAILED, detail="; ".join(errors)))
    else:
        summary.add(ItemOutcome(item, OutcomeStatus.SKIPPED, detail="no positive market cap"))


async def collect_crypto(
    client: FetchClient,
    settings: Settings,
    sources: SourcesConfig,
    pause: Sleep = asyncio.sleep,
) -> PassSummary:
    """Write prices, market cap and chain TVL files under ``data/<SYMBOL>/``."""
    summary = PassSummary("crypto")

    for asset in sources.crypto:
        directory = Path(settings.data_dir) / asset.symbol.upper()

        if asset.pyth_symbol:
            item = f"{asset.symbol} prices"
            try:
                rows = await pyth_daily(client, settings, asset.pyth_symbol, pause=pause)
                record_written(summary, item, directory, "prices.csv", rows, PRICES_OHLCV)
            except PROVIDER_ERRORS as e:
                record_failure(summary, item, e)

        await _collect_market_cap(client, settings, asset, directory, summary)

        if asset.defillama_chain:
            chain = asset.defillama_chain
            for filename, fetch in (
                ("chain_tvl_excl.csv", defillama_chain_tvl_excl),
                ("chain_tvl.csv", defillama_chain_charts),
            ):
                item = f"{asset.symbol} {filename}"
                try:
                    rows = await fetch(client, settings, chain)
                    record_written(summary, item, directory, filename, rows, CHAIN_TVL)
                except PROVIDER_ERRORS as e:
                    record_failure(summary, item, e)

    return summary
