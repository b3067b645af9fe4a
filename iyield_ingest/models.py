"""
Pydantic models and typed records for ingestion and synchronization.
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from iyield_ingest.exceptions import ConfigurationError


# =============================================================================
# TABLE SCHEMAS
# =============================================================================

@dataclass(frozen=True)
class TableSchema:
    """Ordered, validated column list for one kind of output file."""

    name: str
    columns: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.columns:
            raise ValueError(f"Schema {self.name!r} has no columns")
        if any(not column for column in self.columns):
            raise ValueError(f"Schema {self.name!r} has an empty column name")
        if len(set(self.columns)) != len(self.columns):
            raise ValueError(f"Schema {self.name!r} has duplicate columns")

    def record(self, **values: Any) -> dict[str, Any]:
        """Build a record restricted to this schema's columns."""
        unknown = set(values) - set(self.columns)
        if unknown:
            raise ValueError(f"Unknown columns for {self.name}: {sorted(unknown)}")
        return {column: values.get(column) for column in self.columns}


PRICES_OHLCV = TableSchema(
    "prices_ohlcv", ("date", "open", "high", "low", "close", "volume", "source")
)
MARKET_CAP = TableSchema("market_cap", ("date", "market_cap_usd", "source"))
CHAIN_TVL = TableSchema("chain_tvl", ("date", "tvl_usd", "chain", "source"))
FRED_SERIES = TableSchema("fred_series", ("date", "value", "series", "source"))


# =============================================================================
# SOURCES FILE
# =============================================================================

class SourceEntry(BaseModel):
    """Base model for entries of the sources file."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class CryptoAsset(SourceEntry):
    symbol: str
    pyth_symbol: Optional[str] = Field(default=None, alias="pythSymbol")
    coingecko_id: Optional[str] = Field(default=None, alias="coingeckoId")
    coinpaprika_id: Optional[str] = Field(default=None, alias="coinpaprikaId")
    defillama_chain: Optional[str] = Field(default=None, alias="defillamaChain")


class ForexPair(SourceEntry):
    symbol: str
    stooq_pair: str = Field(alias="stooqPair")


class RateSeries(SourceEntry):
    symbol: str
    fred_id: str = Field(alias="fredId")


class MacroSeries(SourceEntry):
    id: str
    name: Optional[str] = None


class MacroConfig(SourceEntry):
    series: list[MacroSeries] = Field(default_factory=list)


class SourcesConfig(SourceEntry):
    """Assets and series to collect, as listed in the sources file."""

    crypto: list[CryptoAsset] = Field(default_factory=list)
    forex: list[ForexPair] = Field(default_factory=list)
    rates: list[RateSeries] = Field(default_factory=list)
    macro: MacroConfig = Field(default_factory=MacroConfig)

    @field_validator("crypto", "forex", "rates", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


def load_sources_config(path: str | Path) -> SourcesConfig:
    """
    Load and validate the sources file.

    Raises:
        ConfigurationError: If the file is missing, not JSON, or invalid
    """
    config_path = Path(path)
    if not config_path.is_file():
        raise ConfigurationError(f"Config not found: {config_path.resolve()}")
    try:
        payload = json.loads(config_path.read_text(encoding="utf-8"))
        return SourcesConfig.model_validate(payload)
    except (json.JSONDecodeError, ValidationError) as e:
        raise ConfigurationError(f"Invalid config {config_path}: {e}") from e


# =============================================================================
# OUTCOMES
# =============================================================================

class OutcomeStatus(str, Enum):
    """Result of processing one item (a file, a series, an asset)."""
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ItemOutcome:
    item: str
    status: OutcomeStatus
    detail: str = ""
    rows: int = 0
    target: Optional[str] = None


@dataclass
class PassSummary:
    """Aggregated per-item outcomes of one sync pass or collection run."""

    name: str
    outcomes: list[ItemOutcome] = field(default_factory=list)

    def add(self, outcome: ItemOutcome) -> ItemOutcome:
        self.outcomes.append(outcome)
        return outcome

    def _with_status(self, status: OutcomeStatus) -> list[ItemOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def succeeded(self) -> list[ItemOutcome]:
        return self._with_status(OutcomeStatus.SUCCESS)

    @property
    def skipped(self) -> list[ItemOutcome]:
        return self._with_status(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> list[ItemOutcome]:
        return self._with_status(OutcomeStatus.FAILED)

    def counts(self) -> dict[str, int]:
        return {
            "success": len(self.succeeded),
            "skipped": len(self.skipped),
            "failed": len(self.failed),
        }
