"""
Configuration settings for ingestion and sheet synchronization.
Uses Pydantic Settings for type-safe environment variable loading.
"""
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from iyield_ingest.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # GOOGLE SHEETS TARGET
    # ==========================================================================
    google_sheet_id: str = Field(default="", description="Target spreadsheet id")
    google_application_credentials: str = Field(
        default="",
        description="Path to the service account JSON key file",
    )
    sync_roots: str = Field(
        default="data,macro",
        description="Comma-separated list of directories scanned for CSV files",
    )

    # ==========================================================================
    # SHEETS QUOTAS
    # ==========================================================================
    sheets_max_cells: int = Field(default=40000, ge=1, description="Max cells per values.update call")
    sheets_throttle_ms: int = Field(default=1200, ge=0, description="Pause after every successful Sheets call")
    sheets_grid_row_buffer: int = Field(default=200, ge=0, description="Extra rows added when growing a tab")
    sheets_grid_col_buffer: int = Field(default=5, ge=0, description="Extra columns added when growing a tab")
    sheets_max_retries: int = Field(default=6, ge=1, le=20)
    sheets_base_delay_ms: int = Field(default=700, ge=0)
    sheets_jitter_ms: int = Field(default=400, ge=0)
    sheets_min_retry_after_ms: int = Field(default=1000, ge=0)

    # Generated tabs carry this prefix and are recreated on every pass
    sheet_prefix: str = Field(default="DATA_", min_length=1)
    sheet_name_max_length: int = Field(default=90, ge=1, le=100)

    # ==========================================================================
    # PROVIDER HTTP
    # ==========================================================================
    api_timeout_seconds: int = Field(default=30, ge=1, le=300)
    user_agent: str = Field(default="iyield-research/1.0")
    fetch_max_attempts: int = Field(default=5, ge=1, le=20)
    fetch_base_delay_ms: int = Field(default=600, ge=0)
    fetch_jitter_ms: int = Field(default=400, ge=0)

    coingecko_api_key: str = Field(default="", description="CoinGecko demo API key")
    fred_api_key: str = Field(default="", description="FRED API key")

    pyth_base_url: str = Field(default="https://benchmarks.pyth.network/v1/shims/tradingview/history")
    defillama_coins_url: str = Field(default="https://coins.llama.fi")
    defillama_api_url: str = Field(default="https://api.llama.fi")
    coinpaprika_api_url: str = Field(default="https://api.coinpaprika.com/v1")
    coingecko_api_url: str = Field(default="https://api.coingecko.com/api/v3")
    stooq_base_url: str = Field(default="https://stooq.pl/q/d/l/")
    fred_api_url: str = Field(default="https://api.stlouisfed.org/fred/series/observations")

    # ==========================================================================
    # LOCAL PATHS
    # ==========================================================================
    sources_config_path: str = Field(default="config.json", description="JSON file listing assets and series")
    data_dir: str = Field(default="data")
    macro_dir: str = Field(default="macro")

    # ==========================================================================
    # LOGGING
    # ==========================================================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="console")

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _jitter_within_base_delay(self) -> "Settings":
        for prefix in ("sheets", "fetch"):
            base = getattr(self, f"{prefix}_base_delay_ms")
            jitter = getattr(self, f"{prefix}_jitter_ms")
            if jitter > base:
                raise ValueError(
                    f"{prefix.upper()}_JITTER_MS ({jitter}) must not exceed "
                    f"{prefix.upper()}_BASE_DELAY_MS ({base})"
                )
        return self

    # ==========================================================================
    # DERIVED PROPERTIES
    # ==========================================================================

    @property
    def sync_root_list(self) -> list[str]:
        """Configured sync roots, blanks removed."""
        return [part.strip() for part in self.sync_roots.split(",") if part.strip()]

    def require_sheet_credentials(self) -> None:
        """
        Validate the settings the sync pass cannot run without.

        Raises:
            ConfigurationError: If the sheet id or credentials file is missing
        """
        if not self.google_sheet_id:
            raise ConfigurationError("Missing GOOGLE_SHEET_ID in environment")
        credentials = self.google_application_credentials
        if not credentials or not Path(credentials).expanduser().is_file():
            raise ConfigurationError(
                "Missing/invalid GOOGLE_APPLICATION_CREDENTIALS path in environment"
            )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
