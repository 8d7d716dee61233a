"""Configuration models for the ledger-sync application.

Loads and validates configuration from YAML files using pydantic.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from ledger_sync.domain.errors import ConfigurationError
from ledger_sync.domain.types import LotMatching

DEFAULT_SYMBOLS = [
    f"{base}{quote}"
    for base in (
        "BTC", "ETH", "BNB", "ADA", "SOL", "XRP", "DOGE", "MATIC",
        "DOT", "AVAX", "LINK", "UNI", "ATOM", "ETC", "LTC", "BCH",
    )
    for quote in ("BRL", "USDT")
]


class ExchangeSettings(BaseModel):
    """Exchange connection and query-window configuration."""

    name: str = "binance"
    spot_base_url: str = "https://api.binance.com"
    futures_base_url: str = "https://fapi.binance.com"

    # Optional relay; used only when the caller supplies a bearer credential
    relay_url: str | None = None

    recv_window_ms: int = Field(default=5000, gt=0, le=60000)
    trade_window_hours: int = Field(default=24, gt=0)
    transfer_window_days: int = Field(default=90, gt=0)
    page_limit: int = Field(default=1000, gt=0, le=1000)
    request_timeout_seconds: float = 30.0
    read_rate_per_second: float = Field(default=10.0, gt=0)


class BatchingSettings(BaseModel):
    """Concurrency and batch-size policy."""

    symbol_batch_size: int = Field(default=5, gt=0)
    batch_delay_seconds: float = Field(default=0.2, ge=0)
    csv_batch_size: int = Field(default=500, gt=0)


class PnLSettings(BaseModel):
    """PnL engine configuration."""

    lot_matching: LotMatching = LotMatching.FIFO


class JobSettings(BaseModel):
    """Job housekeeping configuration."""

    retention_minutes: int = 60
    stuck_after_minutes: int = 30
    purge_interval_seconds: int = 300


class VaultSettings(BaseModel):
    """Credential vault configuration.

    The master key is read from the environment variable named by
    master_key_env unless master_key is set directly.
    """

    master_key_env: str = "LEDGER_SYNC_MASTER_KEY"
    master_key: str | None = None

    def resolve_master_key(self) -> str:
        """Return the master key.

        Raises:
            ConfigurationError: If no key is configured
        """
        key = self.master_key or os.environ.get(self.master_key_env)
        if not key:
            raise ConfigurationError(
                f"Vault master key not set (env {self.master_key_env})",
                field="vault.master_key",
            )
        return key


class SyncConfig(BaseModel):
    """Root configuration for the ledger-sync application."""

    exchange: ExchangeSettings = Field(default_factory=ExchangeSettings)
    batching: BatchingSettings = Field(default_factory=BatchingSettings)
    pnl: PnLSettings = Field(default_factory=PnLSettings)
    jobs: JobSettings = Field(default_factory=JobSettings)
    vault: VaultSettings = Field(default_factory=VaultSettings)

    database_url: str = "sqlite:///ledger_sync.db"
    default_symbols: list[str] = Field(default_factory=lambda: list(DEFAULT_SYMBOLS))

    # API server
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Logging
    log_level: str = "INFO"
    log_file: str | None = None

    @field_validator("default_symbols")
    @classmethod
    def normalize_symbols(cls, v: list[str]) -> list[str]:
        """Uppercase symbols and drop blanks."""
        return [s.strip().upper() for s in v if s.strip()]

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    @classmethod
    def from_yaml(cls, path: str | Path) -> SyncConfig:
        """Load configuration from a YAML file.

        Args:
            path: Path to the YAML configuration file

        Returns:
            Validated SyncConfig

        Raises:
            FileNotFoundError: If the config file doesn't exist
            ConfigurationError: If the file is not a YAML mapping
            ValidationError: If the config is invalid
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f)

        if data is not None and not isinstance(data, dict):
            raise ConfigurationError(f"Config root must be a mapping: {path}")

        return cls.model_validate(data or {})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        """Load configuration from a dictionary.

        Args:
            data: Configuration dictionary

        Returns:
            Validated SyncConfig
        """
        return cls.model_validate(data)


def load_config(path: str | Path | None = None) -> SyncConfig:
    """Load ledger-sync configuration.

    Looks for config in the following order:
    1. Provided path argument
    2. ./config/ledger_sync.yaml
    3. ./ledger_sync.yaml
    4. Default configuration

    Args:
        path: Optional explicit path to config file

    Returns:
        Validated SyncConfig
    """
    if path:
        return SyncConfig.from_yaml(path)

    default_paths = [
        Path("./config/ledger_sync.yaml"),
        Path("./ledger_sync.yaml"),
    ]

    for default_path in default_paths:
        if default_path.exists():
            return SyncConfig.from_yaml(default_path)

    return SyncConfig()
