"""Configuration loading and validation."""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

CONFIG_ENV_VAR = "SIGNAL_BACKTESTER_CONFIG"


class BacktestSettings(BaseModel):
    """Per-run simulation settings. Structurally invalid ranges are rejected on construction."""

    model_config = ConfigDict(extra="forbid")

    start_date: datetime
    end_date: datetime
    symbol: str | None = None              # None = all symbols
    channel: str | None = None             # None = all channels
    initial_balance: float = Field(default=10000.0, gt=0)
    risk_per_trade: float = Field(default=1.0, ge=0)
    spread: float = Field(default=2.0, ge=0)          # pips
    commission: float = Field(default=0.0, ge=0)      # PnL units per closed trade
    use_stop_loss: bool = True
    use_take_profit: bool = True
    max_open_trades: int = Field(default=5, ge=1)

    @model_validator(mode="after")
    def _check_range(self) -> "BacktestSettings":
        if self.end_date < self.start_date:
            raise ValueError(
                f"end_date {self.end_date.isoformat()} is earlier than start_date {self.start_date.isoformat()}"
            )
        return self

    def accepts(self, symbol: str | None, channel: str) -> bool:
        if self.symbol is not None and symbol != self.symbol:
            return False
        if self.channel is not None and channel != self.channel:
            return False
        return True


class ParserConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default_symbol: str | None = "XAUUSD"


class DataConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    provider: str = Field(default="synthetic", pattern=r"^(synthetic|csv)$")
    candles_dir: str = "data/candles"
    seed: int = 42
    interval_minutes: int = Field(default=60, ge=1)
    fallback_to_synthetic: bool = True


class MessagesConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    directory: str = "data/messages"


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    db_path: str = "data/signals.db"


class ReportConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    output_dir: str = "data/backtest_runs"


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    directory: str = "logs"
    level: str = Field(default="INFO", pattern=r"^(TRACE|DEBUG|INFO|SUCCESS|WARNING|ERROR|CRITICAL)$")
    file_name: str = "backtester.log"
    rotation: str = "5 MB"
    retention: int = Field(default=5, ge=1)


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backtest: BacktestSettings
    parser: ParserConfig = Field(default_factory=ParserConfig)
    data: DataConfig = Field(default_factory=DataConfig)
    messages: MessagesConfig = Field(default_factory=MessagesConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def resolve_config_path(path: str | Path | None = None) -> Path:
    if path is not None:
        return Path(path)
    load_dotenv()
    return Path(os.getenv(CONFIG_ENV_VAR, "config.yml"))


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file and validate schema."""
    config_path = resolve_config_path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file '{config_path}' not found. Copy config.yml.example to config.yml first."
        )

    with config_path.open("r", encoding="utf-8") as fh:
        raw_data = yaml.safe_load(fh) or {}

    try:
        return AppConfig.model_validate(raw_data)
    except ValidationError as exc:
        raise ValueError(f"Invalid config '{config_path}': {exc}") from exc
