"""Merges runtime overrides into the configured backtest settings."""

from __future__ import annotations

from typing import Any

from signal_backtester.config import AppConfig


class ConfigResolver:
    def __init__(self, config: AppConfig) -> None:
        self.config = config

    @staticmethod
    def _merge_runtime(config: AppConfig, runtime: dict[str, Any]) -> AppConfig:
        payload = config.model_dump()
        for nested in ["backtest", "parser", "data", "messages", "storage", "report", "logging"]:
            overrides = {key: value for key, value in (runtime.get(nested) or {}).items() if value is not None}
            payload[nested].update(overrides)
        return AppConfig.model_validate(payload)

    def resolve(self, runtime_settings: dict[str, Any] | None = None) -> AppConfig:
        if not runtime_settings:
            return self.config
        return self._merge_runtime(self.config, runtime_settings)
