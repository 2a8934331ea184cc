"""Entry admission for simulated trades."""

from __future__ import annotations

from collections.abc import Sized
from dataclasses import dataclass

from signal_backtester.config import BacktestSettings
from signal_backtester.models import ParsedSignal


@dataclass(slots=True)
class RiskDecision:
    allowed: bool
    reason: str


class RiskManager:
    """Evaluates pre-entry checks in a single layer."""

    def __init__(self, settings: BacktestSettings, logger=None) -> None:
        self.settings = settings
        self.logger = logger

    def evaluate_entry(self, signal: ParsedSignal, open_positions: Sized) -> RiskDecision:
        if not signal.is_entry:
            return RiskDecision(False, "not_entry")

        if not signal.symbol:
            self._log_debug("RiskManager: entry without symbol reason=missing_symbol")
            return RiskDecision(False, "missing_symbol")

        if len(open_positions) >= self.settings.max_open_trades:
            self._log_debug(
                "RiskManager: max_open_trades reached open={} limit={} symbol={} reason=max_open_trades",
                len(open_positions),
                self.settings.max_open_trades,
                signal.symbol,
            )
            return RiskDecision(False, "max_open_trades")

        return RiskDecision(True, "ok")

    def _log_debug(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "debug"):
            self.logger.debug(message, *args)
