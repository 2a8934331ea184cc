"""Exit-trigger evaluation and PnL for simulated positions."""

from __future__ import annotations

from dataclasses import dataclass

from signal_backtester.config import BacktestSettings
from signal_backtester.models import Candle, ExitReason, OpenPosition, TradeDirection

PNL_MULTIPLIER = 100.0
DEFAULT_PIP_VALUE = 0.0001

PIP_VALUES: dict[str, float] = {
    "XAUUSD": 0.01,
    "XAGUSD": 0.01,
    "USDJPY": 0.01,
    "EURJPY": 0.01,
    "GBPJPY": 0.01,
    "EURUSD": 0.0001,
    "GBPUSD": 0.0001,
    "AUDUSD": 0.0001,
    "NZDUSD": 0.0001,
    "USDCAD": 0.0001,
    "USDCHF": 0.0001,
    "BTCUSD": 1.0,
}


def pip_value(symbol: str) -> float:
    return PIP_VALUES.get((symbol or "").upper(), DEFAULT_PIP_VALUE)


@dataclass(slots=True)
class ExitDecision:
    reason: ExitReason
    price: float


class PositionMonitor:
    """Checks open positions against candles and prices closes."""

    def __init__(self, settings: BacktestSettings) -> None:
        self.settings = settings

    def check_exit(self, position: OpenPosition, candle: Candle) -> ExitDecision | None:
        # stop first: if both levels are inside the candle range assume the worse fill
        if position.stop_loss is not None and self._stop_hit(position, candle):
            return ExitDecision(ExitReason.STOP_LOSS, position.stop_loss)
        if position.take_profit is not None and self._target_hit(position, candle):
            return ExitDecision(ExitReason.TAKE_PROFIT, position.take_profit)
        return None

    def calculate_pnl(
        self,
        direction: TradeDirection,
        symbol: str,
        entry_price: float,
        exit_price: float,
    ) -> float:
        diff = exit_price - entry_price
        if direction == TradeDirection.SHORT:
            diff = -diff
        diff -= self.settings.spread * pip_value(symbol)
        return diff * PNL_MULTIPLIER - self.settings.commission

    @staticmethod
    def _stop_hit(position: OpenPosition, candle: Candle) -> bool:
        if position.direction == TradeDirection.LONG:
            return candle.low <= position.stop_loss
        return candle.high >= position.stop_loss

    @staticmethod
    def _target_hit(position: OpenPosition, candle: Candle) -> bool:
        if position.direction == TradeDirection.LONG:
            return candle.high >= position.take_profit
        return candle.low <= position.take_profit
