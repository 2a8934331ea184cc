from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from signal_backtester.config import BacktestSettings
from signal_backtester.models import Candle, ExitReason, Trade, TradeDirection
from signal_backtester.signal_parser import SignalParser

T0 = datetime(2024, 1, 1, 0, 0)


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def parser() -> SignalParser:
    return SignalParser(default_symbol="XAUUSD")


@pytest.fixture
def make_settings():
    """Settings for a one-day window from T0 with zero spread unless overridden."""

    def _make(**overrides) -> BacktestSettings:
        payload = {
            "start_date": T0,
            "end_date": T0 + timedelta(days=1),
            "spread": 0.0,
        }
        payload.update(overrides)
        return BacktestSettings(**payload)

    return _make


@pytest.fixture
def candle():
    """Hourly candle factory: candle(hour, open, high, low, close)."""

    def _make(hour: float, open_: float, high: float, low: float, close: float) -> Candle:
        return Candle(time=T0 + timedelta(hours=hour), open=open_, high=high, low=low, close=close, volume=100.0)

    return _make


@pytest.fixture
def flat_candles():
    """``count`` hourly candles around ``price`` that trigger nothing farther than ``width`` away."""

    def _make(count: int, price: float = 2000.0, width: float = 1.0) -> list[Candle]:
        return [
            Candle(
                time=T0 + timedelta(hours=hour),
                open=price,
                high=price + width,
                low=price - width,
                close=price,
            )
            for hour in range(count)
        ]

    return _make


@pytest.fixture
def make_trade():
    def _make(trade_id: int, pnl: float, exit_hour: float = 0.0) -> Trade:
        return Trade(
            id=trade_id,
            symbol="XAUUSD",
            direction=TradeDirection.LONG,
            entry_price=2000.0,
            entry_time=T0,
            stop_loss=None,
            take_profit=None,
            exit_price=2000.0 + pnl / 100.0,
            exit_time=T0 + timedelta(hours=exit_hour),
            exit_reason=ExitReason.MANUAL_CLOSE,
            pnl=pnl,
        )

    return _make
