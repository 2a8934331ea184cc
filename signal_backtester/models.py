"""Domain models for signals, candles and simulated trades."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

MARKET_ENTRY = "market"


class TradeDirection(str, Enum):
    LONG = "long"
    SHORT = "short"


class SignalAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    BUY_LIMIT = "BUY LIMIT"
    SELL_LIMIT = "SELL LIMIT"
    BUY_STOP = "BUY STOP"
    SELL_STOP = "SELL STOP"

    @property
    def direction(self) -> TradeDirection:
        if self.value.startswith("BUY"):
            return TradeDirection.LONG
        return TradeDirection.SHORT


class AuxAction(str, Enum):
    CLOSE = "CLOSE"
    DELETE_ORDER = "DELETE ORDER"
    PARTIAL_CLOSE = "PARTIAL CLOSE"
    MOVE_TO_BREAKEVEN = "MOVE TO BREAKEVEN"
    MODIFY = "MODIFY"


class ExitReason(str, Enum):
    STOP_LOSS = "StopLoss"
    TAKE_PROFIT = "TakeProfit"
    MANUAL_CLOSE = "ManualClose"
    END_OF_PERIOD = "EndOfPeriod"


def parse_price(value: str | float | None) -> float | None:
    """Return a positive float or None for anything that is not a usable price."""
    if value is None:
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if price != price or price <= 0:
        return None
    return price


@dataclass(slots=True)
class TelegramMessage:
    id: int
    date: datetime
    text: str
    channel: str = "Unknown"


@dataclass(slots=True)
class ParsedSignal:
    action: SignalAction | None
    symbol: str | None
    entry: str = MARKET_ENTRY
    stop_loss: float | None = None
    take_profits: dict[str, float] = field(default_factory=dict)
    actions: frozenset[AuxAction] = frozenset()
    timestamp: datetime | None = None
    channel: str = ""
    raw_text: str = ""

    @property
    def entry_price(self) -> float | None:
        # ranges and the market sentinel are not numeric
        return parse_price(self.entry)

    @property
    def first_take_profit(self) -> float | None:
        for value in self.take_profits.values():
            return value
        return None

    @property
    def is_close(self) -> bool:
        return AuxAction.CLOSE in self.actions

    @property
    def is_entry(self) -> bool:
        return self.action is not None and not self.is_close


@dataclass(slots=True, frozen=True)
class Candle:
    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(slots=True, frozen=True)
class Trade:
    id: int
    symbol: str
    direction: TradeDirection
    entry_price: float
    entry_time: datetime
    stop_loss: float | None
    take_profit: float | None
    exit_price: float
    exit_time: datetime
    exit_reason: ExitReason
    pnl: float
    signal: ParsedSignal | None = None
    channel: str = ""

    @property
    def is_win(self) -> bool:
        return self.pnl > 0


@dataclass(slots=True)
class OpenPosition:
    """Open side of a trade. Owned by a single engine run and frozen into a Trade on close."""

    id: int
    symbol: str
    direction: TradeDirection
    entry_price: float
    entry_time: datetime
    stop_loss: float | None
    take_profit: float | None
    signal: ParsedSignal | None = None
    channel: str = ""
    def close(self, exit_price: float, exit_time: datetime, reason: ExitReason, pnl: float) -> Trade:
        return Trade(
            id=self.id,
            symbol=self.symbol,
            direction=self.direction,
            entry_price=self.entry_price,
            entry_time=self.entry_time,
            stop_loss=self.stop_loss,
            take_profit=self.take_profit,
            exit_price=exit_price,
            exit_time=exit_time,
            exit_reason=reason,
            pnl=pnl,
            signal=self.signal,
            channel=self.channel,
        )


@dataclass(slots=True)
class BacktestResult:
    """Closed trades plus derived statistics for one run."""

    trades: tuple[Trade, ...] = ()

    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0

    total_pnl: float = 0.0
    average_pnl: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    max_drawdown: float = 0.0

    total_duration: timedelta = timedelta(0)
    equity_curve: list[dict[str, Any]] = field(default_factory=list)

    processed_signals: int = 0
    skipped_signals: int = 0

    def summary(self) -> dict[str, Any]:
        return {
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "win_rate": self.win_rate,
            "total_pnl": self.total_pnl,
            "average_pnl": self.average_pnl,
            "largest_win": self.largest_win,
            "largest_loss": self.largest_loss,
            "max_drawdown": self.max_drawdown,
            "total_duration_sec": self.total_duration.total_seconds(),
            "processed_signals": self.processed_signals,
            "skipped_signals": self.skipped_signals,
        }
