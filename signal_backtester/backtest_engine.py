"""Backtest engine that replays parsed signals against candle series."""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from signal_backtester.candle_provider import CandleProvider, prefetch_candles
from signal_backtester.config import BacktestSettings
from signal_backtester.metrics import build_result
from signal_backtester.models import BacktestResult, Candle, ExitReason, OpenPosition, ParsedSignal, Trade
from signal_backtester.position_monitor import PositionMonitor
from signal_backtester.risk_manager import RiskManager


class BacktestEngine:
    """
    Deterministic single-pass simulation of a signal stream.

    Signals must already be sorted by timestamp. For every signal in range the engine
    resolves the reference candle (latest candle at or before the signal time), opens or
    closes positions, then checks every open position for stop-loss / take-profit hits.
    Positions still open after the last signal are closed at the final candle.
    """

    def __init__(self, logger: Any | None = None) -> None:
        self.logger = logger

    def run(
        self,
        signals: Sequence[ParsedSignal],
        candles_by_symbol: Mapping[str, Sequence[Candle]],
        settings: BacktestSettings,
    ) -> BacktestResult:
        settings = self.validate_settings(settings)
        result = _BacktestRun(settings, candles_by_symbol, self.logger).execute(signals)
        self._log_info(
            "Backtest finished: trades={} win_rate={:.1f}% pnl={:.2f} max_dd={:.1f}% skipped_signals={}",
            result.total_trades,
            result.win_rate,
            result.total_pnl,
            result.max_drawdown,
            result.skipped_signals,
        )
        return result

    async def run_async(
        self,
        signals: Sequence[ParsedSignal],
        provider: CandleProvider,
        settings: BacktestSettings,
    ) -> BacktestResult:
        """Prefetch every needed series concurrently, then run the simulation."""
        settings = self.validate_settings(settings)
        symbols = {
            signal.symbol
            for signal in signals
            if signal.symbol and settings.accepts(signal.symbol, signal.channel)
        }
        self._log_info("Fetching candles for {} symbols: {}", len(symbols), ", ".join(sorted(symbols)))
        candles = await prefetch_candles(
            provider, symbols, settings.start_date, settings.end_date, logger=self.logger
        )
        return self.run(signals, candles, settings)

    @staticmethod
    def validate_settings(settings: BacktestSettings) -> BacktestSettings:
        # re-validate so instances built with model_construct cannot skip the checks
        return BacktestSettings.model_validate(settings.model_dump())

    def _log_info(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "info"):
            self.logger.info(message, *args)


class _BacktestRun:
    """Mutable state of one run. Never shared between runs."""

    def __init__(
        self,
        settings: BacktestSettings,
        candles_by_symbol: Mapping[str, Sequence[Candle]],
        logger: Any | None,
    ) -> None:
        self.settings = settings
        self.logger = logger
        self.series: dict[str, list[Candle]] = {
            symbol: list(candles) for symbol, candles in candles_by_symbol.items() if candles
        }
        self.times: dict[str, list[datetime]] = {
            symbol: [candle.time for candle in candles] for symbol, candles in self.series.items()
        }
        self.risk_manager = RiskManager(settings, logger)
        self.monitor = PositionMonitor(settings)

        self.open_positions: list[OpenPosition] = []
        self.closed: list[Trade] = []
        self.next_trade_id = 1
        self.processed = 0
        self.skipped = 0

    def execute(self, signals: Sequence[ParsedSignal]) -> BacktestResult:
        for signal in signals:
            self._handle_signal(signal)

        self._close_end_of_period()

        return build_result(
            self.closed,
            self.settings,
            processed_signals=self.processed,
            skipped_signals=self.skipped,
        )

    def _handle_signal(self, signal: ParsedSignal) -> None:
        timestamp = signal.timestamp
        if timestamp is None or not (self.settings.start_date <= timestamp <= self.settings.end_date):
            self.skipped += 1
            return
        if not signal.symbol or not self.settings.accepts(signal.symbol, signal.channel):
            self.skipped += 1
            return

        ref_idx = self._reference_index(signal.symbol, timestamp)
        if ref_idx is None:
            self._log_debug("Skip signal symbol={} time={}: no price data", signal.symbol, timestamp.isoformat())
            self.skipped += 1
            return
        self.processed += 1

        reference = self.series[signal.symbol][ref_idx]
        if signal.is_close:
            self._close_symbol(signal.symbol, reference.close, timestamp)
        elif signal.is_entry:
            self._open_position(signal, reference)

        self._check_exits(timestamp)

    def _reference_index(self, symbol: str, when: datetime) -> int | None:
        times = self.times.get(symbol)
        if not times:
            return None
        idx = bisect_right(times, when) - 1
        return idx if idx >= 0 else None

    def _open_position(self, signal: ParsedSignal, reference: Candle) -> None:
        decision = self.risk_manager.evaluate_entry(signal, self.open_positions)
        if not decision.allowed:
            return

        entry_price = signal.entry_price or reference.close
        stop_loss = signal.stop_loss if self.settings.use_stop_loss and signal.stop_loss else None
        first_tp = signal.first_take_profit
        take_profit = first_tp if self.settings.use_take_profit and first_tp and first_tp > 0 else None

        position = OpenPosition(
            id=self.next_trade_id,
            symbol=signal.symbol,
            direction=signal.action.direction,
            entry_price=entry_price,
            entry_time=signal.timestamp,
            stop_loss=stop_loss,
            take_profit=take_profit,
            signal=signal,
            channel=signal.channel,
        )
        self.next_trade_id += 1
        self.open_positions.append(position)
        self._log_debug(
            "Opened trade id={} {} {} entry={} sl={} tp={}",
            position.id,
            position.direction.value,
            position.symbol,
            entry_price,
            stop_loss,
            take_profit,
        )

    def _close_symbol(self, symbol: str, price: float, when: datetime) -> None:
        for position in [p for p in self.open_positions if p.symbol == symbol]:
            self._close(position, price, when, ExitReason.MANUAL_CLOSE)

    def _check_exits(self, now: datetime) -> None:
        """Check every open position against its symbol's reference candle at ``now``."""
        for position in list(self.open_positions):
            ref_idx = self._reference_index(position.symbol, now)
            if ref_idx is None:
                continue
            decision = self.monitor.check_exit(position, self.series[position.symbol][ref_idx])
            if decision is not None:
                self._close(position, decision.price, now, decision.reason)

    def _close_end_of_period(self) -> None:
        # positions only open against an existing series, so every one has a final candle
        for position in list(self.open_positions):
            idx = self._reference_index(position.symbol, self.settings.end_date)
            final = self.series[position.symbol][idx if idx is not None else -1]
            self._close(position, final.close, self.settings.end_date, ExitReason.END_OF_PERIOD)

    def _close(self, position: OpenPosition, price: float, when: datetime, reason: ExitReason) -> None:
        pnl = self.monitor.calculate_pnl(position.direction, position.symbol, position.entry_price, price)
        trade = position.close(price, when, reason, pnl)
        self.open_positions.remove(position)
        self.closed.append(trade)
        self._log_debug(
            "Closed trade id={} {} reason={} exit={} pnl={:.2f}",
            trade.id,
            trade.symbol,
            reason.value,
            price,
            pnl,
        )

    def _log_debug(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "debug"):
            self.logger.debug(message, *args)
