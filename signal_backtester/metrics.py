from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from signal_backtester.config import BacktestSettings
from signal_backtester.models import BacktestResult, Trade


def compute_metrics(trades: Sequence[Trade]) -> dict[str, Any]:
    if not trades:
        return {
            "total_trades": 0,
            "winning_trades": 0,
            "losing_trades": 0,
            "win_rate": 0.0,
            "total_pnl": 0.0,
            "average_pnl": 0.0,
            "largest_win": 0.0,
            "largest_loss": 0.0,
            "max_drawdown": 0.0,
        }

    pnls = [t.pnl for t in trades]
    wins = sum(1 for t in trades if t.is_win)
    total = len(trades)
    total_pnl = sum(pnls)

    return {
        "total_trades": total,
        "winning_trades": wins,
        # zero PnL counts as a loss
        "losing_trades": total - wins,
        "win_rate": wins / total * 100.0,
        "total_pnl": total_pnl,
        "average_pnl": total_pnl / total,
        "largest_win": max(pnls),
        "largest_loss": min(pnls),
        "max_drawdown": max_drawdown(trades),
    }


def max_drawdown(trades: Sequence[Trade]) -> float:
    """
    Largest percentage decline of cumulative PnL from its running peak.

    Trades are replayed in exit order starting from a zero peak. The peak is floored at 1
    in the denominator so small or negative peaks do not divide by zero.
    """
    running = 0.0
    peak = 0.0
    max_dd = 0.0
    for trade in sorted(trades, key=lambda t: t.exit_time):
        running += trade.pnl
        if running > peak:
            peak = running
        elif running < peak:
            max_dd = max(max_dd, (peak - running) / max(peak, 1.0) * 100.0)
    return max_dd


def equity_curve(trades: Sequence[Trade], initial_balance: float) -> list[dict[str, Any]]:
    equity = initial_balance
    curve: list[dict[str, Any]] = []
    for trade in sorted(trades, key=lambda t: t.exit_time):
        equity += trade.pnl
        curve.append({"time": trade.exit_time, "equity": equity, "trade_id": trade.id})
    return curve


def build_result(
    trades: Sequence[Trade],
    settings: BacktestSettings,
    processed_signals: int = 0,
    skipped_signals: int = 0,
) -> BacktestResult:
    summary = compute_metrics(trades)
    return BacktestResult(
        trades=tuple(trades),
        total_duration=settings.end_date - settings.start_date,
        equity_curve=equity_curve(trades, settings.initial_balance),
        processed_signals=processed_signals,
        skipped_signals=skipped_signals,
        **summary,
    )
