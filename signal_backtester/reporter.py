"""Write backtest runs to disk."""

from __future__ import annotations

import csv
import json
from datetime import UTC, datetime
from pathlib import Path

from signal_backtester.config import BacktestSettings
from signal_backtester.models import BacktestResult
from signal_backtester.text_utils import safe_file_name

TRADE_FIELDS = [
    "id",
    "symbol",
    "direction",
    "channel",
    "entry_time",
    "entry_price",
    "stop_loss",
    "take_profit",
    "exit_time",
    "exit_price",
    "exit_reason",
    "pnl",
]


def new_run_id() -> str:
    # UTC timestamp, filesystem-safe (no colons)
    return datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")


def save_backtest_run(
    result: BacktestResult,
    settings: BacktestSettings,
    output_dir: str | Path = "data/backtest_runs",
    run_id: str | None = None,
) -> Path:
    """
    Persist a single backtest run under:

      <output_dir>/<channel or All>/<run_id>/

    Files:
      - summary.json        (metrics)
      - settings.json       (what was run)
      - trades.csv          (full trade log)
      - equity_curve.csv    (exit time, equity)
    """
    group = safe_file_name(settings.channel) if settings.channel else "All"
    run_dir = Path(output_dir) / group / (run_id or new_run_id())
    run_dir.mkdir(parents=True, exist_ok=True)

    with open(run_dir / "summary.json", "w", encoding="utf-8") as f:
        json.dump(result.summary(), f, indent=2)

    with open(run_dir / "settings.json", "w", encoding="utf-8") as f:
        f.write(settings.model_dump_json(indent=2))

    with open(run_dir / "trades.csv", "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=TRADE_FIELDS)
        writer.writeheader()
        for t in result.trades:
            writer.writerow({
                "id": t.id,
                "symbol": t.symbol,
                "direction": t.direction.value,
                "channel": t.channel,
                "entry_time": t.entry_time.isoformat(),
                "entry_price": t.entry_price,
                "stop_loss": "" if t.stop_loss is None else t.stop_loss,
                "take_profit": "" if t.take_profit is None else t.take_profit,
                "exit_time": t.exit_time.isoformat(),
                "exit_price": t.exit_price,
                "exit_reason": t.exit_reason.value,
                "pnl": round(t.pnl, 6),
            })

    with open(run_dir / "equity_curve.csv", "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=["time", "equity", "trade_id"])
        writer.writeheader()
        for row in result.equity_curve:
            writer.writerow({**row, "time": row["time"].isoformat()})

    return run_dir
