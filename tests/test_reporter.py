from __future__ import annotations

import csv
import json
from datetime import timedelta

from signal_backtester.backtest_engine import BacktestEngine
from signal_backtester.reporter import new_run_id, save_backtest_run


def _result(parser, t0, candle, settings):
    signals = [
        parser.parse("BUY XAUUSD now at 2000 SL 1995 TP1 2010", timestamp=t0, channel="Gold VIP"),
        parser.parse("SELL XAUUSD", timestamp=t0 + timedelta(hours=1), channel="Gold VIP"),
    ]
    candles = {
        "XAUUSD": [
            candle(0, 2000, 2002, 1998, 2000),
            candle(1, 2000, 2011, 1999, 2009),
            candle(2, 2009, 2010, 2004, 2005),
        ]
    }
    return BacktestEngine().run(signals, candles, settings)


class TestSaveBacktestRun:
    """Run directory layout and contents."""

    def test_files(self, tmp_path, parser, t0, candle, make_settings):
        settings = make_settings()
        result = _result(parser, t0, candle, settings)

        run_dir = save_backtest_run(result, settings, tmp_path, run_id="20240101T000000Z")

        assert run_dir == tmp_path / "All" / "20240101T000000Z"
        assert sorted(p.name for p in run_dir.iterdir()) == [
            "equity_curve.csv",
            "settings.json",
            "summary.json",
            "trades.csv",
        ]

        summary = json.loads((run_dir / "summary.json").read_text(encoding="utf-8"))
        assert summary["total_trades"] == 2
        assert summary["winning_trades"] == result.winning_trades

        saved_settings = json.loads((run_dir / "settings.json").read_text(encoding="utf-8"))
        assert saved_settings["spread"] == 0.0
        assert saved_settings["start_date"].startswith("2024-01-01T00:00:00")

        with open(run_dir / "trades.csv", newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert [row["exit_reason"] for row in rows] == ["TakeProfit", "EndOfPeriod"]
        assert rows[1]["stop_loss"] == ""
        assert rows[0]["direction"] == "long"

        with open(run_dir / "equity_curve.csv", newline="", encoding="utf-8") as f:
            curve = list(csv.DictReader(f))
        assert len(curve) == 2
        assert float(curve[-1]["equity"]) == 10000.0 + result.total_pnl

    def test_channel_directory(self, tmp_path, parser, t0, candle, make_settings):
        settings = make_settings(channel="Gold VIP")
        result = _result(parser, t0, candle, settings)

        run_dir = save_backtest_run(result, settings, tmp_path, run_id="r1")

        assert run_dir.parent.name == "Gold_VIP"

    def test_run_id_is_filesystem_safe(self):
        run_id = new_run_id()

        assert ":" not in run_id
        assert run_id.endswith("Z")
