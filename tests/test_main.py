from __future__ import annotations

from datetime import timedelta

import pytest
from loguru import logger

from signal_backtester.database import Database
from signal_backtester.main import build_arg_parser, run, runtime_overrides
from signal_backtester.message_store import save_message
from signal_backtester.models import TelegramMessage


def _write_config(tmp_path, storage_enabled=True, suffix=""):
    config = f"""
backtest:
  start_date: "2024-01-01T00:00:00{suffix}"
  end_date: "2024-01-03T00:00:00{suffix}"
data:
  provider: synthetic
messages:
  directory: "{(tmp_path / 'messages').as_posix()}"
storage:
  enabled: {str(storage_enabled).lower()}
  db_path: "{(tmp_path / 'db' / 'signals.db').as_posix()}"
report:
  output_dir: "{(tmp_path / 'runs').as_posix()}"
logging:
  directory: "{(tmp_path / 'logs').as_posix()}"
  level: DEBUG
"""
    path = tmp_path / "config.yml"
    path.write_text(config, encoding="utf-8")
    return path


@pytest.fixture
def archive(tmp_path, t0):
    messages = [
        TelegramMessage(id=1, date=t0 + timedelta(hours=2), text="BUY XAUUSD now at 2000 SL 1950 TP1 2050", channel="Gold"),
        TelegramMessage(id=2, date=t0 + timedelta(hours=3), text="Good morning", channel="Gold"),
        TelegramMessage(id=3, date=t0 + timedelta(hours=5), text="SELL EURUSD SL 1.2 TP 1.0", channel="FX"),
        TelegramMessage(id=4, date=t0 + timedelta(hours=20), text="Close gold", channel="Gold"),
    ]
    for message in messages:
        save_message(tmp_path / "messages", message)
    return messages


class TestArguments:
    """CLI flags to config overrides."""

    def test_overrides(self):
        args = build_arg_parser().parse_args(["--symbol", "EURUSD", "--provider", "csv", "--start", "2024-02-01"])

        overrides = runtime_overrides(args)

        assert overrides["backtest"]["symbol"] == "EURUSD"
        assert overrides["backtest"]["start_date"] == "2024-02-01"
        assert overrides["backtest"]["channel"] is None
        assert overrides["data"]["provider"] == "csv"


class TestRun:
    """End-to-end pipeline."""

    @pytest.mark.asyncio
    async def test_full_run(self, tmp_path, archive):
        config_path = _write_config(tmp_path)

        code = await run(["--config", str(config_path), "--quiet"])

        assert code == 0
        summaries = list((tmp_path / "runs" / "All").glob("*/summary.json"))
        assert len(summaries) == 1
        assert (tmp_path / "logs" / "backtester.log").exists()

        database = Database(tmp_path / "db" / "signals.db")
        try:
            assert await database.count_signals() == 3
            [backtest_run] = await database.list_recent_runs()
            assert backtest_run.total_trades == 2
        finally:
            await database.close()

    @pytest.mark.asyncio
    async def test_rerun_from_store(self, tmp_path, archive):
        config_path = _write_config(tmp_path)
        assert await run(["--config", str(config_path), "--quiet", "--no-report"]) == 0

        code = await run(["--config", str(config_path), "--quiet", "--no-report", "--source", "store", "--channel", "FX"])

        assert code == 0
        database = Database(tmp_path / "db" / "signals.db")
        try:
            assert await database.count_signals() == 3
            latest = (await database.list_recent_runs())[0]
            assert latest.channel == "FX"
            assert latest.total_trades == 1
        finally:
            await database.close()
        assert not (tmp_path / "runs").exists()

    @pytest.mark.asyncio
    async def test_store_source_requires_storage(self, tmp_path, archive):
        config_path = _write_config(tmp_path, storage_enabled=False)

        assert await run(["--config", str(config_path), "--quiet", "--source", "store"]) == 1

    @pytest.mark.asyncio
    async def test_missing_config(self, tmp_path):
        assert await run(["--config", str(tmp_path / "missing.yml")]) == 2

    @pytest.mark.asyncio
    async def test_store_source_with_utc_dates(self, tmp_path, archive):
        config_path = _write_config(tmp_path, suffix="Z")
        assert await run(["--config", str(config_path), "--quiet", "--no-report"]) == 0

        code = await run(["--config", str(config_path), "--quiet", "--no-report", "--source", "store"])

        assert code == 0
        database = Database(tmp_path / "db" / "signals.db")
        try:
            latest = (await database.list_recent_runs())[0]
            assert latest.total_trades == 2
        finally:
            await database.close()


class TestStoredRuns:
    """Inspecting stored backtest runs from the CLI."""

    @pytest.mark.asyncio
    async def test_show_run(self, tmp_path, archive):
        config_path = _write_config(tmp_path)
        assert await run(["--config", str(config_path), "--quiet", "--no-report"]) == 0

        assert await run(["--config", str(config_path), "--quiet", "--show-run", "1"]) == 0
        assert await run(["--config", str(config_path), "--quiet", "--list-runs"]) == 0
        logger.remove()

        content = (tmp_path / "logs" / "backtester.log").read_text(encoding="utf-8")
        assert content.count("Run id=1 ") == 2
        assert "#1 long XAUUSD" in content

    @pytest.mark.asyncio
    async def test_unknown_run(self, tmp_path, archive):
        config_path = _write_config(tmp_path)

        assert await run(["--config", str(config_path), "--quiet", "--show-run", "99"]) == 1

    @pytest.mark.asyncio
    async def test_runs_require_storage(self, tmp_path):
        config_path = _write_config(tmp_path, storage_enabled=False)

        assert await run(["--config", str(config_path), "--quiet", "--list-runs"]) == 1
