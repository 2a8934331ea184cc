"""Command line entrypoint: messages -> signals -> backtest -> report."""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from collections.abc import Sequence
from typing import Any

from loguru import logger as default_logger

from signal_backtester.backtest_engine import BacktestEngine
from signal_backtester.candle_provider import build_provider
from signal_backtester.config import AppConfig, load_config
from signal_backtester.config_resolver import ConfigResolver
from signal_backtester.database import Database
from signal_backtester.logger import setup_logger
from signal_backtester.message_store import load_messages, parse_messages
from signal_backtester.models import BacktestResult, ParsedSignal
from signal_backtester.reporter import save_backtest_run
from signal_backtester.signal_parser import SignalParser


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="signal-backtester",
        description="Backtest Telegram trade alerts against historical candles.",
    )
    parser.add_argument("--config", help="path to config.yml (default: $SIGNAL_BACKTESTER_CONFIG or config.yml)")
    parser.add_argument("--start", help="override backtest.start_date (ISO 8601)")
    parser.add_argument("--end", help="override backtest.end_date (ISO 8601)")
    parser.add_argument("--symbol", help="only trade this symbol")
    parser.add_argument("--channel", help="only use messages from this channel")
    parser.add_argument("--provider", choices=["synthetic", "csv"], help="candle data source")
    parser.add_argument(
        "--source",
        choices=["messages", "store"],
        default="messages",
        help="read signals from the message archive or from the signal store",
    )
    parser.add_argument("--no-report", action="store_true", help="do not write the run directory")
    parser.add_argument("--quiet", action="store_true", help="log to file only")
    parser.add_argument("--list-runs", action="store_true", help="show recent stored backtest runs and exit")
    parser.add_argument(
        "--show-run", type=int, metavar="ID", help="show one stored backtest run with its trades and exit"
    )
    return parser


def runtime_overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "backtest": {
            "start_date": args.start,
            "end_date": args.end,
            "symbol": args.symbol,
            "channel": args.channel,
        },
        "data": {"provider": args.provider},
    }


async def _store_signals(database: Database, parser: SignalParser, signals: Sequence[ParsedSignal], logger) -> int:
    stored = 0
    for signal in signals:
        # same text may be reposted later or in another channel
        signal_hash = parser.compute_hash(
            f"{signal.channel}|{signal.timestamp.isoformat() if signal.timestamp else ''}|{signal.raw_text}"
        )
        if await database.signal_hash_exists(signal_hash):
            logger.debug("Skip duplicate signal hash={}", signal_hash[:12])
            continue
        signal_id = await database.add_signal(signal, signal_hash)
        if signal_id is None:
            logger.debug("Skip duplicate signal (unique conflict) hash={}", signal_hash[:12])
            continue
        stored += 1
    return stored


async def collect_signals(
    config: AppConfig,
    parser: SignalParser,
    source: str,
    database: Database | None,
    logger,
) -> list[ParsedSignal]:
    settings = config.backtest
    if source == "store":
        if database is None:
            raise ValueError("--source store requires storage.enabled: true")
        signals = await database.list_signals(settings.start_date, settings.end_date, settings.channel)
        logger.info("Loaded {} signals from store", len(signals))
        return signals

    messages = load_messages(
        config.messages.directory,
        settings.start_date,
        settings.end_date,
        channel=settings.channel,
        logger=logger,
    )
    signals = parse_messages(messages, parser)
    logger.info("Parsed {} signals from {} messages", len(signals), len(messages))
    for signal in signals:
        logger.debug("Signal from {} at {}:\n{}", signal.channel, signal.timestamp, parser.format_signal(signal))

    if database is not None:
        stored = await _store_signals(database, parser, signals, logger)
        logger.info(
            "Signal store: {} new, {} already known, {} total",
            stored,
            len(signals) - stored,
            await database.count_signals(),
        )
    return signals


def log_summary(result: BacktestResult, logger) -> None:
    logger.info(
        "Trades: total={} won={} lost={} win_rate={:.1f}%",
        result.total_trades,
        result.winning_trades,
        result.losing_trades,
        result.win_rate,
    )
    logger.info(
        "PnL: total={:.2f} avg={:.2f} best={:.2f} worst={:.2f} max_drawdown={:.1f}%",
        result.total_pnl,
        result.average_pnl,
        result.largest_win,
        result.largest_loss,
        result.max_drawdown,
    )


async def show_stored_runs(database: Database | None, logger, run_id: int | None = None, limit: int = 20) -> None:
    """Log recent backtest runs, or one run with its trades when ``run_id`` is given."""
    if database is None:
        raise ValueError("stored runs require storage.enabled: true")

    if run_id is None:
        runs = await database.list_recent_runs(limit)
        if not runs:
            logger.info("No stored backtest runs")
    else:
        record = await database.get_backtest_run(run_id)
        if record is None:
            raise ValueError(f"backtest run {run_id} not found")
        runs = [record]

    for record in runs:
        logger.info(
            "Run id={} {} .. {} symbol={} channel={} trades={} win_rate={:.1f}% pnl={:.2f} max_dd={:.1f}%",
            record.id,
            record.start_date.isoformat(),
            record.end_date.isoformat(),
            record.symbol or "all",
            record.channel or "all",
            record.total_trades,
            record.win_rate,
            record.total_pnl,
            record.max_drawdown,
        )

    if run_id is not None:
        for trade in await database.list_run_trades(run_id):
            logger.info(
                "  #{} {} {} entry={} exit={} {} reason={} pnl={:.2f}",
                trade.trade_no,
                trade.direction,
                trade.symbol,
                trade.entry_price,
                trade.exit_price,
                trade.exit_time.isoformat(),
                trade.exit_reason,
                trade.pnl,
            )


async def run(argv: Sequence[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)

    try:
        config = ConfigResolver(load_config(args.config)).resolve(runtime_overrides(args))
    except (FileNotFoundError, ValueError) as exc:
        default_logger.error("Config error: {}", exc)
        return 2

    logger = setup_logger(config.logging, console=not args.quiet)
    settings = config.backtest
    logger.info(
        "Backtest {} .. {} symbol={} channel={} provider={}",
        settings.start_date.isoformat(),
        settings.end_date.isoformat(),
        settings.symbol or "all",
        settings.channel or "all",
        config.data.provider,
    )

    parser = SignalParser(default_symbol=config.parser.default_symbol)
    database: Database | None = None
    if config.storage.enabled:
        database = Database(config.storage.db_path)
        await database.init_db()
        logger.info("Database initialized at {}", config.storage.db_path)

    try:
        if args.list_runs or args.show_run is not None:
            await show_stored_runs(database, logger, run_id=args.show_run)
            return 0

        signals = await collect_signals(config, parser, args.source, database, logger)
        provider = build_provider(
            config.data.provider,
            candles_dir=config.data.candles_dir,
            seed=config.data.seed,
            interval_minutes=config.data.interval_minutes,
            fallback_to_synthetic=config.data.fallback_to_synthetic,
            logger=logger,
        )

        started = time.perf_counter()
        result = await BacktestEngine(logger=logger).run_async(signals, provider, settings)
        logger.info("Backtest completed in {:.2f}s", time.perf_counter() - started)
        log_summary(result, logger)

        if database is not None:
            run_id = await database.add_backtest_run(settings, result)
            logger.info("Backtest run saved id={}", run_id)
        if not args.no_report:
            run_dir = save_backtest_run(result, settings, config.report.output_dir)
            logger.info("Report written to {}", run_dir)
    except ValueError as exc:
        logger.error("Backtest failed: {}", exc)
        return 1
    finally:
        if database is not None:
            await database.close()
        await logger.complete()
    return 0


def cli() -> None:
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    cli()
