"""Candle series providers and concurrent prefetch.

Every provider answers ``get_candles(symbol, start, end)`` with an ascending list of candles.
Unknown symbols and empty ranges return an empty list rather than raising.
"""

from __future__ import annotations

import asyncio
import hashlib
from collections.abc import Iterable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Protocol

import numpy as np
import pandas as pd

from signal_backtester.models import Candle

BASE_PRICES: dict[str, float] = {
    "XAUUSD": 2000.0,
    "EURUSD": 1.1000,
    "GBPUSD": 1.2500,
    "USDJPY": 150.0,
    "BTCUSD": 45000.0,
}

CSV_COLUMNS = ("time", "open", "high", "low", "close", "volume")


class CandleProvider(Protocol):
    async def get_candles(self, symbol: str, start: datetime, end: datetime) -> list[Candle]:
        ...


class SyntheticCandleProvider:
    """Deterministic random-walk candles, seeded per symbol."""

    def __init__(self, seed: int = 42, interval: timedelta = timedelta(hours=1)) -> None:
        if interval <= timedelta(0):
            raise ValueError("interval must be positive")
        self.seed = seed
        self.interval = interval

    def _rng(self, symbol: str) -> np.random.Generator:
        digest = hashlib.sha256(f"{self.seed}:{symbol.upper()}".encode("utf-8")).digest()
        return np.random.default_rng(int.from_bytes(digest[:8], "big"))

    def generate(self, symbol: str, start: datetime, end: datetime) -> list[Candle]:
        if end < start:
            return []
        steps = int((end - start) / self.interval) + 1
        rng = self._rng(symbol)
        # open jitter, close change, wick extension above, wick extension below
        draws = rng.random((steps, 4))
        volumes = rng.integers(100, 1000, size=steps)

        base = BASE_PRICES.get(symbol.upper(), 1.0)
        candles: list[Candle] = []
        for idx in range(steps):
            open_jitter, change_draw, up_draw, down_draw = draws[idx]
            open_ = base + (open_jitter - 0.5) * base * 0.02
            change = (change_draw - 0.5) * base * 0.01
            close = open_ + change
            high = max(open_, close) + up_draw * base * 0.005
            low = min(open_, close) - down_draw * base * 0.005
            candles.append(
                Candle(
                    time=start + idx * self.interval,
                    open=float(open_),
                    high=float(high),
                    low=float(low),
                    close=float(close),
                    volume=float(volumes[idx]),
                )
            )
            base = close
        return candles

    async def get_candles(self, symbol: str, start: datetime, end: datetime) -> list[Candle]:
        return self.generate(symbol, start, end)


class CsvCandleProvider:
    """Reads cached series from ``<directory>/<SYMBOL>.csv``."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path(self, symbol: str) -> Path:
        return self.directory / f"{symbol.upper()}.csv"

    def load(self, symbol: str, start: datetime, end: datetime) -> list[Candle]:
        path = self._path(symbol)
        if not path.exists():
            return []

        frame = pd.read_csv(path)
        missing = [column for column in CSV_COLUMNS if column not in frame.columns]
        if missing:
            raise ValueError(f"Candle file '{path}' is missing columns: {', '.join(missing)}")

        frame["time"] = pd.to_datetime(frame["time"], utc=start.tzinfo is not None)
        if start.tzinfo is not None:
            frame["time"] = frame["time"].dt.tz_convert(start.tzinfo)
        frame = frame[(frame["time"] >= pd.Timestamp(start)) & (frame["time"] <= pd.Timestamp(end))]
        frame = frame.sort_values("time", kind="stable")

        return [
            Candle(
                time=row.time.to_pydatetime(),
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=float(row.volume),
            )
            for row in frame.itertuples(index=False)
        ]

    async def get_candles(self, symbol: str, start: datetime, end: datetime) -> list[Candle]:
        return await asyncio.to_thread(self.load, symbol, start, end)


class FallbackCandleProvider:
    """Tries ``primary`` first and uses ``fallback`` when it fails or has no data."""

    def __init__(self, primary: CandleProvider, fallback: CandleProvider, logger: Any | None = None) -> None:
        self.primary = primary
        self.fallback = fallback
        self.logger = logger

    async def get_candles(self, symbol: str, start: datetime, end: datetime) -> list[Candle]:
        try:
            candles = await self.primary.get_candles(symbol, start, end)
        except Exception as exc:  # noqa: BLE001
            self._log_warning("Candle fetch failed for {}: {}, using fallback data", symbol, exc)
            return await self.fallback.get_candles(symbol, start, end)

        if not candles:
            self._log_info("No candles for {} from primary provider, using fallback data", symbol)
            return await self.fallback.get_candles(symbol, start, end)
        return candles

    def _log_info(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "info"):
            self.logger.info(message, *args)

    def _log_warning(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "warning"):
            self.logger.warning(message, *args)
        elif self.logger is not None and hasattr(self.logger, "info"):
            self.logger.info(message, *args)


async def prefetch_candles(
    provider: CandleProvider,
    symbols: Iterable[str],
    start: datetime,
    end: datetime,
    logger: Any | None = None,
) -> dict[str, list[Candle]]:
    """Fetch every symbol concurrently. Failed or empty symbols are left out of the result."""
    unique = sorted(set(symbols))
    results = await asyncio.gather(
        *(provider.get_candles(symbol, start, end) for symbol in unique),
        return_exceptions=True,
    )

    candles_by_symbol: dict[str, list[Candle]] = {}
    for symbol, result in zip(unique, results):
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if logger is not None:
                logger.error("Failed to load candles for {}: {}", symbol, result)
            continue
        if not result:
            if logger is not None:
                logger.warning("No candle data for {} in {} .. {}", symbol, start.isoformat(), end.isoformat())
            continue
        candles_by_symbol[symbol] = list(result)
        if logger is not None:
            logger.info("Loaded {} candles for {}", len(result), symbol)
    return candles_by_symbol


def build_provider(
    kind: str,
    candles_dir: str | Path = "data/candles",
    seed: int = 42,
    interval_minutes: int = 60,
    fallback_to_synthetic: bool = True,
    logger: Any | None = None,
) -> CandleProvider:
    synthetic = SyntheticCandleProvider(seed=seed, interval=timedelta(minutes=interval_minutes))
    if kind == "synthetic":
        return synthetic
    if kind == "csv":
        csv_provider = CsvCandleProvider(candles_dir)
        if fallback_to_synthetic:
            return FallbackCandleProvider(csv_provider, synthetic, logger=logger)
        return csv_provider
    raise ValueError(f"Unknown candle provider '{kind}'")

