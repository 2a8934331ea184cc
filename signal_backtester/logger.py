"""Loguru sinks for a backtest run."""

from __future__ import annotations

from pathlib import Path
import sys

from loguru import logger

from signal_backtester.config import LoggingConfig

CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <7}</level> | {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <7} | {name}:{function}:{line} | {message}"


def setup_logger(settings: LoggingConfig | None = None, console: bool = True):
    """Replace loguru's default sink with a console sink and a rotating run log."""
    settings = settings or LoggingConfig()
    log_dir = Path(settings.directory)
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.remove()
    if console:
        logger.add(sys.stdout, level=settings.level, format=CONSOLE_FORMAT, enqueue=True)
    logger.add(
        log_dir / settings.file_name,
        level=settings.level,
        format=FILE_FORMAT,
        rotation=settings.rotation,
        retention=settings.retention,
        enqueue=True,
        encoding="utf-8",
    )
    return logger
