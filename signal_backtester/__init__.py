"""Telegram trade-alert signal extraction and candle backtesting."""
