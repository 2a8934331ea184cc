"""Archived Telegram messages on disk.

Each message is one JSON file named ``<channel>_Message_<id>.json`` with the keys
``date`` (ISO 8601), ``message`` and ``chat``.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from signal_backtester.models import ParsedSignal, TelegramMessage
from signal_backtester.signal_parser import SignalParser
from signal_backtester.text_utils import safe_file_name

MESSAGE_GLOB = "*_Message_*.json"


def _align_tz(value: datetime, reference: datetime) -> datetime:
    if reference.tzinfo is not None and value.tzinfo is None:
        return value.replace(tzinfo=reference.tzinfo)
    if reference.tzinfo is None and value.tzinfo is not None:
        return value.astimezone(UTC).replace(tzinfo=None)
    return value


def read_message_file(path: Path) -> dict[str, Any] | None:
    """Return the raw payload, or None when the file is unreadable or not a JSON object."""
    try:
        with path.open("r", encoding="utf-8") as fh:
            payload = json.load(fh)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


def load_messages(
    directory: str | Path,
    start: datetime,
    end: datetime,
    channel: str | None = None,
    logger: Any | None = None,
) -> list[TelegramMessage]:
    """Load archived messages dated within ``[start, end]``, oldest first."""
    path = Path(directory)
    if not path.is_dir():
        if logger is not None:
            logger.warning("Message directory '{}' does not exist", path)
        return []

    messages: list[TelegramMessage] = []
    for file in sorted(path.glob(MESSAGE_GLOB)):
        payload = read_message_file(file)
        if payload is None:
            if logger is not None:
                logger.debug("Skip invalid message file {}", file.name)
            continue

        raw_date = payload.get("date")
        text = payload.get("message") or ""
        chat = payload.get("chat") or "Unknown"
        try:
            date = _align_tz(datetime.fromisoformat(str(raw_date)), start)
        except ValueError:
            if logger is not None:
                logger.debug("Skip message file {}: bad date {!r}", file.name, raw_date)
            continue

        if not (start <= date <= end):
            continue
        if channel is not None and chat != channel:
            continue
        if not str(text).strip():
            continue
        messages.append(TelegramMessage(id=0, date=date, text=str(text), channel=str(chat)))

    messages.sort(key=lambda m: m.date)
    for idx, message in enumerate(messages, start=1):
        message.id = idx
    if logger is not None:
        logger.info("Loaded {} messages from {}", len(messages), path)
    return messages


def save_message(directory: str | Path, message: TelegramMessage) -> Path:
    path = Path(directory)
    path.mkdir(parents=True, exist_ok=True)
    target = path / f"{safe_file_name(message.channel)}_Message_{message.id}.json"
    payload = {"date": message.date.isoformat(), "message": message.text, "chat": message.channel}
    target.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    return target


def parse_messages(messages: Iterable[TelegramMessage], parser: SignalParser) -> list[ParsedSignal]:
    """Parse every message and return the signals sorted by timestamp."""
    signals: list[ParsedSignal] = []
    for message in messages:
        signal = parser.parse(message.text, timestamp=message.date, channel=message.channel)
        if signal is not None:
            signals.append(signal)
    signals.sort(key=lambda s: s.timestamp)
    return signals
