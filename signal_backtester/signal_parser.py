"""Parser for Telegram trade-alert messages.

Extraction is a fixed cascade over normalised text. Each step is an ordered table of
``(rule, pattern, extractor)`` entries and the first matching rule wins, so the order of
the tables below is part of the parser's behaviour.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Callable
from datetime import datetime

from signal_backtester.models import MARKET_ENTRY, AuxAction, ParsedSignal, SignalAction, parse_price
from signal_backtester.text_utils import collapse_whitespace

_NUM = r"([0-9.]+)"

_NON_ASCII_RE = re.compile(r"[^\x00-\x7F]+")
_DISALLOWED_RE = re.compile(r"[^\w\s.:@/-]")

# Direction tokens that must never be read as the start of a stop-loss phrase.
_NOT_AFTER_DIRECTION = r"(?<!BUY)(?<!SELL)(?<!\bBUY\s)(?<!\bSELL\s)"

ACTION_PATTERNS: tuple[tuple[str, SignalAction], ...] = (
    (r"BUY\s+LIMIT", SignalAction.BUY_LIMIT),
    (r"BUYLIMIT", SignalAction.BUY_LIMIT),
    (r"SELL\s+LIMIT", SignalAction.SELL_LIMIT),
    (r"SELLLIMIT", SignalAction.SELL_LIMIT),
    (r"BUY\s+STOP", SignalAction.BUY_STOP),
    (r"BUYSTOP", SignalAction.BUY_STOP),
    (r"SELL\s+STOP", SignalAction.SELL_STOP),
    (r"SELLSTOP", SignalAction.SELL_STOP),
    (r"BUY", SignalAction.BUY),
    (r"SELL", SignalAction.SELL),
    (r"LONG", SignalAction.BUY),
    (r"SHORT", SignalAction.SELL),
)

_ACTION_RE = re.compile(
    r"\b(?:" + "|".join(f"(?P<a{idx}>{phrase})" for idx, (phrase, _) in enumerate(ACTION_PATTERNS)) + r")\b",
    flags=re.IGNORECASE,
)

Extractor = Callable[[re.Match[str]], str | None]

ENTRY_PATTERNS: tuple[tuple[str, re.Pattern[str], Extractor], ...] = (
    (
        "range",
        re.compile(r"\b" + _NUM + r"\s*[-_/]\s*" + _NUM + r"\b", flags=re.IGNORECASE),
        lambda m: f"{m.group(1)} - {m.group(2)}",
    ),
    ("at", re.compile(r"@\s*" + _NUM, flags=re.IGNORECASE), lambda m: m.group(1)),
    ("entry", re.compile(r"Entry[:\s]+" + _NUM, flags=re.IGNORECASE), lambda m: m.group(1)),
    ("entry_price", re.compile(r"Entry Price[:\s]+" + _NUM, flags=re.IGNORECASE), lambda m: m.group(1)),
    ("now_at", re.compile(r"now at\s*" + _NUM, flags=re.IGNORECASE), lambda m: m.group(1)),
    (
        "action_symbol",
        re.compile(r"\b(BUY|SELL)\b\s+[A-Z0-9]+\s+" + _NUM, flags=re.IGNORECASE),
        lambda m: m.group(2),
    ),
    ("price", re.compile(r"Price[:\s]+" + _NUM, flags=re.IGNORECASE), lambda m: m.group(1)),
)

_SL_KEYWORDS = (
    r"StopLoss[:\s]+", r"SL[:\s@]+", r"STOP LOSS[:\s]+", r"STOP[:\s]+",
    r"StopLoss To[:\s]+", r"SL TO[:\s@]+", r"STOP LOSS TO[:\s]+", r"STOP TO[:\s]+",
    r"Move SL to[:\s]+", r"Move StopLoss to[:\s]+", r"Move Stop to[:\s]+",
    r"Change SL to[:\s]+", r"Change StopLoss to[:\s]+", r"Change Stop to[:\s]+",
    r"Adjust SL to[:\s]+", r"Adjust StopLoss to[:\s]+", r"Adjust Stop to[:\s]+",
    r"Modify SL to[:\s]+", r"Modify StopLoss to[:\s]+", r"Modify Stop to[:\s]+",
    r"STOP LOSS[.\s]*",
    r"Stop loss at[:\s]+", r"SL at[:\s]+", r"Stop at[:\s]+",
)


def _first_numeric_group(match: re.Match[str]) -> str | None:
    for value in match.groups():
        if value and value.replace(".", "").isdigit():
            return value
    return None


# ``None`` from the "open" rule is an explicit "no stop" and still ends the cascade.
STOP_LOSS_PATTERNS: tuple[tuple[str, re.Pattern[str], Extractor], ...] = (
    (
        "open",
        re.compile(r"SL[:\s]*open|StopLoss[:\s]*open|Stop[:\s]*open", flags=re.IGNORECASE),
        lambda m: None,
    ),
    (
        "stop",
        re.compile(_NOT_AFTER_DIRECTION + r"Stop[:\s]+" + _NUM, flags=re.IGNORECASE),
        lambda m: m.group(1),
    ),
    (
        "keyword",
        re.compile(
            _NOT_AFTER_DIRECTION + "(" + "|".join(keyword + _NUM for keyword in _SL_KEYWORDS) + ")",
            flags=re.IGNORECASE,
        ),
        _first_numeric_group,
    ),
)

TAKE_PROFIT_CONNECTORS = (r"at", r"to", r":", r"=", r"@", r"\.")

TAKE_PROFIT_PATTERN = re.compile(
    "|".join(
        rf"(?:{label}(?:\s*\d)?\s*(?:{'|'.join(TAKE_PROFIT_CONNECTORS)})?[:\s]+([0-9.]+|open))"
        for label in (r"TP", r"Target", r"TakeProfit", r"Take Profit")
    ),
    flags=re.IGNORECASE,
)

AUX_ACTION_PATTERNS: tuple[tuple[AuxAction, re.Pattern[str]], ...] = (
    (
        AuxAction.CLOSE,
        re.compile(
            r"\b(close trade|close|close now|exit|close position|terminate|liquidate)\b", flags=re.IGNORECASE
        ),
    ),
    (
        AuxAction.DELETE_ORDER,
        re.compile(
            r"\b(cancel order|delete order|delete|cancel|void|remove order|scrap order)\b", flags=re.IGNORECASE
        ),
    ),
    (
        AuxAction.PARTIAL_CLOSE,
        re.compile(
            r"\b(partial close|partial|reduce position|scale out|take some profit|exit partial)\b",
            flags=re.IGNORECASE,
        ),
    ),
    (
        AuxAction.MOVE_TO_BREAKEVEN,
        re.compile(r"\b(breakeven|be|move to be|set to be|move stop to be)\b", flags=re.IGNORECASE),
    ),
    (
        AuxAction.MODIFY,
        re.compile(r"\b(modify|change|move|adjust|edit|revise|tweak)\b", flags=re.IGNORECASE),
    ),
)

# Checked in order. Broker suffixes such as XAUUSDm still match the full pair names.
SYMBOL_ALIASES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"XAUUSD"), "XAUUSD"),
    (re.compile(r"EURUSD"), "EURUSD"),
    (re.compile(r"GBPUSD"), "GBPUSD"),
    (re.compile(r"USDJPY"), "USDJPY"),
    (re.compile(r"BTCUSD"), "BTCUSD"),
    (re.compile(r"NAS100"), "NAS100"),
    (re.compile(r"\bUS30\b"), "US30"),
    (re.compile(r"\bGOLD\b"), "XAUUSD"),
    (re.compile(r"\bBTC\b"), "BTCUSD"),
    (re.compile(r"\bETH\b"), "ETH"),
)

_ACTION_SYMBOL_RE = re.compile(
    r"\b(?:BUY|SELL|LONG|SHORT)(?:\s*(?:LIMIT|STOP))?\s+([A-Z][A-Z0-9]{2,11})\b", flags=re.IGNORECASE
)
_HASH_SYMBOL_RE = re.compile(r"#([A-Z0-9]{2,12})")
_NOT_SYMBOLS = {"NOW", "LIMIT", "STOP", "AT", "ENTRY", "PRICE", "MARKET"}


def _first_match(
    table: tuple[tuple[str, re.Pattern[str], Extractor], ...], text: str
) -> tuple[str, str | None] | None:
    for rule, pattern, extract in table:
        match = pattern.search(text)
        if match:
            return rule, extract(match)
    return None


class SignalParser:
    """Turns raw alert text into a ParsedSignal, or None when the text carries no instruction."""

    def __init__(self, default_symbol: str | None = "XAUUSD") -> None:
        self.default_symbol = default_symbol

    def normalize_text(self, raw_text: str) -> str:
        text = _NON_ASCII_RE.sub("", raw_text or "")
        text = text.replace(":-", "")
        return _DISALLOWED_RE.sub("", text)

    def compute_hash(self, raw_text: str) -> str:
        normalized = collapse_whitespace(raw_text or "").lower()
        return hashlib.sha256(normalized.encode("utf-8")).hexdigest()

    def parse(
        self,
        raw_text: str,
        timestamp: datetime | None = None,
        channel: str = "",
    ) -> ParsedSignal | None:
        text = self.normalize_text(raw_text)

        action = self.match_action(text)
        actions = self.match_actions(text)
        if action is None and not actions:
            return None

        entry = MARKET_ENTRY
        entry_match = self.match_entry(text)
        if entry_match is not None:
            rule, value = entry_match
            if rule == "range" or parse_price(value) is not None:
                entry = value or MARKET_ENTRY

        stop_match = self.match_stop_loss(text)
        stop_loss = parse_price(stop_match[1]) if stop_match else None

        take_profits = self.match_take_profits(text)
        if not take_profits and action is not None:
            take_profits = {"TP1": 0.0}

        return ParsedSignal(
            action=action,
            symbol=self.extract_symbol(raw_text or ""),
            entry=entry,
            stop_loss=stop_loss,
            take_profits=take_profits,
            actions=actions,
            timestamp=timestamp,
            channel=channel,
            raw_text=raw_text,
        )

    def match_action(self, text: str) -> SignalAction | None:
        match = _ACTION_RE.search(text)
        if not match or match.lastgroup is None:
            return None
        return ACTION_PATTERNS[int(match.lastgroup[1:])][1]

    def match_entry(self, text: str) -> tuple[str, str | None] | None:
        return _first_match(ENTRY_PATTERNS, text)

    def match_stop_loss(self, text: str) -> tuple[str, str | None] | None:
        return _first_match(STOP_LOSS_PATTERNS, text)

    def match_take_profits(self, text: str) -> dict[str, float]:
        take_profits: dict[str, float] = {}
        for match in TAKE_PROFIT_PATTERN.finditer(text):
            value = next((group for group in match.groups() if group is not None), None)
            if value is None:
                continue
            if value.lower() == "open":
                price = 0.0
            else:
                price = parse_price(value) or 0.0
            take_profits[f"TP{len(take_profits) + 1}"] = price
        return take_profits

    def match_actions(self, text: str) -> frozenset[AuxAction]:
        return frozenset(action for action, pattern in AUX_ACTION_PATTERNS if pattern.search(text))

    def extract_symbol(self, text: str) -> str | None:
        upper = text.upper()
        for pattern, symbol in SYMBOL_ALIASES:
            if pattern.search(upper):
                return symbol

        for match in _ACTION_SYMBOL_RE.finditer(text):
            candidate = match.group(1).upper()
            if candidate not in _NOT_SYMBOLS:
                return candidate

        hash_match = _HASH_SYMBOL_RE.search(upper)
        if hash_match:
            return hash_match.group(1)
        return self.default_symbol

    def format_signal(self, signal: ParsedSignal) -> str:
        """Render a signal back into the canonical alert layout."""
        lines: list[str] = []
        head = " ".join(part for part in (signal.action.value if signal.action else None, signal.symbol) if part)
        if head:
            lines.append(head)
        if signal.action is not None:
            lines.append(f"Entry: {signal.entry}")
            lines.append(f"SL: {_format_price(signal.stop_loss) if signal.stop_loss else 'open'}")
        for label, value in signal.take_profits.items():
            lines.append(f"{label}: {_format_price(value) if value else 'open'}")
        if signal.actions:
            ordered = [action.value for action, _ in AUX_ACTION_PATTERNS if action in signal.actions]
            lines.append("Actions: " + ", ".join(ordered))
        return "\n".join(lines)


def _format_price(value: float) -> str:
    return str(int(value)) if value == int(value) else str(value)
