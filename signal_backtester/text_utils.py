"""Text helpers shared by the message loader, parser and report writer."""

from __future__ import annotations

import re
import unicodedata

_WHITESPACE_RE = re.compile(r"\s+")
_UNSAFE_FILE_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_RESERVED_NAMES = {
    "CON", "PRN", "AUX", "NUL",
    *(f"COM{i}" for i in range(1, 10)),
    *(f"LPT{i}" for i in range(1, 10)),
}


def collapse_whitespace(text: str) -> str:
    """Replace runs of whitespace and newlines with single spaces."""
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def normalize_to_ascii(text: str) -> str:
    """NFKD-decompose and drop everything outside ASCII (accents, emoji)."""
    if not text:
        return text
    return unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")


def safe_file_name(name: str, max_length: int = 60) -> str:
    """Channel name -> filesystem-safe directory name. Empty results become ``Unknown``."""
    cleaned = normalize_to_ascii(name or "")
    cleaned = _UNSAFE_FILE_CHARS_RE.sub("_", cleaned)
    cleaned = re.sub(r"\s+", "_", cleaned)
    cleaned = re.sub(r"_+", "_", cleaned).strip("._ ")
    if cleaned.upper() in _RESERVED_NAMES:
        cleaned += "_"
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length].rstrip("_")
    return cleaned or "Unknown"
