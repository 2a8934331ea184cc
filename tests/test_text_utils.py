from __future__ import annotations

from signal_backtester.text_utils import collapse_whitespace, normalize_to_ascii, safe_file_name


class TestTextUtils:
    """Whitespace, ASCII and file-name helpers."""

    def test_collapse_whitespace(self):
        assert collapse_whitespace("  BUY\n\tGOLD   now ") == "BUY GOLD now"
        assert collapse_whitespace("") == ""

    def test_normalize_to_ascii(self):
        assert normalize_to_ascii("Café \U0001F680 Señal") == "Cafe  Senal"

    def test_safe_file_name(self):
        assert safe_file_name("Gold: VIP/Signals") == "Gold_VIP_Signals"
        assert safe_file_name("  ") == "Unknown"
        assert safe_file_name("con") == "con_"
        assert len(safe_file_name("x" * 200)) == 60
