# tests/test_sanitize.py
# Tests für Escaping, URL-Prüfung und Kürzen
from __future__ import annotations

import pytest

from agent_gateway.sanitize import (
    escape_for_transport,
    escape_html,
    mask_credential,
    truncate,
    validate_url,
)


# ─── escape_html ────────────────────────────────────────────────────────────


class TestEscapeHtml:
    def test_all_special_characters_encoded(self):
        """& < > " ' werden zu Entitäten."""
        assert escape_html("<a href=\"x\">'&'</a>") == (
            "&lt;a href=&quot;x&quot;&gt;&#x27;&amp;&#x27;&lt;/a&gt;"
        )

    def test_ampersand_not_double_escaped(self):
        """& wird zuerst ersetzt: '<' ergibt genau '&lt;', nicht '&amp;lt;'."""
        assert escape_html("<") == "&lt;"

    def test_plain_text_unchanged(self):
        assert escape_html("Hallo Welt") == "Hallo Welt"

    @pytest.mark.parametrize("value", [None, 42, ["<"], {"a": 1}])
    def test_non_string_returns_empty(self, value):
        """Nicht-Strings ergeben '' statt einer Ausnahme."""
        assert escape_html(value) == ""


# ─── escape_for_transport ───────────────────────────────────────────────────


class TestEscapeForTransport:
    def test_strips_surrounding_whitespace(self):
        assert escape_for_transport("  hallo \n") == "hallo"

    def test_removes_control_characters(self):
        """Steuerzeichen verschwinden, Zeilenumbrüche im Text bleiben."""
        assert escape_for_transport("a\x00b\x07c\nd") == "abc\nd"

    def test_escapes_markup(self):
        assert escape_for_transport("<script>") == "&lt;script&gt;"

    def test_whitespace_only_becomes_empty(self):
        assert escape_for_transport(" \t\x00 ") == ""

    def test_non_string_returns_empty(self):
        assert escape_for_transport(None) == ""


# ─── validate_url ───────────────────────────────────────────────────────────


class TestValidateUrl:
    @pytest.mark.parametrize(
        "url",
        ["https://agent.example.com/api", "http://localhost:8080", "HTTPS://Example.com"],
    )
    def test_valid_urls_returned_unchanged(self, url):
        assert validate_url(url) == url

    @pytest.mark.parametrize(
        "url",
        [
            "javascript:alert(1)",
            "ftp://files.example.com",
            "not a url",
            "http://",
            "",
            "//example.com/pfad",
            "http://[::1",
        ],
    )
    def test_invalid_urls_return_empty(self, url):
        """Nur http(s) mit Host ist zulässig, Parserfehler ergeben ''."""
        assert validate_url(url) == ""

    def test_non_string_returns_empty(self):
        assert validate_url(None) == ""


# ─── truncate / mask_credential ─────────────────────────────────────────────


class TestTruncate:
    def test_short_value_unchanged(self):
        assert truncate("abc", 3) == "abc"

    def test_long_value_gets_marker(self):
        """Gekürzt: max_len Zeichen + '...' → Gesamtlänge max_len + 3."""
        result = truncate("abcdef", 3)
        assert result == "abc..."
        assert len(result) == 6

    def test_negative_length_treated_as_zero(self):
        assert truncate("abc", -5) == "..."

    def test_non_string_returns_empty(self):
        assert truncate(None, 10) == ""


class TestMaskCredential:
    def test_only_prefix_visible(self):
        assert mask_credential("sk-abcdefghijklmnop") == "sk-abcde..."

    def test_missing_key_returns_none(self):
        assert mask_credential(None) is None
        assert mask_credential("") is None
