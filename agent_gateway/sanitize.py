# agent_gateway/sanitize.py
# Reine Bereinigungsfunktionen: HTML-Escaping, URL-Prüfung, Kürzen.
# Alle Funktionen sind total: ungültige Eingaben ergeben "" statt einer Ausnahme.
from __future__ import annotations

import html
import re
from urllib.parse import urlsplit

ALLOWED_URL_SCHEMES = frozenset({"http", "https"})
TRUNCATION_MARKER = "..."

# Steuerzeichen außer Tab, Zeilenumbruch und Wagenrücklauf
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


def escape_html(value: str) -> str:
    """
    & < > " ' durch HTML-Entitäten ersetzen.
    & wird zuerst ersetzt, daher kein doppeltes Escaping bei einmaliger Anwendung.
    """
    if not isinstance(value, str):
        return ""
    return html.escape(value, quote=True)


def escape_for_transport(value: str) -> str:
    """
    Nutzertext vor dem Einbetten in ausgehende Anfragen oder Logs bereinigen:
    Steuerzeichen entfernen, HTML-Entitäten kodieren, Rand-Whitespace entfernen.
    """
    if not isinstance(value, str):
        return ""
    return escape_html(_CONTROL_CHARS.sub("", value)).strip()


def validate_url(value: str) -> str:
    """Eingabe unverändert zurückgeben, wenn http(s) mit Host; sonst ""."""
    if not isinstance(value, str):
        return ""
    try:
        parts = urlsplit(value.strip())
    except ValueError:
        return ""
    if parts.scheme.lower() not in ALLOWED_URL_SCHEMES or not parts.netloc:
        return ""
    return value


def truncate(value: str, max_len: int) -> str:
    """
    Auf max_len Zeichen kürzen und "..." anhängen.
    Gesamtlänge bei Kürzung: max_len + 3.
    """
    if not isinstance(value, str):
        return ""
    max_len = max(0, int(max_len))
    if len(value) <= max_len:
        return value
    return value[:max_len] + TRUNCATION_MARKER


def mask_credential(key: str | None, visible: int = 8) -> str | None:
    """Schlüssel für Logs/Health-Ausgaben maskieren: erste Zeichen + '...'."""
    if not key:
        return None
    return key[:visible] + TRUNCATION_MARKER
