# agent_gateway/directory.py
# Provider-Verzeichnis: konfigurierte Provider, Schlüsselprüfung, zeitlich begrenzte Sperren
from __future__ import annotations

import logging
import os
import re
import threading
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Protocol, runtime_checkable

from .models import CredentialValidation, ProviderDescriptor
from .sanitize import mask_credential

logger = logging.getLogger(__name__)

# Standard-Sperrdauer, wenn eine Dauerangabe nicht lesbar ist
DEFAULT_UNAVAILABLE_SEC = 5 * 60

MIN_CREDENTIAL_LENGTH = 10

# Reihenfolge = Fallback-Priorität (erster Eintrag wird zuerst versucht)
DEFAULT_PROVIDERS: list[ProviderDescriptor] = [
    ProviderDescriptor(
        name="openai",
        endpoint_base="https://api.openai.com/v1",
        credential_env_var="AGENT_OPENAI_API_KEY",
        server_side_credential_var="OPENAI_API_KEY",
    ),
    ProviderDescriptor(
        name="anthropic",
        endpoint_base="https://api.anthropic.com/v1",
        credential_env_var="AGENT_ANTHROPIC_API_KEY",
        server_side_credential_var="ANTHROPIC_API_KEY",
    ),
    ProviderDescriptor(
        name="perplexity",
        endpoint_base="https://api.perplexity.ai",
        credential_env_var="AGENT_PERPLEXITY_API_KEY",
        server_side_credential_var="PERPLEXITY_API_KEY",
    ),
    ProviderDescriptor(
        name="xai",
        endpoint_base="https://api.x.ai/v1",
        credential_env_var="AGENT_XAI_API_KEY",
        server_side_credential_var="XAI_API_KEY",
    ),
    ProviderDescriptor(
        name="groq",
        endpoint_base="https://api.groq.com/openai/v1",
        credential_env_var="AGENT_GROQ_API_KEY",
        server_side_credential_var="GROQ_API_KEY",
    ),
    ProviderDescriptor(
        name="gemini",
        endpoint_base="https://generativelanguage.googleapis.com/v1beta",
        credential_env_var="AGENT_GEMINI_API_KEY",
        server_side_credential_var="GEMINI_API_KEY",
    ),
]

OLLAMA_DEFAULT_URL = "http://localhost:11434"

# Ollama nur bei gesetzter Variable, sonst gibt es keinen schlüssellosen Provider
OLLAMA_ENV_VARS = ("OLLAMA_URL", "OLLAMA_API_KEY", "AGENT_OLLAMA_API_KEY")


def default_providers(environ: Mapping[str, str] | None = None) -> list[ProviderDescriptor]:
    """
    Standard-Provider in Fallback-Reihenfolge.
    Ollama wird nur angehängt, wenn die Umgebung es ausdrücklich einrichtet.
    Die Umgebung wird beim Aufruf gelesen, nicht beim Import.
    """
    env = os.environ if environ is None else environ
    providers = list(DEFAULT_PROVIDERS)
    if any(env.get(var) for var in OLLAMA_ENV_VARS):
        # Lokaler Fallback: kein Schlüssel nötig, optionaler Bearer für gehostete Instanzen
        providers.append(
            ProviderDescriptor(
                name="ollama",
                endpoint_base=env.get("OLLAMA_URL") or OLLAMA_DEFAULT_URL,
                credential_env_var="AGENT_OLLAMA_API_KEY",
                server_side_credential_var="OLLAMA_API_KEY",
                requires_credential=False,
            )
        )
    return providers


# Schlüsselformate pro Adapter (unbekannte Adapter: nur Basisprüfung)
CREDENTIAL_PATTERNS: dict[str, re.Pattern[str]] = {
    "openai": re.compile(r"^sk-[a-zA-Z0-9\-_]{20,}$"),
    "anthropic": re.compile(r"^sk-ant-api\d{2}-[a-zA-Z0-9\-_]{20,}$"),
    "perplexity": re.compile(r"^pplx-[a-zA-Z0-9]{32,}$"),
    "xai": re.compile(r"^xai-[a-zA-Z0-9]{32,}$"),
    "groq": re.compile(r"^gsk_[a-zA-Z0-9]{32,}$"),
    "gemini": re.compile(r"^[a-zA-Z0-9\-_]{32,}$"),
}

_DURATION_PATTERN = re.compile(r"^(\d+)(s|min|h)$")
_DURATION_UNITS = {"s": 1, "min": 60, "h": 3600}


def parse_duration(duration: float | int | timedelta | str) -> float:
    """
    Dauer in Sekunden umrechnen.
    Akzeptiert Sekunden, timedelta oder "30s" / "5min" / "1h"; Unlesbares → 5 Minuten.
    """
    if isinstance(duration, timedelta):
        return duration.total_seconds()
    if isinstance(duration, (int, float)):
        return float(duration)
    match = _DURATION_PATTERN.match(duration.strip()) if isinstance(duration, str) else None
    if not match:
        logger.warning("Unlesbare Dauer '%s': verwende %ds", duration, DEFAULT_UNAVAILABLE_SEC)
        return float(DEFAULT_UNAVAILABLE_SEC)
    return float(int(match.group(1)) * _DURATION_UNITS[match.group(2)])


def validate_credential(adapter: str, credential: str | None) -> bool:
    """Basisprüfung (Länge, Platzhalter) plus providerspezifisches Format."""
    if not credential or len(credential) < MIN_CREDENTIAL_LENGTH or "undefined" in credential:
        return False
    pattern = CREDENTIAL_PATTERNS.get(adapter.lower())
    return bool(pattern.match(credential)) if pattern else True


CredentialResolver = Callable[[ProviderDescriptor], str | None]


class EnvCredentialResolver:
    """
    Schlüssel pro Provider aus einer Umgebung lesen:
    serverseitige Variable zuerst, danach die Client-Variable.
    Die Umgebung wird injiziert, damit Tests keinen globalen Prozesszustand ändern.
    """

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = environ

    def __call__(self, descriptor: ProviderDescriptor) -> str | None:
        env = os.environ if self._environ is None else self._environ
        return (
            env.get(descriptor.server_side_credential_var)
            or env.get(descriptor.credential_env_var)
            or None
        )


@runtime_checkable
class ProviderDirectory(Protocol):
    """Vertrag, den das Gateway vom Provider-Verzeichnis konsumiert."""

    def list_configured_providers(self) -> list[ProviderDescriptor]: ...

    def validate_credentials(self) -> list[CredentialValidation]: ...

    def is_available(self, provider_name: str) -> bool: ...

    def mark_unavailable(
        self, provider_name: str, duration: float | timedelta | str
    ) -> None: ...


class EnvProviderDirectory:
    """
    In-Memory-Verzeichnis mit Schlüsseln aus der Umgebung.

    Verfügbarkeit: Provider-Name → Ablaufzeitpunkt (monotone Uhr).
    Kein Hintergrund-Timer: abgelaufene Sperren werden beim nächsten Lesen entfernt.
    Schreibzugriffe laufen unter einem Lock (mehrere Gateways können ein Verzeichnis teilen).
    """

    def __init__(
        self,
        providers: list[ProviderDescriptor] | None = None,
        resolver: CredentialResolver | None = None,
        *,
        environ: Mapping[str, str] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._providers = list(default_providers(environ) if providers is None else providers)
        names = [p.name for p in self._providers]
        if len(names) != len(set(names)):
            raise ValueError(f"Provider-Namen müssen eindeutig sein: {names}")
        self._resolver = resolver or EnvCredentialResolver(environ)
        self._clock = clock
        self._unavailable_until: dict[str, float] = {}
        self._lock = threading.Lock()

    @property
    def credential_resolver(self) -> CredentialResolver:
        return self._resolver

    def list_configured_providers(self) -> list[ProviderDescriptor]:
        return list(self._providers)

    def validate_credentials(self) -> list[CredentialValidation]:
        """Schlüssel aller Provider prüfen (in Verzeichnis-Reihenfolge)."""
        results: list[CredentialValidation] = []
        for descriptor in self._providers:
            credential = self._resolver(descriptor)
            if not descriptor.requires_credential:
                is_valid = True
            else:
                is_valid = validate_credential(descriptor.adapter_name, credential)
            results.append(
                CredentialValidation(
                    provider_name=descriptor.name,
                    is_valid=is_valid,
                    masked_key=mask_credential(credential) if is_valid else None,
                    error=None if is_valid else "Schlüssel fehlt oder hat ungültiges Format",
                )
            )
        return results

    def is_available(self, provider_name: str) -> bool:
        with self._lock:
            until = self._unavailable_until.get(provider_name)
            if until is None:
                return True
            if self._clock() >= until:
                # Sperre abgelaufen → lazy entfernen
                del self._unavailable_until[provider_name]
                logger.info("Provider %s wieder verfügbar (Sperre abgelaufen)", provider_name)
                return True
            return False

    def mark_unavailable(self, provider_name: str, duration: float | timedelta | str) -> None:
        seconds = parse_duration(duration)
        with self._lock:
            self._unavailable_until[provider_name] = self._clock() + seconds
        logger.warning("Provider %s für %.0fs gesperrt", provider_name, seconds)

    def unavailable_until(self, provider_name: str) -> datetime | None:
        """Ablaufzeitpunkt einer aktiven Sperre als UTC-Zeitpunkt (für Health-Ausgaben)."""
        if self.is_available(provider_name):
            return None
        with self._lock:
            until = self._unavailable_until.get(provider_name)
        if until is None:
            return None
        remaining = max(0.0, until - self._clock())
        return datetime.now(timezone.utc) + timedelta(seconds=remaining)
