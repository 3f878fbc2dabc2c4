# agent_gateway/config.py
# Gateway-Konfiguration: Umgebungsvariablen mit Standardwerten
from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

from .models import AgentClientConfig, ConfigurationStatus

logger = logging.getLogger(__name__)

# ── Gateway-Client ──────────────────────────────────────────────────────────

DEFAULT_TIMEOUT_MS = int(os.getenv("GATEWAY_TIMEOUT_MS", "30000"))
DEFAULT_RETRY_ATTEMPTS = int(os.getenv("GATEWAY_RETRY_ATTEMPTS", "2"))

# Backoff innerhalb eines Providers: 1s, 2s, 4s, gedeckelt bei 5s
BACKOFF_BASE_SEC = 1.0
BACKOFF_MAX_SEC = 5.0

# Quarantäne nach HTTP 401 (abgelehnter Schlüssel)
UNAVAILABLE_COOLDOWN_SEC = float(os.getenv("GATEWAY_UNAVAILABLE_COOLDOWN_SEC", "300"))

# Länge des Anfrage-Auszugs im Fehlerkontext
CONTEXT_EXCERPT_LENGTH = 100

# ── ErrorTracker ────────────────────────────────────────────────────────────

ERROR_TRACKER_CAPACITY = int(os.getenv("ERROR_TRACKER_CAPACITY", "100"))
HEALTH_WINDOW_MINUTES = 5
HEALTH_WARNING_THRESHOLD = 2
HEALTH_CRITICAL_THRESHOLD = 5
SUMMARY_RECENT_MINUTES = 10

ENVIRONMENT = os.getenv("GATEWAY_ENV", "production")

# ── Single-Endpoint-Client ──────────────────────────────────────────────────

ENV_AGENT_ENDPOINT = "AGENT_ENDPOINT"
ENV_AGENT_API_KEY = "AGENT_API_KEY"
ENV_AGENT_MODEL_PROVIDER = "AGENT_MODEL_PROVIDER"
ENV_AGENT_MODEL_NAME = "AGENT_MODEL_NAME"
ENV_AGENT_REQUEST_TIMEOUT = "AGENT_REQUEST_TIMEOUT_MS"

REQUIRED_AGENT_VARS = (ENV_AGENT_ENDPOINT,)

DEFAULT_AGENT_TIMEOUT_MS = 30000


def _parse_timeout(raw: str | None) -> int:
    """Ungültige oder nicht-positive Werte fallen auf den Standard zurück."""
    try:
        value = int(raw) if raw else 0
    except ValueError:
        logger.warning("Ungültiger Timeout-Wert '%s': verwende %dms", raw, DEFAULT_AGENT_TIMEOUT_MS)
        return DEFAULT_AGENT_TIMEOUT_MS
    return value if value > 0 else DEFAULT_AGENT_TIMEOUT_MS


def load_agent_config(
    environ: Mapping[str, str] | None = None, **overrides: Any
) -> AgentClientConfig:
    """
    Agent-Client-Konfiguration laden.
    Priorität: explizite Overrides > Umgebungsvariablen > Standardwerte.
    """
    env = os.environ if environ is None else environ
    values: dict[str, Any] = {
        "endpoint": env.get(ENV_AGENT_ENDPOINT, ""),
        "timeout_ms": _parse_timeout(env.get(ENV_AGENT_REQUEST_TIMEOUT)),
        "api_key": env.get(ENV_AGENT_API_KEY) or None,
        "model_provider": env.get(ENV_AGENT_MODEL_PROVIDER) or None,
        "model_name": env.get(ENV_AGENT_MODEL_NAME) or None,
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return AgentClientConfig(**values)


def check_configuration_status(environ: Mapping[str, str] | None = None) -> ConfigurationStatus:
    """Pflicht- und empfohlene Variablen prüfen, ohne eine Ausnahme zu werfen."""
    env = os.environ if environ is None else environ
    missing = [var for var in REQUIRED_AGENT_VARS if not env.get(var)]

    warnings: list[str] = []
    if not env.get(ENV_AGENT_API_KEY):
        warnings.append(f"{ENV_AGENT_API_KEY} nicht gesetzt, Agent-Endpunkt wird ohne Authentifizierung aufgerufen")
    if not env.get(ENV_AGENT_MODEL_PROVIDER):
        warnings.append(f"{ENV_AGENT_MODEL_PROVIDER} nicht gesetzt, Standard-Provider des Endpunkts wird verwendet")

    return ConfigurationStatus(is_valid=not missing, missing_vars=missing, warnings=warnings)
