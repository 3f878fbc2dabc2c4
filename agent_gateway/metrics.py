# agent_gateway/metrics.py
# Prometheus-Metriken: Anfragen, Latenz, Retries, Quarantäne, erfasste Fehler
from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# ── Metriken-Definitionen ──────────────────────────────────────────────────

REQUEST_COUNT = Counter(
    "agent_gateway_requests_total",
    "Provider-Versuche nach Ergebnis",
    ["provider", "status"],
)

REQUEST_LATENCY = Histogram(
    "agent_gateway_request_latency_ms",
    "Antwortzeit erfolgreicher Provider-Aufrufe in Millisekunden",
    ["provider"],
    buckets=[50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000],
)

RETRY_TOTAL = Counter(
    "agent_gateway_retries_total",
    "Wiederholungsversuche innerhalb eines Providers",
    ["provider"],
)

QUARANTINE_TOTAL = Counter(
    "agent_gateway_provider_quarantine_total",
    "Provider nach abgelehntem Schlüssel (HTTP 401) gesperrt",
    ["provider"],
)

TRACKED_ERRORS_TOTAL = Counter(
    "agent_gateway_tracked_errors_total",
    "Im ErrorTracker erfasste Fehler",
    ["provider", "code"],
)


def get_metrics_response() -> tuple[bytes, str]:
    """Prometheus-Metriken im Textformat zurückgeben."""
    return generate_latest(), CONTENT_TYPE_LATEST
