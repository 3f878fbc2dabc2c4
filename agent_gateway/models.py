# agent_gateway/models.py
# Pydantic v2 Datenschemas: Anfragen, Ergebnisse, Provider-Beschreibungen, Fehlerdatensätze
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ─── Gateway: Anfrage und Ergebnis ──────────────────────────────────────────


class ChatOptions(BaseModel):
    """Optionale Parameter pro Aufruf. None = Provider- bzw. Gateway-Standard."""

    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    timeout_ms: int | None = Field(default=None, ge=1)
    retry_attempts: int | None = Field(default=None, ge=1)


class ChatRequest(BaseModel):
    """Generische Chat-Anfrage, wird pro Aufruf erzeugt und danach verworfen."""

    text: str
    options: ChatOptions = Field(default_factory=ChatOptions)


class Usage(BaseModel):
    """Normalisierter Token-Verbrauch (unabhängig vom Provider-Feldnamen)."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatResult(BaseModel):
    """Erfolgreiche Modellantwort. content ist nie leer."""

    content: str = Field(min_length=1)
    provider_name: str
    model: str | None = None
    usage: Usage | None = None


# ─── Provider-Verzeichnis ───────────────────────────────────────────────────


class ProviderDescriptor(BaseModel):
    """Konfigurierter Provider (gehört dem Verzeichnis, für das Gateway read-only)."""

    model_config = ConfigDict(frozen=True)

    name: str
    endpoint_base: str
    credential_env_var: str
    server_side_credential_var: str
    # Welcher Adapter übersetzt für diesen Provider (Standard: name)
    adapter: str | None = None
    requires_credential: bool = True

    @property
    def adapter_name(self) -> str:
        return self.adapter or self.name


class CredentialValidation(BaseModel):
    """Ergebnis der Schlüsselprüfung für einen Provider (Schlüssel nur maskiert)."""

    provider_name: str
    is_valid: bool
    masked_key: str | None = None
    error: str | None = None


class ProviderRequest(BaseModel):
    """Provider-spezifische HTTP-Anfrage, vom Adapter gebaut."""

    url: str
    headers: dict[str, str]
    body: dict[str, Any]
    # Query-Parameter getrennt halten: Schlüssel erscheinen so nie in geloggten URLs
    params: dict[str, str] = Field(default_factory=dict)


class ProviderHealth(BaseModel):
    """Verfügbarkeit eines Providers aus Sicht des Gateways."""

    available: bool
    unavailable_until: datetime | None = None
    last_error: str | None = None


# ─── Fehlererfassung ────────────────────────────────────────────────────────


class TrackedError(BaseModel):
    """Unveränderlicher Fehlerdatensatz im Ring-Puffer des ErrorTrackers."""

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    provider: str | None = None
    code: str | None = None
    http_status: int | None = None
    message: str
    stack_trace: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class HealthVerdict(BaseModel):
    """Abgeleiteter Gesundheitsstatus aus den jüngsten Fehlern."""

    status: HealthStatus
    recent_count: int
    total_count: int
    detail: str


class TopError(BaseModel):
    message: str
    count: int
    last_seen: datetime


class ErrorSummary(BaseModel):
    """Zusammenfassung für Monitoring-Dashboards."""

    total_errors: int
    recent_errors: int
    provider_errors: dict[str, int]
    top_errors: list[TopError]


# ─── Single-Endpoint-Client ─────────────────────────────────────────────────


class AgentContext(BaseModel):
    """Editor-Kontext, der mit einer Agent-Anfrage mitgeschickt wird."""

    current_file: str | None = None
    selected_text: str | None = None
    workspace_root: str | None = None


class AgentRequest(BaseModel):
    id: str
    request: str
    context: AgentContext | None = None


class AgentMetadata(BaseModel):
    model: str | None = None
    tokens_used: int | None = None
    processing_time: float | None = None


class AgentResponse(BaseModel):
    """Antwort des Agent-Endpunkts. success=False trägt eine nutzersichere Meldung."""

    id: str
    response: str
    success: bool
    error: str | None = None
    metadata: AgentMetadata | None = None


class AgentClientConfig(BaseModel):
    """Konfiguration des Single-Endpoint-Clients."""

    model_config = ConfigDict(protected_namespaces=())

    endpoint: str
    timeout_ms: int = Field(default=30000, gt=0)
    api_key: str | None = None
    model_provider: str | None = None
    model_name: str | None = None

    def safe_dict(self) -> dict[str, Any]:
        """Konfiguration ohne Zugangsdaten (für Logs und Anzeige)."""
        return self.model_dump(exclude={"api_key"})


class ConnectionStatus(BaseModel):
    success: bool
    message: str


class ConfigurationStatus(BaseModel):
    is_valid: bool
    missing_vars: list[str]
    warnings: list[str]


# ─── Operator-API ───────────────────────────────────────────────────────────


class ChatApiRequest(BaseModel):
    """Request-Body für POST /v1/chat und /v1/providers/{name}/chat."""

    text: str
    options: ChatOptions | None = None


class GatewayHealthResponse(BaseModel):
    status: HealthStatus
    detail: str
    recent_errors: int
    total_errors: int
    providers: dict[str, ProviderHealth]
