# agent_gateway/agent_client.py
# Single-Endpoint-Client: genau ein Agent-Endpunkt, kein Fallback, wirft nie über die öffentliche Grenze
from __future__ import annotations

import asyncio
import logging
import math
from typing import Any

import httpx
from pydantic import ValidationError

from .config import load_agent_config
from .error_tracker import ErrorTracker
from .errors import ErrorKind, GatewayError
from .models import (
    AgentClientConfig,
    AgentContext,
    AgentMetadata,
    AgentRequest,
    AgentResponse,
    ConnectionStatus,
)
from .sanitize import escape_for_transport, truncate, validate_url

logger = logging.getLogger(__name__)

# Provider-Name, unter dem Fehler dieses Clients im ErrorTracker landen
AGENT_PROVIDER = "agent-endpoint"

CONNECTION_TEST_ID = "connection-test"
CONNECTION_TEST_REQUEST = "ping"


def _sanitize_optional(value: Any) -> str | None:
    return escape_for_transport(value) if isinstance(value, str) and value else None


def _number_or_none(value: Any) -> float | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return None


def _int_or_none(value: Any) -> int | None:
    """Tokenzahlen ganzzahlig übernehmen (1.5 → 1); nicht-endliche Werte verwerfen."""
    number = _number_or_none(value)
    if number is None or not math.isfinite(number):
        return None
    return int(number)


def _build_config(values: dict[str, Any]) -> AgentClientConfig:
    """Konfiguration validieren. Schlägt beim Erzeugen fehl, nicht erst beim ersten Aufruf."""
    endpoint = values.get("endpoint")
    if not endpoint or not validate_url(endpoint):
        raise GatewayError(ErrorKind.INVALID_ENDPOINT, "Ungültige Agent-Endpunkt-URL")
    try:
        return AgentClientConfig(**values)
    except ValidationError as exc:
        fields = sorted({str(error["loc"][0]) for error in exc.errors() if error["loc"]})
        raise GatewayError(
            ErrorKind.INVALID_REQUEST,
            f"Ungültige Agent-Konfiguration: {', '.join(fields) or 'unbekanntes Feld'}",
        ) from exc


class AgentClient:
    """
    Schmaler Client für einen konfigurierten Agent-Endpunkt.

    - Alle Strings der Anfrage werden vor dem Senden bereinigt
    - Alle Strings der Antwort werden vor der Rückgabe bereinigt
    - Ein HTTP-Aufruf pro send(), unter hartem Timeout
    - Fehler ergeben AgentResponse(success=False) mit nutzersicherer Meldung
    """

    def __init__(
        self,
        endpoint: str,
        timeout_ms: int = 30000,
        *,
        api_key: str | None = None,
        model_provider: str | None = None,
        model_name: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        tracker: ErrorTracker | None = None,
    ) -> None:
        self._config = _build_config(
            {
                "endpoint": endpoint,
                "timeout_ms": timeout_ms,
                "api_key": api_key,
                "model_provider": model_provider,
                "model_name": model_name,
            }
        )
        self._http_client = http_client
        self._tracker = tracker

    @classmethod
    def from_config(
        cls,
        config: AgentClientConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        tracker: ErrorTracker | None = None,
    ) -> AgentClient:
        """Client aus einer Konfiguration (Standard: Umgebungsvariablen) erzeugen."""
        config = config or load_agent_config()
        return cls(
            config.endpoint,
            config.timeout_ms,
            api_key=config.api_key,
            model_provider=config.model_provider,
            model_name=config.model_name,
            http_client=http_client,
            tracker=tracker,
        )

    # ── Konfiguration ──────────────────────────────────────────────────────

    def current_config(self) -> dict[str, Any]:
        """Aktuelle Konfiguration ohne API-Schlüssel."""
        return self._config.safe_dict()

    def update_config(self, **changes: Any) -> None:
        """Konfiguration teilweise ändern. Ungültige Werte lassen die alte Konfiguration stehen."""
        values = self._config.model_dump()
        values.update(changes)
        self._config = _build_config(values)
        logger.info("Agent-Client-Konfiguration aktualisiert: %s", self._config.safe_dict())

    # ── Anfragen ───────────────────────────────────────────────────────────

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        if self._config.model_provider:
            headers["X-Model-Provider"] = self._config.model_provider
        if self._config.model_name:
            headers["X-Model-Name"] = self._config.model_name
        return headers

    @staticmethod
    def _sanitize_request(request: AgentRequest) -> AgentRequest:
        context = None
        if request.context is not None:
            context = AgentContext(
                current_file=_sanitize_optional(request.context.current_file),
                selected_text=_sanitize_optional(request.context.selected_text),
                workspace_root=_sanitize_optional(request.context.workspace_root),
            )
        return AgentRequest(
            id=escape_for_transport(request.id),
            request=escape_for_transport(request.request),
            context=context,
        )

    @staticmethod
    def _sanitize_response(data: Any) -> AgentResponse:
        """Antwort eines möglicherweise kompromittierten Backends entschärfen."""
        if not isinstance(data, dict):
            data = {}
        metadata = None
        raw_metadata = data.get("metadata")
        if isinstance(raw_metadata, dict):
            metadata = AgentMetadata(
                model=_sanitize_optional(raw_metadata.get("model")),
                tokens_used=_int_or_none(
                    raw_metadata.get("tokens_used", raw_metadata.get("tokensUsed"))
                ),
                processing_time=_number_or_none(
                    raw_metadata.get("processing_time", raw_metadata.get("processingTime"))
                ),
            )
        return AgentResponse(
            id=escape_for_transport(data.get("id") or ""),
            response=escape_for_transport(data.get("response") or ""),
            success=bool(data.get("success")),
            error=_sanitize_optional(data.get("error")),
            metadata=metadata,
        )

    def _failure(self, request_id: str, response: str, error: GatewayError) -> AgentResponse:
        """Fehler erfassen und als nutzersichere Antwort zurückgeben."""
        logger.warning("Agent-Anfrage %s fehlgeschlagen: %s", request_id, error.message)
        if self._tracker is not None:
            self._tracker.record(AGENT_PROVIDER, error, {"request_id": request_id})
        return AgentResponse(id=request_id, response=response, success=False, error=error.message)

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        timeout = self._config.timeout_ms / 1000
        if self._http_client is not None:
            return await asyncio.wait_for(
                self._http_client.post(self._config.endpoint, headers=self._headers(), json=payload),
                timeout=timeout,
            )
        # Nur Connect-Timeout: die Gesamtdauer begrenzt asyncio.wait_for
        async with httpx.AsyncClient(timeout=httpx.Timeout(None, connect=10.0)) as client:
            return await asyncio.wait_for(
                client.post(self._config.endpoint, headers=self._headers(), json=payload),
                timeout=timeout,
            )

    async def send(self, request: AgentRequest | dict[str, Any]) -> AgentResponse:
        """Anfrage an den Agent-Endpunkt senden. Wirft nie."""
        try:
            if not isinstance(request, AgentRequest):
                request = AgentRequest.model_validate(request)
        except ValidationError:
            raw_id = request.get("id") if isinstance(request, dict) else None
            return self._failure(
                escape_for_transport(raw_id if isinstance(raw_id, str) else ""),
                "Fehler: Ungültige Anfrage",
                GatewayError(ErrorKind.INVALID_REQUEST, "Ungültige Anfrage"),
            )

        sanitized = self._sanitize_request(request)
        payload = {
            "id": sanitized.id,
            "request": sanitized.request,
            "context": sanitized.context.model_dump(exclude_none=True) if sanitized.context else {},
            "model": self._config.model_name,
            "provider": self._config.model_provider,
        }

        try:
            response = await self._post(payload)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return self._failure(
                sanitized.id,
                "Zeitüberschreitung: Der Agent hat nicht rechtzeitig geantwortet",
                GatewayError(
                    ErrorKind.TIMEOUT,
                    "Zeitüberschreitung",
                    provider=AGENT_PROVIDER,
                    detail=f"{self._config.timeout_ms}ms überschritten",
                ),
            )
        except httpx.HTTPError as exc:
            return self._failure(
                sanitized.id,
                "Netzwerkfehler: Agent-Endpunkt nicht erreichbar",
                GatewayError(
                    ErrorKind.NETWORK_ERROR,
                    "Netzwerkverbindung fehlgeschlagen",
                    provider=AGENT_PROVIDER,
                    detail=f"{type(exc).__name__}: {exc}",
                ),
            )

        if not response.is_success:
            return self._failure(
                sanitized.id,
                f"Fehler: HTTP {response.status_code}",
                GatewayError(
                    ErrorKind.PROVIDER_HTTP_ERROR,
                    f"HTTP {response.status_code}",
                    status_code=response.status_code,
                    provider=AGENT_PROVIDER,
                    detail=truncate(response.text, 500),
                ),
            )

        try:
            data = response.json()
        except ValueError:
            return self._failure(
                sanitized.id,
                "Fehler: Ungültige Antwort vom Agent-Endpunkt",
                GatewayError(
                    ErrorKind.EMPTY_RESPONSE,
                    "Ungültige Antwort vom Agent-Endpunkt",
                    provider=AGENT_PROVIDER,
                    detail=truncate(response.text, 500),
                ),
            )
        try:
            return self._sanitize_response(data)
        except ValidationError as exc:
            return self._failure(
                sanitized.id,
                "Fehler: Ungültige Antwort vom Agent-Endpunkt",
                GatewayError(
                    ErrorKind.EMPTY_RESPONSE,
                    "Ungültige Antwort vom Agent-Endpunkt",
                    provider=AGENT_PROVIDER,
                    detail=truncate(str(exc), 500),
                ),
            )

    async def test_connection(self) -> ConnectionStatus:
        """Minimale Test-Anfrage senden und Erreichbarkeit melden."""
        response = await self.send(
            AgentRequest(id=CONNECTION_TEST_ID, request=CONNECTION_TEST_REQUEST)
        )
        if response.success:
            return ConnectionStatus(success=True, message="Verbindung zum Agent erfolgreich")
        return ConnectionStatus(
            success=False, message=response.error or "Verbindungstest fehlgeschlagen"
        )
