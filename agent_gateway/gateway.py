# agent_gateway/gateway.py
# Gateway-Client: Provider-Auswahl → Versuche mit Backoff → Fallback → Ergebnis oder Sammelfehler
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

import httpx
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from . import config
from .directory import CredentialResolver, EnvCredentialResolver, ProviderDirectory
from .error_tracker import ErrorTracker
from .errors import ErrorKind, GatewayError, ParseFailure, is_retryable_error
from .metrics import QUARANTINE_TOTAL, REQUEST_COUNT, REQUEST_LATENCY, RETRY_TOTAL
from .models import (
    ChatOptions,
    ChatRequest,
    ChatResult,
    ProviderDescriptor,
    ProviderHealth,
    ProviderRequest,
)
from .providers import AdapterRegistry, ProviderAdapter
from .sanitize import escape_for_transport, truncate

logger = logging.getLogger(__name__)

# Maximale Länge des Provider-Fehlerbodys, der im ErrorTracker landet
ERROR_BODY_EXCERPT = 500


class GatewayClient:
    """
    Zustandsmaschine pro Aufruf:
    SELECT_PROVIDER → ATTEMPT → (SUCCESS | RETRY | NEXT_PROVIDER) → … → SUCCESS | EXHAUSTED

    - Provider in Verzeichnis-Reihenfolge (= Fallback-Priorität), streng sequentiell
    - Pro Provider bis zu retry_attempts Versuche, Backoff 1s, 2s, 4s … max. 5s
    - 5xx, 429, Netzwerkfehler, Timeouts und leere Antworten: Retry beim selben Provider
    - übrige 4xx: sofort nächster Provider; 401 sperrt den Provider zusätzlich für 5 Minuten
    - Jeder Fehlversuch wird im ErrorTracker erfasst
    """

    def __init__(
        self,
        directory: ProviderDirectory,
        tracker: ErrorTracker,
        *,
        credential_resolver: CredentialResolver | None = None,
        http_client: httpx.AsyncClient | None = None,
        adapters: AdapterRegistry | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        default_timeout_ms: int = config.DEFAULT_TIMEOUT_MS,
        default_retry_attempts: int = config.DEFAULT_RETRY_ATTEMPTS,
        unavailable_cooldown: float | timedelta = config.UNAVAILABLE_COOLDOWN_SEC,
    ) -> None:
        if default_retry_attempts < 1:
            raise ValueError("default_retry_attempts muss mindestens 1 sein")
        self._directory = directory
        self._tracker = tracker
        self._credential_resolver = (
            credential_resolver
            or getattr(directory, "credential_resolver", None)
            or EnvCredentialResolver()
        )
        self._client = http_client
        # Injizierte Clients gehören dem Aufrufer und werden nicht geschlossen
        self._owns_client = http_client is None
        self._adapters = adapters or AdapterRegistry()
        self._sleep = sleep
        self._default_timeout_ms = default_timeout_ms
        self._default_retry_attempts = default_retry_attempts
        self._unavailable_cooldown = unavailable_cooldown

    @property
    def tracker(self) -> ErrorTracker:
        return self._tracker

    @property
    def directory(self) -> ProviderDirectory:
        return self._directory

    # ── Lifecycle ──────────────────────────────────────────────────────────

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            # Gesamt-Timeout pro Versuch erzwingt das Gateway selbst (asyncio.wait_for)
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(None, connect=10.0),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
        return self._client

    async def initialize(self) -> None:
        """Async HTTP-Client mit Verbindungspool erstellen."""
        self._get_client()

    async def shutdown(self) -> None:
        """HTTP-Client schließen (nur wenn selbst erstellt)."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> GatewayClient:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    # ── Öffentliche Schnittstelle ──────────────────────────────────────────

    async def chat(
        self, text: str, options: ChatOptions | dict[str, Any] | None = None
    ) -> ChatResult:
        """
        Anfrage mit automatischem Fallback über alle gültigen, verfügbaren Provider.

        Raises:
            GatewayError(NO_VALID_PROVIDERS): kein Provider mit gültigem Schlüssel verfügbar
            GatewayError(ALL_PROVIDERS_FAILED): alle Kandidaten fehlgeschlagen
        """
        request = self._prepare(text, options)
        excerpt = truncate(request.text, config.CONTEXT_EXCERPT_LENGTH)

        candidates = self._select_providers()
        if not candidates:
            error = GatewayError(
                ErrorKind.NO_VALID_PROVIDERS,
                "Keine gültigen API-Schlüssel konfiguriert oder alle Provider vorübergehend gesperrt",
            )
            self._tracker.track_error(error, {"message": excerpt})
            raise error

        failures: dict[str, GatewayError] = {}
        for descriptor in candidates:
            logger.info("Versuche Provider %s", descriptor.name)
            try:
                result = await self._chat_with_descriptor(descriptor, request, excerpt)
            except GatewayError as exc:
                failures[descriptor.name] = exc
                logger.warning("Provider %s fehlgeschlagen: %s", descriptor.name, exc.message)
                continue
            logger.info("Antwort von Provider %s erhalten", descriptor.name)
            return result

        details = "; ".join(f"{name}: {exc.message}" for name, exc in failures.items())
        logger.error("Alle %d Provider fehlgeschlagen", len(failures))
        raise GatewayError(
            ErrorKind.ALL_PROVIDERS_FAILED,
            f"Alle verfügbaren Provider fehlgeschlagen: {details}",
        )

    async def chat_with_specific_provider(
        self,
        provider_name: str,
        text: str,
        options: ChatOptions | dict[str, Any] | None = None,
    ) -> ChatResult:
        """Anfrage an genau einen Provider, ohne Fallback (Retries gelten weiterhin)."""
        request = self._prepare(text, options)
        excerpt = truncate(request.text, config.CONTEXT_EXCERPT_LENGTH)

        descriptor = next(
            (d for d in self._directory.list_configured_providers() if d.name == provider_name),
            None,
        )
        if descriptor is None:
            error = GatewayError(
                ErrorKind.UNKNOWN_PROVIDER,
                f"Provider {escape_for_transport(provider_name)} ist nicht konfiguriert",
            )
            self._tracker.track_error(error, {"message": excerpt})
            raise error
        return await self._chat_with_descriptor(descriptor, request, excerpt)

    def provider_health(self) -> dict[str, ProviderHealth]:
        """Verfügbarkeit und letzter Fehler je konfiguriertem Provider."""
        validations = {v.provider_name: v for v in self._directory.validate_credentials()}
        unavailable_until = getattr(self._directory, "unavailable_until", None)

        health: dict[str, ProviderHealth] = {}
        for descriptor in self._directory.list_configured_providers():
            validation = validations.get(descriptor.name)
            credential_ok = validation is not None and validation.is_valid
            available = credential_ok and self._directory.is_available(descriptor.name)

            last = self._tracker.latest_for(descriptor.name)
            if last is not None:
                last_error = last.message
            elif not credential_ok:
                last_error = "API-Schlüssel fehlt oder ist ungültig"
            else:
                last_error = None

            health[descriptor.name] = ProviderHealth(
                available=available,
                unavailable_until=(
                    unavailable_until(descriptor.name) if callable(unavailable_until) else None
                ),
                last_error=last_error,
            )
        return health

    # ── Interne Schritte ───────────────────────────────────────────────────

    def _prepare(self, text: str, options: ChatOptions | dict[str, Any] | None) -> ChatRequest:
        """Optionen validieren, Text vor jeder ausgehenden Anfrage bereinigen."""
        try:
            opts = options if isinstance(options, ChatOptions) else ChatOptions.model_validate(options or {})
        except ValidationError as exc:
            raise GatewayError(ErrorKind.INVALID_REQUEST, "Ungültige Anfrageoptionen") from exc

        sanitized = escape_for_transport(text)
        if not sanitized:
            raise GatewayError(ErrorKind.INVALID_REQUEST, "Anfragetext ist leer")
        return ChatRequest(text=sanitized, options=opts)

    def _select_providers(self) -> list[ProviderDescriptor]:
        """Gültiger Schlüssel UND verfügbar; Verzeichnis-Reihenfolge bleibt erhalten."""
        valid = {v.provider_name for v in self._directory.validate_credentials() if v.is_valid}
        return [
            d
            for d in self._directory.list_configured_providers()
            if d.name in valid and self._directory.is_available(d.name)
        ]

    async def _chat_with_descriptor(
        self, descriptor: ProviderDescriptor, request: ChatRequest, excerpt: str
    ) -> ChatResult:
        """Versuche bei einem Provider, sequentiell mit exponentiellem Backoff."""
        try:
            adapter = self._adapters.get(descriptor)
        except GatewayError as exc:
            self._tracker.record(descriptor.name, exc, {"message": excerpt})
            raise

        credential = self._credential_resolver(descriptor)
        if descriptor.requires_credential and not credential:
            error = GatewayError(
                ErrorKind.MISSING_CREDENTIAL,
                f"Kein API-Schlüssel für {descriptor.name} konfiguriert",
                provider=descriptor.name,
            )
            self._tracker.record(descriptor.name, error, {"message": excerpt})
            raise error

        attempts = request.options.retry_attempts or self._default_retry_attempts
        timeout_ms = request.options.timeout_ms or self._default_timeout_ms

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=config.BACKOFF_BASE_SEC, max=config.BACKOFF_MAX_SEC),
            retry=retry_if_exception(is_retryable_error),
            before_sleep=self._log_retry(descriptor.name, attempts),
            sleep=self._sleep,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    result = await self._attempt(
                        descriptor,
                        adapter,
                        credential,
                        request,
                        excerpt=excerpt,
                        attempt_number=attempt.retry_state.attempt_number,
                        timeout_ms=timeout_ms,
                    )
        except RetryError as exc:
            last = exc.last_attempt.exception()
            last_message = getattr(last, "message", str(last))
            raise GatewayError(
                ErrorKind.MAX_RETRIES_EXCEEDED,
                f"Nach {attempts} Versuchen fehlgeschlagen ({last_message})",
                provider=descriptor.name,
            ) from last
        return result

    @staticmethod
    def _parse(descriptor: ProviderDescriptor, adapter: ProviderAdapter, raw: Any) -> ChatResult:
        """Adapter-Ergebnis übernehmen. Unerwartete Fehler beim Lesen der Antwort → ParseFailure."""
        try:
            return adapter.parse_response(descriptor, raw)
        except GatewayError:
            raise
        except Exception as exc:
            logger.warning(
                "Antwort von %s nicht lesbar: %s: %s", descriptor.name, type(exc).__name__, exc
            )
            raise ParseFailure(
                descriptor.name, detail=truncate(f"{type(exc).__name__}: {exc}", 500)
            ) from exc

    async def _attempt(
        self,
        descriptor: ProviderDescriptor,
        adapter: ProviderAdapter,
        credential: str | None,
        request: ChatRequest,
        *,
        excerpt: str,
        attempt_number: int,
        timeout_ms: int,
    ) -> ChatResult:
        """Ein einzelner Versuch: bauen → senden (mit Timeout) → parsen."""
        provider_request = adapter.build_request(descriptor, credential, request)
        start_time = time.monotonic()
        try:
            raw = await self._send(descriptor, provider_request, timeout_ms)
            result = self._parse(descriptor, adapter, raw)
        except GatewayError as exc:
            REQUEST_COUNT.labels(provider=descriptor.name, status="error").inc()
            self._tracker.record(
                descriptor.name,
                exc,
                {
                    "message": excerpt,
                    "attempt": attempt_number,
                    "model": adapter.resolve_model(request.options),
                },
            )
            if exc.kind is ErrorKind.PROVIDER_HTTP_ERROR and exc.status_code == 401:
                self._quarantine(descriptor.name)
            raise

        latency_ms = (time.monotonic() - start_time) * 1000
        REQUEST_COUNT.labels(provider=descriptor.name, status="success").inc()
        REQUEST_LATENCY.labels(provider=descriptor.name).observe(latency_ms)
        logger.info(
            "Provider %s antwortete in %.0fms (Versuch %d)",
            descriptor.name, latency_ms, attempt_number,
        )
        return result

    async def _send(
        self, descriptor: ProviderDescriptor, provider_request: ProviderRequest, timeout_ms: int
    ) -> Any:
        """
        HTTP POST unter hartem Timeout. asyncio.wait_for bricht den laufenden
        Aufruf ab, ein langsames Netzwerk überlebt den Timeout also nicht.
        """
        client = self._get_client()
        try:
            response = await asyncio.wait_for(
                client.post(
                    provider_request.url,
                    headers=provider_request.headers,
                    params=provider_request.params or None,
                    json=provider_request.body,
                ),
                timeout=timeout_ms / 1000,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise GatewayError(
                ErrorKind.TIMEOUT,
                f"Zeitüberschreitung nach {timeout_ms}ms",
                provider=descriptor.name,
            ) from exc
        except httpx.HTTPError as exc:
            raise GatewayError(
                ErrorKind.NETWORK_ERROR,
                f"Netzwerkfehler bei {descriptor.name}",
                provider=descriptor.name,
                detail=f"{type(exc).__name__}: {exc}",
            ) from exc

        if not response.is_success:
            raise GatewayError(
                ErrorKind.PROVIDER_HTTP_ERROR,
                f"HTTP {response.status_code} von {descriptor.name}",
                status_code=response.status_code,
                provider=descriptor.name,
                detail=truncate(response.text, ERROR_BODY_EXCERPT),
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ParseFailure(descriptor.name, detail="Antwort ist kein gültiges JSON") from exc

    def _quarantine(self, provider_name: str) -> None:
        """Abgelehnter Schlüssel: Provider im Verzeichnis vorübergehend sperren lassen."""
        self._directory.mark_unavailable(provider_name, self._unavailable_cooldown)
        QUARANTINE_TOTAL.labels(provider=provider_name).inc()
        logger.warning("Provider %s nach HTTP 401 vorübergehend gesperrt", provider_name)

    @staticmethod
    def _log_retry(provider_name: str, attempts: int) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            RETRY_TOTAL.labels(provider=provider_name).inc()
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                "Wiederhole %s (Versuch %d/%d) in %.1fs",
                provider_name, retry_state.attempt_number + 1, attempts, delay,
            )

        return before_sleep
