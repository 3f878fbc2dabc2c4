# agent_gateway/main.py
# FastAPI-Anwendung: Chat-Endpunkte, Health, Metriken, Fehler-Administration
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, Response

from .directory import EnvProviderDirectory
from .error_tracker import ErrorTracker
from .errors import ErrorKind, GatewayError
from .gateway import GatewayClient
from .metrics import get_metrics_response
from .models import (
    ChatApiRequest,
    ChatResult,
    ErrorSummary,
    GatewayHealthResponse,
    TrackedError,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(gateway: GatewayClient | None = None) -> FastAPI:
    """
    Anwendung erzeugen. Ohne injiziertes Gateway baut der Lifespan Verzeichnis,
    ErrorTracker und Gateway aus den Umgebungsvariablen und schließt es beim Shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Anwendungs-Lifecycle: Startup-Initialisierung und Shutdown-Bereinigung."""
        owned = gateway is None
        client = gateway or GatewayClient(EnvProviderDirectory(), ErrorTracker())
        await client.initialize()
        app.state.gateway = client

        providers = [d.name for d in client.directory.list_configured_providers()]
        logger.info("Agent-Gateway gestartet, Provider: %s", ", ".join(providers))
        yield

        if owned:
            await client.shutdown()
        logger.info("Agent-Gateway heruntergefahren")

    app = FastAPI(
        title="Agent Gateway",
        description="Multi-Provider LLM-Gateway mit Retry, Fallback und Fehlererfassung",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        # Provider-Status (z.B. 401 vom Upstream) nicht an den Aufrufer durchreichen
        status = 502 if exc.kind is ErrorKind.PROVIDER_HTTP_ERROR else exc.status_code
        return JSONResponse(status_code=status, content=exc.to_dict())

    @app.post("/v1/chat", response_model=ChatResult, tags=["LLM"])
    async def chat(request: Request, payload: ChatApiRequest) -> ChatResult:
        """Chat mit automatischem Fallback über alle verfügbaren Provider."""
        return await request.app.state.gateway.chat(payload.text, payload.options)

    @app.post("/v1/providers/{provider_name}/chat", response_model=ChatResult, tags=["LLM"])
    async def chat_with_provider(
        request: Request, provider_name: str, payload: ChatApiRequest
    ) -> ChatResult:
        """Chat mit genau einem Provider (kein Fallback)."""
        return await request.app.state.gateway.chat_with_specific_provider(
            provider_name, payload.text, payload.options
        )

    @app.get("/health", response_model=GatewayHealthResponse, tags=["Monitoring"])
    async def health_check(request: Request) -> GatewayHealthResponse:
        """Health-Urteil aus den jüngsten Fehlern plus Verfügbarkeit je Provider."""
        client: GatewayClient = request.app.state.gateway
        verdict = client.tracker.health_verdict()
        return GatewayHealthResponse(
            status=verdict.status,
            detail=verdict.detail,
            recent_errors=verdict.recent_count,
            total_errors=verdict.total_count,
            providers=client.provider_health(),
        )

    @app.get("/metrics", include_in_schema=False, tags=["Monitoring"])
    async def prometheus_metrics() -> Response:
        """Prometheus-Metriken im Textformat."""
        data, content_type = get_metrics_response()
        return Response(content=data, media_type=content_type)

    @app.get("/admin/errors", response_model=ErrorSummary, tags=["Admin"])
    async def error_summary(request: Request) -> ErrorSummary:
        """Fehlerzusammenfassung: Gesamt, jüngste, pro Provider, häufigste Meldungen."""
        return request.app.state.gateway.tracker.summary()

    @app.get("/admin/errors/recent", response_model=list[TrackedError], tags=["Admin"])
    async def recent_errors(
        request: Request, minutes: float = Query(default=5, gt=0)
    ) -> list[TrackedError]:
        return request.app.state.gateway.tracker.recent_since(minutes)

    @app.delete("/admin/errors", tags=["Admin"])
    async def clear_errors(request: Request) -> dict:
        """ErrorTracker leeren (explizite Operator-Aktion)."""
        request.app.state.gateway.tracker.clear()
        return {"cleared": True}

    return app


app = create_app()
