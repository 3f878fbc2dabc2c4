# agent_gateway/errors.py
# Fehlerarten und Gateway-Ausnahme: einheitlicher Fehlervertrag für Gateway und Agent-Client
from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Alle Fehlerarten, die das Gateway klassifiziert."""

    NO_VALID_PROVIDERS = "NO_VALID_PROVIDERS"
    INVALID_ENDPOINT = "INVALID_ENDPOINT"
    INVALID_REQUEST = "INVALID_REQUEST"
    UNKNOWN_PROVIDER = "UNKNOWN_PROVIDER"
    MISSING_CREDENTIAL = "MISSING_CREDENTIAL"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    PROVIDER_HTTP_ERROR = "PROVIDER_HTTP_ERROR"
    EMPTY_RESPONSE = "EMPTY_RESPONSE"
    ALL_PROVIDERS_FAILED = "ALL_PROVIDERS_FAILED"
    MAX_RETRIES_EXCEEDED = "MAX_RETRIES_EXCEEDED"


# HTTP-Status, mit dem die Operator-API antwortet (PROVIDER_HTTP_ERROR trägt den Originalstatus)
_DEFAULT_STATUS: dict[ErrorKind, int] = {
    ErrorKind.NO_VALID_PROVIDERS: 503,
    ErrorKind.INVALID_ENDPOINT: 400,
    ErrorKind.INVALID_REQUEST: 422,
    ErrorKind.UNKNOWN_PROVIDER: 400,
    ErrorKind.MISSING_CREDENTIAL: 401,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.NETWORK_ERROR: 502,
    ErrorKind.PROVIDER_HTTP_ERROR: 502,
    ErrorKind.EMPTY_RESPONSE: 502,
    ErrorKind.ALL_PROVIDERS_FAILED: 503,
    ErrorKind.MAX_RETRIES_EXCEEDED: 503,
}


class GatewayError(Exception):
    """
    Strukturierter Gateway-Fehler.

    message ist kurz und für Endnutzer unbedenklich. Provider-interne Details
    (Antwort-Bodies, Rohfehler) stehen ausschließlich in detail und landen nur
    im ErrorTracker, nie in str(error).
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        provider: str | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code if status_code is not None else _DEFAULT_STATUS[kind]
        self.provider = provider
        self.detail = detail

    @property
    def code(self) -> str:
        return self.kind.value

    def to_dict(self) -> dict[str, Any]:
        """Antwortformat für die Operator-API (ohne detail)."""
        payload: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.provider:
            payload["provider"] = self.provider
        return payload

    def __repr__(self) -> str:
        return (
            f"GatewayError(kind={self.kind.value}, status_code={self.status_code}, "
            f"provider={self.provider!r}, message={self.message!r})"
        )


class ParseFailure(GatewayError):
    """Provider-Antwort enthielt keinen verwertbaren Text."""

    def __init__(self, provider: str, detail: str | None = None) -> None:
        super().__init__(
            ErrorKind.EMPTY_RESPONSE,
            f"Leere Antwort von {provider}",
            provider=provider,
            detail=detail,
        )


def is_retryable_error(exc: BaseException) -> bool:
    """
    Nur transiente Fehler werden beim selben Provider wiederholt:
    Timeouts, Netzwerkfehler, leere Antworten, HTTP 5xx und 429.
    Alle anderen 4xx führen sofort zum nächsten Provider.
    """
    if not isinstance(exc, GatewayError):
        return False
    if exc.kind in (ErrorKind.TIMEOUT, ErrorKind.NETWORK_ERROR, ErrorKind.EMPTY_RESPONSE):
        return True
    if exc.kind is ErrorKind.PROVIDER_HTTP_ERROR:
        return exc.status_code >= 500 or exc.status_code == 429
    return False
