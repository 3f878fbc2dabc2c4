# agent_gateway/providers/base.py
# Abstrakte Basisklasse: reine Übersetzung generische Anfrage ↔ Provider-Wire-Format
from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Any

from ..models import ChatOptions, ChatRequest, ChatResult, ProviderDescriptor, ProviderRequest, Usage

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2000

# Feldnamen der Provider → normalisierte Usage-Felder (erster Treffer gewinnt)
_PROMPT_TOKEN_FIELDS = ("prompt_tokens", "input_tokens", "promptTokenCount", "prompt_eval_count")
_COMPLETION_TOKEN_FIELDS = (
    "completion_tokens",
    "output_tokens",
    "candidatesTokenCount",
    "eval_count",
)
_TOTAL_TOKEN_FIELDS = ("total_tokens", "totalTokenCount")


def _first_int(data: dict[str, Any], fields: tuple[str, ...]) -> int | None:
    for field in fields:
        value = data.get(field)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
            return int(value)
    return None


def optional_str(value: Any) -> str | None:
    """Nur echte Strings übernehmen (z. B. Modellnamen aus fremden Antworten)."""
    return value if isinstance(value, str) and value else None


def normalize_usage(raw: Any) -> Usage | None:
    """
    Token-Zähler aus beliebigem Provider-Format normalisieren.
    Fehlt total, wird prompt + completion summiert.
    """
    if not isinstance(raw, dict):
        return None
    prompt = _first_int(raw, _PROMPT_TOKEN_FIELDS)
    completion = _first_int(raw, _COMPLETION_TOKEN_FIELDS)
    total = _first_int(raw, _TOTAL_TOKEN_FIELDS)
    if prompt is None and completion is None and total is None:
        return None
    prompt = prompt or 0
    completion = completion or 0
    return Usage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=total if total is not None else prompt + completion,
    )


class ProviderAdapter(ABC):
    """
    Basis für alle Provider-Adapter.
    Adapter sind zustandslos und ohne I/O: build_request() baut die HTTP-Anfrage,
    parse_response() extrahiert Text und Usage. Netzwerk macht ausschließlich das Gateway.
    """

    name: str = "base"
    default_model: str = ""

    def resolve_model(self, options: ChatOptions) -> str:
        return options.model or self.default_model

    @staticmethod
    def temperature(options: ChatOptions) -> float:
        # 0.0 ist ein gültiger Wert und darf nicht auf den Standard fallen
        return DEFAULT_TEMPERATURE if options.temperature is None else options.temperature

    @staticmethod
    def max_tokens(options: ChatOptions) -> int:
        return options.max_tokens or DEFAULT_MAX_TOKENS

    @staticmethod
    def base_headers() -> dict[str, str]:
        return {"Content-Type": "application/json"}

    @abstractmethod
    def build_request(
        self, descriptor: ProviderDescriptor, credential: str | None, request: ChatRequest
    ) -> ProviderRequest:
        """Provider-spezifische URL, Header (inkl. Schlüssel) und Body bauen."""
        ...

    @abstractmethod
    def parse_response(self, descriptor: ProviderDescriptor, raw: Any) -> ChatResult:
        """Antworttext extrahieren. Leerer Text → ParseFailure."""
        ...
