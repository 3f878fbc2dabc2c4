# agent_gateway/providers/ollama.py
# Ollama: flacher Prompt an /api/generate, Schlüssel optional
from __future__ import annotations

from typing import Any

from ..errors import ParseFailure
from ..models import ChatRequest, ChatResult, ProviderDescriptor, ProviderRequest
from .base import ProviderAdapter, normalize_usage, optional_str


class OllamaAdapter(ProviderAdapter):
    """
    Lokaler oder gehosteter Ollama-Server.
    Kein Nachrichten-Array: der Text geht als flacher 'prompt' raus.
    Token-Zahlen kommen als prompt_eval_count / eval_count.
    """

    name = "ollama"
    default_model = "llama3.2"

    def build_request(
        self, descriptor: ProviderDescriptor, credential: str | None, request: ChatRequest
    ) -> ProviderRequest:
        headers = self.base_headers()
        if credential:
            headers["Authorization"] = f"Bearer {credential}"
        # Präfix entfernen falls vorhanden (z.B. 'ollama/llama3.2' → 'llama3.2')
        model = self.resolve_model(request.options).replace("ollama/", "")
        return ProviderRequest(
            url=f"{descriptor.endpoint_base.rstrip('/')}/api/generate",
            headers=headers,
            body={
                "model": model,
                "prompt": request.text,
                "stream": False,
                "options": {
                    "temperature": self.temperature(request.options),
                    "num_predict": self.max_tokens(request.options),
                },
            },
        )

    def parse_response(self, descriptor: ProviderDescriptor, raw: Any) -> ChatResult:
        if not isinstance(raw, dict):
            raise ParseFailure(descriptor.name, detail="Antwort ist kein JSON-Objekt")
        content = raw.get("response")
        if not isinstance(content, str) or not content.strip():
            raise ParseFailure(descriptor.name, detail="'response' fehlt")

        return ChatResult(
            content=content,
            provider_name=descriptor.name,
            model=optional_str(raw.get("model")),
            usage=normalize_usage(raw),
        )
