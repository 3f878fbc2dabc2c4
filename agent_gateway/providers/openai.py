# agent_gateway/providers/openai.py
# OpenAI-kompatible Chat Completions API: OpenAI, Groq, Perplexity, xAI
from __future__ import annotations

from typing import Any

from ..errors import ParseFailure
from ..models import ChatRequest, ChatResult, ProviderDescriptor, ProviderRequest
from .base import ProviderAdapter, normalize_usage, optional_str


class OpenAICompatibleAdapter(ProviderAdapter):
    """
    Bearer-Token im Authorization-Header, 'messages'-Array im Body.
    Alle Provider mit OpenAI-Format teilen diesen Adapter und unterscheiden
    sich nur im Standardmodell.
    """

    def __init__(self, name: str, default_model: str) -> None:
        self.name = name
        self.default_model = default_model

    def build_request(
        self, descriptor: ProviderDescriptor, credential: str | None, request: ChatRequest
    ) -> ProviderRequest:
        model = self.resolve_model(request.options)
        # GPT-5+ erfordert max_completion_tokens statt max_tokens
        token_param = "max_completion_tokens" if model.startswith("gpt-5") else "max_tokens"

        headers = self.base_headers()
        headers["Authorization"] = f"Bearer {credential}"
        return ProviderRequest(
            url=f"{descriptor.endpoint_base.rstrip('/')}/chat/completions",
            headers=headers,
            body={
                "model": model,
                "messages": [{"role": "user", "content": request.text}],
                "temperature": self.temperature(request.options),
                token_param: self.max_tokens(request.options),
            },
        )

    def parse_response(self, descriptor: ProviderDescriptor, raw: Any) -> ChatResult:
        if not isinstance(raw, dict):
            raise ParseFailure(descriptor.name, detail="Antwort ist kein JSON-Objekt")
        content = ""
        choices = raw.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message") or {}
            if isinstance(message, dict):
                content = message.get("content") or ""
        if not isinstance(content, str) or not content.strip():
            raise ParseFailure(descriptor.name, detail="choices[0].message.content fehlt")

        return ChatResult(
            content=content,
            provider_name=descriptor.name,
            model=optional_str(raw.get("model")),
            usage=normalize_usage(raw.get("usage")),
        )
