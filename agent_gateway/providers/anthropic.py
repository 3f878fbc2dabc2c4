# agent_gateway/providers/anthropic.py
# Anthropic Messages API: Schlüssel im x-api-key-Header
from __future__ import annotations

from typing import Any

from ..errors import ParseFailure
from ..models import ChatRequest, ChatResult, ProviderDescriptor, ProviderRequest
from .base import ProviderAdapter, normalize_usage, optional_str

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicAdapter(ProviderAdapter):
    """
    Anthropic Claude.
    Antwort: content ist eine Liste von Blöcken, nur Text-Blöcke werden übernommen.
    Usage: input_tokens / output_tokens (kein Gesamtwert → wird summiert).
    """

    name = "anthropic"
    default_model = "claude-sonnet-4-5-20250929"

    def build_request(
        self, descriptor: ProviderDescriptor, credential: str | None, request: ChatRequest
    ) -> ProviderRequest:
        headers = self.base_headers()
        headers["x-api-key"] = credential or ""
        headers["anthropic-version"] = ANTHROPIC_VERSION
        return ProviderRequest(
            url=f"{descriptor.endpoint_base.rstrip('/')}/messages",
            headers=headers,
            body={
                "model": self.resolve_model(request.options),
                "max_tokens": self.max_tokens(request.options),
                "messages": [{"role": "user", "content": request.text}],
                "temperature": self.temperature(request.options),
            },
        )

    def parse_response(self, descriptor: ProviderDescriptor, raw: Any) -> ChatResult:
        if not isinstance(raw, dict):
            raise ParseFailure(descriptor.name, detail="Antwort ist kein JSON-Objekt")
        blocks = raw.get("content")
        parts: list[str] = []
        if isinstance(blocks, list):
            for block in blocks:
                if isinstance(block, dict) and block.get("type", "text") == "text":
                    text = block.get("text")
                    if isinstance(text, str):
                        parts.append(text)
        content = "".join(parts)
        if not content.strip():
            raise ParseFailure(descriptor.name, detail="content[].text fehlt")

        return ChatResult(
            content=content,
            provider_name=descriptor.name,
            model=optional_str(raw.get("model")),
            usage=normalize_usage(raw.get("usage")),
        )
