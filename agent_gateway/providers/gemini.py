# agent_gateway/providers/gemini.py
# Google Gemini generateContent: Schlüssel als Query-Parameter, 'contents'-Array
from __future__ import annotations

from typing import Any

from ..errors import ParseFailure
from ..models import ChatRequest, ChatResult, ProviderDescriptor, ProviderRequest
from .base import ProviderAdapter, normalize_usage, optional_str


class GeminiAdapter(ProviderAdapter):
    """
    Google Gemini.
    Modell steht im Pfad, nicht im Body. Usage kommt als usageMetadata
    (promptTokenCount / candidatesTokenCount / totalTokenCount).
    """

    name = "gemini"
    default_model = "gemini-2.5-flash"

    def build_request(
        self, descriptor: ProviderDescriptor, credential: str | None, request: ChatRequest
    ) -> ProviderRequest:
        model = self.resolve_model(request.options)
        return ProviderRequest(
            url=f"{descriptor.endpoint_base.rstrip('/')}/models/{model}:generateContent",
            headers=self.base_headers(),
            params={"key": credential or ""},
            body={
                "contents": [{"role": "user", "parts": [{"text": request.text}]}],
                "generationConfig": {
                    "temperature": self.temperature(request.options),
                    "maxOutputTokens": self.max_tokens(request.options),
                },
            },
        )

    def parse_response(self, descriptor: ProviderDescriptor, raw: Any) -> ChatResult:
        if not isinstance(raw, dict):
            raise ParseFailure(descriptor.name, detail="Antwort ist kein JSON-Objekt")
        content = ""
        candidates = raw.get("candidates")
        if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
            candidate_content = candidates[0].get("content")
            parts = candidate_content.get("parts") if isinstance(candidate_content, dict) else None
            if isinstance(parts, list):
                content = "".join(
                    p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)
                )
        if not content.strip():
            raise ParseFailure(descriptor.name, detail="candidates[0].content.parts fehlt")

        return ChatResult(
            content=content,
            provider_name=descriptor.name,
            model=optional_str(raw.get("modelVersion")),
            usage=normalize_usage(raw.get("usageMetadata")),
        )
