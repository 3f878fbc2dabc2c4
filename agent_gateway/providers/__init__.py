# agent_gateway/providers/__init__.py
# Adapter-Registry: Dispatch vom Provider-Deskriptor zum passenden Adapter
from __future__ import annotations

import logging

from ..errors import ErrorKind, GatewayError
from ..models import ProviderDescriptor
from .anthropic import AnthropicAdapter
from .base import ProviderAdapter, normalize_usage
from .gemini import GeminiAdapter
from .ollama import OllamaAdapter
from .openai import OpenAICompatibleAdapter

logger = logging.getLogger(__name__)

__all__ = [
    "AdapterRegistry",
    "AnthropicAdapter",
    "GeminiAdapter",
    "OllamaAdapter",
    "OpenAICompatibleAdapter",
    "ProviderAdapter",
    "normalize_usage",
]


def _default_adapters() -> dict[str, ProviderAdapter]:
    return {
        "openai": OpenAICompatibleAdapter("openai", "gpt-4o"),
        "groq": OpenAICompatibleAdapter("groq", "llama-3.3-70b-versatile"),
        "perplexity": OpenAICompatibleAdapter("perplexity", "sonar"),
        "xai": OpenAICompatibleAdapter("xai", "grok-beta"),
        "anthropic": AnthropicAdapter(),
        "gemini": GeminiAdapter(),
        "ollama": OllamaAdapter(),
    }


class AdapterRegistry:
    """
    Einzige Stelle, an der nach Provider-Identität verzweigt wird.
    Neuer Provider = neuer Adapter + register().
    """

    def __init__(self, adapters: dict[str, ProviderAdapter] | None = None) -> None:
        self._adapters: dict[str, ProviderAdapter] = (
            _default_adapters() if adapters is None else dict(adapters)
        )

    def register(self, name: str, adapter: ProviderAdapter) -> None:
        if name in self._adapters:
            logger.info("Adapter %s wird ersetzt", name)
        self._adapters[name] = adapter

    def names(self) -> list[str]:
        return list(self._adapters)

    def get(self, descriptor: ProviderDescriptor) -> ProviderAdapter:
        """Adapter für einen Provider abrufen."""
        adapter = self._adapters.get(descriptor.adapter_name)
        if adapter is None:
            raise GatewayError(
                ErrorKind.UNKNOWN_PROVIDER,
                f"Provider {descriptor.name} wird nicht unterstützt",
                provider=descriptor.name,
            )
        return adapter
