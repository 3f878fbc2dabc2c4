# tests/conftest.py
# Pytest-Konfiguration und gemeinsame Fixtures
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from agent_gateway.directory import EnvCredentialResolver, EnvProviderDirectory
from agent_gateway.error_tracker import ErrorTracker
from agent_gateway.models import ProviderDescriptor

# Formatgültige Test-Schlüssel (keine echten Zugangsdaten)
OPENAI_KEY = "sk-test" + "a" * 24
ANTHROPIC_KEY = "sk-ant-api03-" + "b" * 24
GROQ_KEY = "gsk_" + "c" * 32
GEMINI_KEY = "g" * 39


def make_descriptor(name: str, adapter: str = "openai", **kwargs) -> ProviderDescriptor:
    """Test-Provider mit eigener Basis-URL unter <name>.test."""
    upper = name.upper()
    return ProviderDescriptor(
        name=name,
        endpoint_base=kwargs.pop("endpoint_base", f"https://{name}.test/v1"),
        credential_env_var=f"AGENT_{upper}_API_KEY",
        server_side_credential_var=f"{upper}_API_KEY",
        adapter=adapter,
        **kwargs,
    )


def openai_body(content: str = "Berlin.", model: str = "gpt-4o") -> dict:
    """Minimale Chat-Completions-Antwort."""
    return {
        "id": "chatcmpl-test",
        "model": model,
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 5, "completion_tokens": 3, "total_tokens": 8},
    }


class FakeClock:
    """Steuerbare Uhr für Zeitfenster-Tests (UTC-datetime)."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


class FakeMonotonic:
    """Steuerbare monotone Uhr für Sperrfristen."""

    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


class RecordingSleep:
    """Ersetzt asyncio.sleep im Retry-Loop und protokolliert die Wartezeiten."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def provider_env():
    """Schlüssel für die Test-Provider a, b und c."""
    return {"A_API_KEY": OPENAI_KEY, "B_API_KEY": OPENAI_KEY, "C_API_KEY": OPENAI_KEY}


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def directory(provider_env, monotonic):
    """Verzeichnis mit drei OpenAI-kompatiblen Providern in der Reihenfolge a, b, c."""
    return EnvProviderDirectory(
        [make_descriptor("a"), make_descriptor("b"), make_descriptor("c")],
        EnvCredentialResolver(provider_env),
        clock=monotonic,
    )


@pytest.fixture
def tracker():
    return ErrorTracker(environment="test")


@pytest.fixture
def sleeper():
    return RecordingSleep()
