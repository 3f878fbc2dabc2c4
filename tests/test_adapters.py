# tests/test_adapters.py
# Tests für Provider-Adapter: Request-Aufbau, Antwort-Parsing, Usage-Normalisierung
from __future__ import annotations

import pytest

from agent_gateway.errors import ErrorKind, GatewayError, ParseFailure
from agent_gateway.models import ChatOptions, ChatRequest
from agent_gateway.providers import (
    AdapterRegistry,
    AnthropicAdapter,
    GeminiAdapter,
    OllamaAdapter,
    OpenAICompatibleAdapter,
    normalize_usage,
)

from conftest import ANTHROPIC_KEY, GEMINI_KEY, OPENAI_KEY, make_descriptor, openai_body


def make_chat(text: str = "Hallo", **options) -> ChatRequest:
    return ChatRequest(text=text, options=ChatOptions(**options))


# ─── Usage-Normalisierung ───────────────────────────────────────────────────


class TestNormalizeUsage:
    def test_openai_fields(self):
        usage = normalize_usage({"prompt_tokens": 5, "completion_tokens": 3, "total_tokens": 8})
        assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (5, 3, 8)

    def test_gemini_fields(self):
        usage = normalize_usage(
            {"promptTokenCount": 4, "candidatesTokenCount": 6, "totalTokenCount": 10}
        )
        assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (4, 6, 10)

    def test_total_summed_when_missing(self):
        usage = normalize_usage({"input_tokens": 7, "output_tokens": 2})
        assert usage.total_tokens == 9

    @pytest.mark.parametrize("raw", [None, {}, {"andere": 1}, "text"])
    def test_no_usage_returns_none(self, raw):
        assert normalize_usage(raw) is None

    def test_non_numeric_and_infinite_counts_ignored(self):
        usage = normalize_usage(
            {"prompt_tokens": float("inf"), "input_tokens": 4, "completion_tokens": "3"}
        )
        assert usage.prompt_tokens == 4
        assert usage.completion_tokens == 0
        assert usage.total_tokens == 4


# ─── OpenAI-kompatibel ──────────────────────────────────────────────────────


class TestOpenAICompatibleAdapter:
    def setup_method(self):
        self.adapter = OpenAICompatibleAdapter("openai", "gpt-4o")
        self.descriptor = make_descriptor("openai", endpoint_base="https://api.openai.com/v1/")

    def test_build_request_defaults(self):
        request = self.adapter.build_request(self.descriptor, OPENAI_KEY, make_chat())
        assert request.url == "https://api.openai.com/v1/chat/completions"
        assert request.headers["Authorization"] == f"Bearer {OPENAI_KEY}"
        assert request.body["model"] == "gpt-4o"
        assert request.body["messages"] == [{"role": "user", "content": "Hallo"}]
        assert request.body["temperature"] == 0.7
        assert request.body["max_tokens"] == 2000
        assert request.params == {}

    def test_explicit_zero_temperature_honoured(self):
        request = self.adapter.build_request(self.descriptor, OPENAI_KEY, make_chat(temperature=0))
        assert request.body["temperature"] == 0

    def test_gpt5_uses_max_completion_tokens(self):
        request = self.adapter.build_request(
            self.descriptor, OPENAI_KEY, make_chat(model="gpt-5-mini", max_tokens=50)
        )
        assert request.body["max_completion_tokens"] == 50
        assert "max_tokens" not in request.body

    def test_parse_response(self):
        result = self.adapter.parse_response(self.descriptor, openai_body("Berlin."))
        assert result.content == "Berlin."
        assert result.provider_name == "openai"
        assert result.model == "gpt-4o"
        assert result.usage.total_tokens == 8

    @pytest.mark.parametrize(
        "raw",
        [
            openai_body(""),
            openai_body("   "),
            {"choices": []},
            {"choices": [{"message": None}]},
            {"choices": [{"message": ["x"]}]},
            {"choices": [{"message": {"content": ["x"]}}]},
            {"choices": ["x"]},
            {"choices": "x"},
            ["keine", "map"],
        ],
    )
    def test_empty_content_is_parse_failure(self, raw):
        with pytest.raises(ParseFailure) as exc_info:
            self.adapter.parse_response(self.descriptor, raw)
        assert exc_info.value.kind == ErrorKind.EMPTY_RESPONSE

    @pytest.mark.parametrize("model", [123, None, {"id": "gpt-4o"}, ["gpt-4o"], ""])
    def test_non_string_model_dropped(self, model):
        raw = openai_body("Berlin.")
        raw["model"] = model
        result = self.adapter.parse_response(self.descriptor, raw)
        assert result.content == "Berlin."
        assert result.model is None

    def test_malformed_usage_ignored(self):
        raw = openai_body("Berlin.")
        raw["usage"] = ["prompt_tokens", 5]
        assert self.adapter.parse_response(self.descriptor, raw).usage is None


# ─── Anthropic ──────────────────────────────────────────────────────────────


class TestAnthropicAdapter:
    def setup_method(self):
        self.adapter = AnthropicAdapter()
        self.descriptor = make_descriptor(
            "anthropic", adapter="anthropic", endpoint_base="https://api.anthropic.com/v1"
        )

    def test_credential_in_custom_header(self):
        request = self.adapter.build_request(self.descriptor, ANTHROPIC_KEY, make_chat())
        assert request.url == "https://api.anthropic.com/v1/messages"
        assert request.headers["x-api-key"] == ANTHROPIC_KEY
        assert request.headers["anthropic-version"] == "2023-06-01"
        assert "Authorization" not in request.headers
        assert request.body["model"] == "claude-sonnet-4-5-20250929"

    def test_text_blocks_joined(self):
        raw = {
            "model": "claude-sonnet-4-5-20250929",
            "content": [
                {"type": "text", "text": "Hallo "},
                {"type": "tool_use", "name": "suche"},
                {"type": "text", "text": "Welt"},
            ],
            "usage": {"input_tokens": 10, "output_tokens": 4},
        }
        result = self.adapter.parse_response(self.descriptor, raw)
        assert result.content == "Hallo Welt"
        assert result.usage.prompt_tokens == 10
        assert result.usage.total_tokens == 14

    def test_no_text_blocks_is_parse_failure(self):
        with pytest.raises(ParseFailure):
            self.adapter.parse_response(self.descriptor, {"content": [{"type": "tool_use"}]})

    @pytest.mark.parametrize(
        "content", ["nur text", {"text": "x"}, [{"type": "text", "text": 5}], [["x"]], None]
    )
    def test_malformed_content_is_parse_failure(self, content):
        with pytest.raises(ParseFailure):
            self.adapter.parse_response(self.descriptor, {"content": content})

    def test_non_string_model_dropped(self):
        raw = {"model": 4.5, "content": [{"type": "text", "text": "Hallo"}]}
        assert self.adapter.parse_response(self.descriptor, raw).model is None


# ─── Gemini ─────────────────────────────────────────────────────────────────


class TestGeminiAdapter:
    def setup_method(self):
        self.adapter = GeminiAdapter()
        self.descriptor = make_descriptor(
            "gemini",
            adapter="gemini",
            endpoint_base="https://generativelanguage.googleapis.com/v1beta",
        )

    def test_credential_as_query_parameter(self):
        """Schlüssel steht in params, nicht in der URL selbst."""
        request = self.adapter.build_request(self.descriptor, GEMINI_KEY, make_chat(max_tokens=64))
        assert request.url == (
            "https://generativelanguage.googleapis.com/v1beta/models/"
            "gemini-2.5-flash:generateContent"
        )
        assert GEMINI_KEY not in request.url
        assert request.params == {"key": GEMINI_KEY}
        assert request.body["contents"] == [{"role": "user", "parts": [{"text": "Hallo"}]}]
        assert request.body["generationConfig"]["maxOutputTokens"] == 64

    def test_parse_response(self):
        raw = {
            "candidates": [{"content": {"parts": [{"text": "Ber"}, {"text": "lin"}]}}],
            "modelVersion": "gemini-2.5-flash-001",
            "usageMetadata": {"promptTokenCount": 3, "candidatesTokenCount": 2},
        }
        result = self.adapter.parse_response(self.descriptor, raw)
        assert result.content == "Berlin"
        assert result.model == "gemini-2.5-flash-001"
        assert result.usage.total_tokens == 5

    def test_missing_candidates_is_parse_failure(self):
        with pytest.raises(ParseFailure):
            self.adapter.parse_response(self.descriptor, {"candidates": []})

    @pytest.mark.parametrize(
        "candidate",
        [
            {"content": ["x"]},
            {"content": "Berlin"},
            {"content": {"parts": "Berlin"}},
            {"content": {"parts": {"text": "Berlin"}}},
            {"content": {"parts": [{"text": 42}]}},
        ],
    )
    def test_malformed_candidate_is_parse_failure(self, candidate):
        """Falsch verschachtelte Kandidaten ergeben ParseFailure statt AttributeError."""
        with pytest.raises(ParseFailure) as exc_info:
            self.adapter.parse_response(self.descriptor, {"candidates": [candidate]})
        assert exc_info.value.kind == ErrorKind.EMPTY_RESPONSE

    def test_non_string_model_version_dropped(self):
        raw = {"candidates": [{"content": {"parts": [{"text": "Hi"}]}}], "modelVersion": 2.5}
        assert self.adapter.parse_response(self.descriptor, raw).model is None


# ─── Ollama ─────────────────────────────────────────────────────────────────


class TestOllamaAdapter:
    def setup_method(self):
        self.adapter = OllamaAdapter()
        self.descriptor = make_descriptor(
            "ollama",
            adapter="ollama",
            endpoint_base="http://localhost:11434",
            requires_credential=False,
        )

    def test_flat_prompt_without_credential(self):
        request = self.adapter.build_request(
            self.descriptor, None, make_chat(model="ollama/llama3.2", temperature=0.2)
        )
        assert request.url == "http://localhost:11434/api/generate"
        assert "Authorization" not in request.headers
        assert request.body["model"] == "llama3.2"
        assert request.body["prompt"] == "Hallo"
        assert request.body["stream"] is False
        assert request.body["options"] == {"temperature": 0.2, "num_predict": 2000}

    def test_optional_bearer(self):
        request = self.adapter.build_request(self.descriptor, "gehosteter-key", make_chat())
        assert request.headers["Authorization"] == "Bearer gehosteter-key"

    def test_parse_response(self):
        raw = {"model": "llama3.2", "response": "Berlin.", "prompt_eval_count": 6, "eval_count": 2}
        result = self.adapter.parse_response(self.descriptor, raw)
        assert result.content == "Berlin."
        assert result.usage.total_tokens == 8

    @pytest.mark.parametrize("raw", [{"response": ["Berlin."]}, {"response": {"text": "x"}}, {}])
    def test_malformed_response_is_parse_failure(self, raw):
        with pytest.raises(ParseFailure):
            self.adapter.parse_response(self.descriptor, raw)

    def test_non_string_model_dropped(self):
        raw = {"model": {"name": "llama3.2"}, "response": "Berlin."}
        assert self.adapter.parse_response(self.descriptor, raw).model is None


# ─── Registry ───────────────────────────────────────────────────────────────


class TestAdapterRegistry:
    def setup_method(self):
        self.registry = AdapterRegistry()

    def test_default_adapters(self):
        assert set(self.registry.names()) == {
            "openai",
            "groq",
            "perplexity",
            "xai",
            "anthropic",
            "gemini",
            "ollama",
        }

    def test_dispatch_by_adapter_field(self):
        """Provider-Name und Adapter können abweichen."""
        adapter = self.registry.get(make_descriptor("mein-proxy", adapter="anthropic"))
        assert isinstance(adapter, AnthropicAdapter)

    def test_dispatch_defaults_to_name(self):
        descriptor = make_descriptor("groq", adapter=None)
        assert self.registry.get(descriptor).default_model == "llama-3.3-70b-versatile"

    def test_unknown_adapter_raises(self):
        with pytest.raises(GatewayError) as exc_info:
            self.registry.get(make_descriptor("x", adapter="unbekannt"))
        assert exc_info.value.kind == ErrorKind.UNKNOWN_PROVIDER

    def test_register_new_adapter(self):
        self.registry.register("mistral", OpenAICompatibleAdapter("mistral", "mistral-large"))
        adapter = self.registry.get(make_descriptor("mistral", adapter="mistral"))
        assert adapter.default_model == "mistral-large"
