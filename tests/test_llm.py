"""Tests for LLM factory and retry behavior."""

import sys
from types import ModuleType

import pytest
from pydantic import BaseModel

from rewind.llm import LLMError, LLMResponse, create_client, estimate_cost
from rewind.llm.base import parse_json_text
from rewind.llm.retry import RetryClient


class _DummyClient:
    def __init__(self, api_key: str, model: str, timeout_seconds: int = 120):
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds


class _Schema(BaseModel):
    value: str


class _FlakyClient:
    model = "flaky"

    def __init__(self, errors: list[LLMError]):
        self.errors = list(errors)
        self.calls = 0

    def generate(self, prompt, system, response_schema):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return LLMResponse(parsed={"value": "ok"}, raw_text='{"value": "ok"}', input_tokens=1, output_tokens=1)


def _install(monkeypatch: pytest.MonkeyPatch, provider: str, class_name: str) -> None:
    module = ModuleType(f"rewind.llm.{provider}")
    setattr(module, class_name, _DummyClient)
    monkeypatch.setitem(sys.modules, f"rewind.llm.{provider}", module)


def test_create_client_openai_uses_provider_default(monkeypatch: pytest.MonkeyPatch) -> None:
    """Factory should pass provider default model when model is omitted."""
    _install(monkeypatch, "openai", "OpenAIClient")

    client = create_client(provider="openai", api_key="test-key")

    assert isinstance(client, RetryClient)
    assert isinstance(client.inner, _DummyClient)
    assert client.inner.api_key == "test-key"
    assert client.inner.model == "gpt-4o-mini"
    assert client.model == "gpt-4o-mini"


def test_create_client_anthropic_uses_explicit_model(monkeypatch: pytest.MonkeyPatch) -> None:
    """Factory should preserve explicitly passed model."""
    _install(monkeypatch, "anthropic", "AnthropicClient")

    client = create_client(provider="anthropic", api_key="test-key", model="claude-custom")

    assert client.inner.model == "claude-custom"


def test_create_client_passes_timeout_and_retries(monkeypatch: pytest.MonkeyPatch) -> None:
    """Factory should forward the per-call timeout and retry budget."""
    _install(monkeypatch, "gemini", "GeminiClient")

    client = create_client(provider="gemini", api_key="test-key", max_retries=5, timeout_seconds=30)

    assert client.max_retries == 5
    assert client.inner.timeout_seconds == 30
    assert client.inner.model == "gemini-2.5-flash"


def test_create_client_missing_dependency_raises_llm_error(monkeypatch: pytest.MonkeyPatch) -> None:
    """Factory should wrap dependency import errors as LLMError."""
    monkeypatch.delitem(sys.modules, "rewind.llm.openai", raising=False)
    monkeypatch.setitem(sys.modules, "openai", None)

    with pytest.raises(LLMError, match="Missing dependency"):
        create_client(provider="openai", api_key="test-key")


def test_create_client_unknown_provider_raises_llm_error() -> None:
    """Factory should reject unsupported provider strings."""
    with pytest.raises(LLMError):
        create_client(provider="unknown", api_key="test-key")  # type: ignore[arg-type]


class TestRetryClient:
    def test_retries_transient_errors_with_backoff(self):
        delays = []
        inner = _FlakyClient([LLMError("503", retryable=True), LLMError("429", retryable=True)])
        client = RetryClient(inner, max_retries=2, base_delay=1.0, sleep=delays.append)

        response = client.generate("p", "s", _Schema)

        assert response.parsed == {"value": "ok"}
        assert inner.calls == 3
        assert delays == [1.0, 2.0]

    def test_gives_up_after_budget(self):
        inner = _FlakyClient([LLMError("503", retryable=True)] * 3)
        client = RetryClient(inner, max_retries=2, sleep=lambda _: None)

        with pytest.raises(LLMError):
            client.generate("p", "s", _Schema)
        assert inner.calls == 3

    def test_permanent_error_is_not_retried(self):
        inner = _FlakyClient([LLMError("invalid key")])
        client = RetryClient(inner, max_retries=2, sleep=lambda _: None)

        with pytest.raises(LLMError):
            client.generate("p", "s", _Schema)
        assert inner.calls == 1


class TestHelpers:
    def test_parse_json_text(self):
        assert parse_json_text('{"a": 1}', "Test") == {"a": 1}
        assert parse_json_text("", "Test") == {}

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]"])
    def test_parse_json_text_rejects_non_objects(self, raw):
        with pytest.raises(LLMError) as excinfo:
            parse_json_text(raw, "Test")
        assert not excinfo.value.retryable

    def test_estimate_cost(self):
        assert estimate_cost("gpt-4o-mini", 1_000_000, 1_000_000) == pytest.approx(0.75)
        assert estimate_cost("unknown-model", 500, 500) == 0.0
