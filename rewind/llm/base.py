"""Provider-agnostic LLM interface and shared types."""

import json
from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import BaseModel


class LLMError(Exception):
    """Raised when an LLM provider call fails.

    `retryable` marks transient failures (timeouts, rate limits, 5xx) that
    a later attempt may get past.
    """

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


@dataclass
class LLMResponse:
    """Provider-agnostic response from an LLM call."""

    parsed: dict[str, Any]
    raw_text: str
    input_tokens: int
    output_tokens: int


class LLMClient(Protocol):
    """Protocol that all LLM providers must implement."""

    model: str

    def generate(
        self,
        prompt: str,
        system: str,
        response_schema: type[BaseModel],
    ) -> LLMResponse:
        """Generate a structured JSON response."""
        ...


def parse_json_text(raw_text: str, provider: str) -> dict[str, Any]:
    """Decode a JSON payload returned as text; malformed output is not retryable."""
    if not raw_text:
        return {}
    try:
        parsed = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise LLMError(f"{provider} response parsing failed: {exc}") from exc
    if not isinstance(parsed, dict):
        raise LLMError(f"{provider} response was not a JSON object")
    return parsed
