"""Anthropic implementation of the LLM client interface."""

import json
from typing import Any

import anthropic
from anthropic import Anthropic
from pydantic import BaseModel

from .base import LLMError, LLMResponse, parse_json_text

_TRANSIENT_ERRORS = (
    anthropic.APITimeoutError,
    anthropic.APIConnectionError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)


class AnthropicClient:
    """Anthropic LLM provider."""

    def __init__(self, api_key: str, model: str, timeout_seconds: int = 120):
        self.client = Anthropic(api_key=api_key, timeout=timeout_seconds, max_retries=0)
        self.model = model

    def generate(
        self,
        prompt: str,
        system: str,
        response_schema: type[BaseModel],
    ) -> LLMResponse:
        """Generate JSON with Anthropic and normalize the response."""
        schema_json = json.dumps(response_schema.model_json_schema(), indent=2)
        user_prompt = (
            f"{prompt}\n\n"
            "Return valid JSON matching this schema exactly, with no surrounding prose:\n"
            f"{schema_json}"
        )

        try:
            response = self.client.messages.create(
                model=self.model,
                system=system,
                max_tokens=8192,
                messages=[{"role": "user", "content": user_prompt}],
            )
        except _TRANSIENT_ERRORS as exc:
            raise LLMError(f"Anthropic API call failed: {exc}", retryable=True) from exc
        except anthropic.AnthropicError as exc:
            raise LLMError(f"Anthropic API call failed: {exc}") from exc

        raw_text = _strip_code_fence(_extract_anthropic_text(response.content))
        parsed = parse_json_text(raw_text, "Anthropic")

        usage = getattr(response, "usage", None)
        input_tokens = int(getattr(usage, "input_tokens", 0) or 0) if usage else 0
        output_tokens = int(getattr(usage, "output_tokens", 0) or 0) if usage else 0

        return LLMResponse(
            parsed=parsed,
            raw_text=raw_text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )


def _extract_anthropic_text(blocks: Any) -> str:
    if not blocks:
        return ""

    text_parts: list[str] = []
    for block in blocks:
        if isinstance(block, dict):
            if block.get("type") == "text":
                text_parts.append(block.get("text", ""))
        elif getattr(block, "type", None) == "text":
            text_parts.append(getattr(block, "text", "") or "")
    return "\n".join(text_parts)


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()
