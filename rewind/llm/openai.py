"""OpenAI implementation of the LLM client interface."""

from typing import Any

import openai
from openai import OpenAI
from pydantic import BaseModel

from .base import LLMError, LLMResponse, parse_json_text

_TRANSIENT_ERRORS = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class OpenAIClient:
    """OpenAI LLM provider."""

    def __init__(self, api_key: str, model: str, timeout_seconds: int = 120):
        # Retries are handled by RetryClient
        self.client = OpenAI(api_key=api_key, timeout=timeout_seconds, max_retries=0)
        self.model = model

    def generate(
        self,
        prompt: str,
        system: str,
        response_schema: type[BaseModel],
    ) -> LLMResponse:
        """Generate JSON with OpenAI and normalize the response."""
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                response_format={
                    "type": "json_schema",
                    "json_schema": {
                        "name": response_schema.__name__,
                        "schema": response_schema.model_json_schema(),
                    },
                },
            )
        except _TRANSIENT_ERRORS as exc:
            raise LLMError(f"OpenAI API call failed: {exc}", retryable=True) from exc
        except openai.OpenAIError as exc:
            raise LLMError(f"OpenAI API call failed: {exc}") from exc

        message = response.choices[0].message if response.choices else None
        raw_text = _extract_openai_text(message)
        parsed = parse_json_text(raw_text, "OpenAI")

        usage = getattr(response, "usage", None)
        input_tokens = int(getattr(usage, "prompt_tokens", 0) or 0) if usage else 0
        output_tokens = int(getattr(usage, "completion_tokens", 0) or 0) if usage else 0

        return LLMResponse(
            parsed=parsed,
            raw_text=raw_text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )


def _extract_openai_text(message: Any) -> str:
    if message is None:
        return ""

    content = getattr(message, "content", "")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            part.get("text", "") if isinstance(part, dict) else getattr(part, "text", "") or ""
            for part in content
        )
    return str(content or "")
