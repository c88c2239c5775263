"""Google Gemini implementation of the LLM client interface."""

import httpx
from google import genai
from google.genai import errors, types
from pydantic import BaseModel

from .base import LLMError, LLMResponse, parse_json_text

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class GeminiClient:
    """Google Gemini LLM provider."""

    def __init__(self, api_key: str, model: str, timeout_seconds: int = 120):
        self.client = genai.Client(api_key=api_key)
        self.model = model
        self.timeout_ms = timeout_seconds * 1000

    def generate(
        self,
        prompt: str,
        system: str,
        response_schema: type[BaseModel],
    ) -> LLMResponse:
        """Generate JSON with Gemini and normalize the response."""
        try:
            response = self.client.models.generate_content(
                model=self.model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    system_instruction=system,
                    response_mime_type="application/json",
                    response_schema=response_schema,
                    http_options=types.HttpOptions(timeout=self.timeout_ms),
                ),
            )
        except errors.APIError as exc:
            raise LLMError(
                f"Gemini API call failed: {exc}",
                retryable=exc.code in RETRYABLE_STATUS_CODES,
            ) from exc
        except httpx.TransportError as exc:
            raise LLMError(f"Gemini transport failed: {exc}", retryable=True) from exc

        raw_text = getattr(response, "text", "") or ""
        parsed_obj = getattr(response, "parsed", None)
        if isinstance(parsed_obj, BaseModel):
            parsed = parsed_obj.model_dump()
        elif isinstance(parsed_obj, dict):
            parsed = parsed_obj
        else:
            parsed = parse_json_text(raw_text, "Gemini")

        usage = getattr(response, "usage_metadata", None)
        input_tokens = int(getattr(usage, "prompt_token_count", 0) or 0) if usage else 0
        output_tokens = int(getattr(usage, "candidates_token_count", 0) or 0) if usage else 0

        return LLMResponse(
            parsed=parsed,
            raw_text=raw_text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
