"""LLM provider factory and shared exports."""

from typing import Literal

from .base import LLMClient, LLMError, LLMResponse
from .retry import RetryClient

Provider = Literal["gemini", "openai", "anthropic"]

PROVIDER_DEFAULTS: dict[Provider, str] = {
    "gemini": "gemini-2.5-flash",
    "openai": "gpt-4o-mini",
    "anthropic": "claude-sonnet-4-20250514",
}

# USD per million tokens (input, output)
PRICING: dict[str, tuple[float, float]] = {
    "gemini-2.5-flash": (0.30, 2.50),
    "gpt-4o-mini": (0.15, 0.60),
    "claude-sonnet-4-20250514": (3.00, 15.00),
}


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Approximate spend for one call; unknown models cost 0."""
    input_rate, output_rate = PRICING.get(model, (0.0, 0.0))
    return (input_tokens * input_rate + output_tokens * output_rate) / 1_000_000


def create_client(
    provider: Provider,
    api_key: str,
    model: str | None = None,
    max_retries: int = 2,
    timeout_seconds: int = 120,
) -> RetryClient:
    """Create an LLM client for the given provider, wrapped with retry logic."""
    if provider not in PROVIDER_DEFAULTS:
        raise LLMError(f"Unknown LLM provider: {provider}")

    resolved_model = model or PROVIDER_DEFAULTS[provider]

    try:
        match provider:
            case "gemini":
                from .gemini import GeminiClient

                inner = GeminiClient(api_key=api_key, model=resolved_model, timeout_seconds=timeout_seconds)
            case "openai":
                from .openai import OpenAIClient

                inner = OpenAIClient(api_key=api_key, model=resolved_model, timeout_seconds=timeout_seconds)
            case "anthropic":
                from .anthropic import AnthropicClient

                inner = AnthropicClient(api_key=api_key, model=resolved_model, timeout_seconds=timeout_seconds)
    except ImportError as exc:
        raise LLMError(
            f"Missing dependency for provider '{provider}'. "
            f"Install the '{provider}' extra to continue."
        ) from exc

    return RetryClient(inner, max_retries=max_retries)


__all__ = [
    "LLMClient",
    "LLMError",
    "LLMResponse",
    "PRICING",
    "PROVIDER_DEFAULTS",
    "Provider",
    "RetryClient",
    "create_client",
    "estimate_cost",
]
