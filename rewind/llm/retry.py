"""Retry wrapper applying exponential backoff to transient LLM failures."""

import time
from collections.abc import Callable

from pydantic import BaseModel

from rewind.logging_config import get_logger

from .base import LLMClient, LLMError, LLMResponse

logger = get_logger("llm.retry")


class RetryClient:
    """Wraps an LLMClient and retries calls that fail with a retryable LLMError."""

    def __init__(
        self,
        inner: LLMClient,
        max_retries: int = 2,
        base_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.inner = inner
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep

    @property
    def model(self) -> str:
        return self.inner.model

    def generate(
        self,
        prompt: str,
        system: str,
        response_schema: type[BaseModel],
    ) -> LLMResponse:
        attempt = 0
        while True:
            try:
                return self.inner.generate(prompt, system, response_schema)
            except LLMError as exc:
                if not exc.retryable or attempt >= self.max_retries:
                    raise
                delay = self.base_delay * (2**attempt)
                attempt += 1
                logger.warning(
                    f"LLM call failed ({exc}); retry {attempt}/{self.max_retries} in {delay:.1f}s"
                )
                self._sleep(delay)
