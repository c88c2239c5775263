"""
Error taxonomy and structured operation results.

Every pipeline failure carries a machine-readable code and an explicit
retryable flag so callers can decide whether to offer a retry.
"""

from pydantic import BaseModel, Field


class PipelineError(Exception):
    """Base class for pipeline failures."""

    code = "pipeline_error"
    retryable = False

    def __init__(self, message: str, *, retryable: bool | None = None):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable

    def to_result(self) -> "OperationResult":
        return OperationResult.failure(self)


class TransportError(PipelineError):
    """Network failure or timeout on a fetch or Summarizer call."""

    code = "transport_error"
    retryable = True


class ParseError(PipelineError):
    """Malformed feed or record."""

    code = "parse_error"


class ConflictError(PipelineError):
    """Duplicate work: a Summary already exists or an operation is in flight."""

    code = "conflict"


class ValidationError(PipelineError):
    """Item cannot be processed, e.g. no summarizable text."""

    code = "validation_error"


class StorageError(PipelineError):
    """Read or write against the store failed."""

    code = "storage_error"
    retryable = True


class SummarizerError(PipelineError):
    """The Summarizer rejected the request."""

    code = "summarizer_error"


class BudgetExceededError(PipelineError):
    """Summarizer spend reached the configured budget; the item is left as is."""

    code = "budget_exceeded"
    retryable = True


class NotFoundError(PipelineError):
    """Requested source or item does not exist."""

    code = "not_found"


class ConfigurationError(PipelineError):
    """Required configuration is missing or invalid. Fatal at start."""

    code = "configuration_error"


class OperationResult(BaseModel):
    """Outcome of an exposed operation."""

    success: bool
    code: str = Field(default="ok", description="Machine-readable outcome code")
    message: str = Field(default="", description="Human-readable message")
    retryable: bool = False

    @classmethod
    def ok(cls, message: str = "") -> "OperationResult":
        return cls(success=True, message=message)

    @classmethod
    def failure(cls, error: PipelineError) -> "OperationResult":
        return cls(
            success=False,
            code=error.code,
            message=error.message,
            retryable=error.retryable,
        )
