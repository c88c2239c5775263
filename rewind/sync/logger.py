"""
Structured sync logger.

Wraps a stdlib logger with a scoped context (source, item, operation) so
every record emitted during a sync or summarization carries the same
correlation fields, both in the message prefix and as structured extras.
"""

from __future__ import annotations

import logging
from typing import Any

from rewind.logging_config import get_logger

CONTEXT_FIELDS = ("source_id", "source_name", "item_id", "item_title", "operation")


class SyncLogger:
    """Context-scoped, leveled event emitter."""

    def __init__(self, context: str, log_context: dict[str, Any] | None = None):
        self.context = context
        self.log_context = {
            key: value
            for key, value in (log_context or {}).items()
            if key in CONTEXT_FIELDS and value is not None
        }
        self._logger = get_logger(f"sync.{context.lower()}")

    def child(self, **additional: Any) -> SyncLogger:
        """Create a logger that inherits this context plus `additional`."""
        return SyncLogger(self.context, {**self.log_context, **additional})

    def _log(self, level: int, message: str, data: dict[str, Any] | None) -> None:
        prefix = f"[{self.context}]"
        if name := self.log_context.get("source_name"):
            prefix += f" [{name}]"
        elif item_id := self.log_context.get("item_id"):
            prefix += f" [{item_id}]"

        rendered = f"{prefix} {message}"
        if data:
            details = " ".join(f"{key}={value}" for key, value in data.items())
            rendered = f"{rendered} ({details})"

        self._logger.log(
            level,
            rendered,
            extra={
                "context": self.context,
                "event": message,
                **self.log_context,
                "data": data or {},
            },
        )

    def debug(self, message: str, **data: Any) -> None:
        self._log(logging.DEBUG, message, data)

    def info(self, message: str, **data: Any) -> None:
        self._log(logging.INFO, message, data)

    def warning(self, message: str, **data: Any) -> None:
        self._log(logging.WARNING, message, data)

    def error(self, message: str, **data: Any) -> None:
        self._log(logging.ERROR, message, data)

    def sync_start(self, source_count: int) -> None:
        self.info(f"Starting sync for {source_count} source(s)")

    def sync_complete(self, summary: dict[str, Any]) -> None:
        self.info(
            "Sync completed",
            sources=summary["sources"],
            items=summary["items"],
            duration_seconds=summary["duration_seconds"],
        )

    def source_start(self) -> None:
        self.info("Starting source sync")

    def source_success(self, found: int, added: int, updated: int, skipped: int) -> None:
        self.info(
            "Source sync completed",
            found=found,
            added=added,
            updated=updated,
            skipped=skipped,
        )

    def source_error(self, error: str, code: str | None = None) -> None:
        self.error("Source sync failed", error=error, code=code)

    def item_processed(self, title: str, outcome: str, word_count: int) -> None:
        self.debug(f"Item {outcome}: {title[:60]}", word_count=word_count)

    def summarization_result(
        self,
        title: str,
        success: bool,
        is_retry: bool = False,
        retry_count: int | None = None,
        error: str | None = None,
        tokens_used: int | None = None,
        processing_time_ms: int | None = None,
        quality_score: int | None = None,
    ) -> None:
        if success:
            self.info(
                f"Summarized{' (retry)' if is_retry else ''}: {title[:60]}",
                tokens_used=tokens_used,
                processing_time_ms=processing_time_ms,
                quality_score=quality_score,
            )
        else:
            self.error(
                f"Failed to summarize {title[:60]} (attempt {retry_count or 1})",
                error=error,
            )


def create_sync_logger(context: str, **log_context: Any) -> SyncLogger:
    return SyncLogger(context, log_context)
