"""
Logging setup shared by every module.

Console output goes through Rich by default; `fmt="json"` switches to one
JSON object per line for log shippers. A run id context variable is
stamped on every record so a whole sync pass can be correlated.
"""

import contextvars
import json
import logging
from datetime import datetime, timezone
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "rewind"

run_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("run_id", default="-")

_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "run_id"}


def set_run_context(run_id: str) -> contextvars.Token:
    """Bind a run id to log records emitted from the current context."""
    return run_id_var.set(run_id)


def reset_run_context(token: contextvars.Token) -> None:
    run_id_var.reset(token)


class ContextFilter(logging.Filter):
    """Injects the current run id into every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = run_id_var.get()
        return True


class JsonFormatter(logging.Formatter):
    """Single-line JSON output including structured `extra` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": getattr(record, "run_id", "-"),
        }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            try:
                json.dumps(value)
                payload[key] = value
            except (TypeError, ValueError):
                payload[key] = str(value)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", fmt: str = "rich") -> None:
    """Configure the package logger. Safe to call more than once."""
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    if fmt == "json":
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
    else:
        handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    handler.addFilter(ContextFilter())
    logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger namespaced under the package root."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
