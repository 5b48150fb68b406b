"""Structured logging setup with operation/backend/caller context support.

Two output formats are supported, controlled by the ``LOG_FORMAT`` environment
variable (mapped to ``settings.log_format``):

- ``text`` (default): human-readable console output for local development.
  Format: ``2024-01-01 12:00:00 | INFO     | yieldrouter.manager | [op=3f2a1b]
           [backend=aave] [caller=vault] | message``

- ``json``: one JSON object per line with fields ``timestamp``, ``level``,
  ``logger``, ``message``, ``operation_id``, ``backend``, ``caller``,
  ``service`` and (on exceptions) ``exc_type`` / ``exc_value`` / ``exc_trace``.

Context propagation:
  The ContextVars below are asyncio-native. The manager sets ``operation_var``
  at the start of each public operation so every log line emitted inside it,
  including lines from the fund mover and backends, carries the same id.
  Use ``bind_context()`` / ``clear_context()`` rather than the vars directly.
"""

import json
import logging
import sys
import traceback
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

operation_var: ContextVar[str | None] = ContextVar("operation_id", default=None)
backend_var: ContextVar[str | None] = ContextVar("backend", default=None)
caller_var: ContextVar[str | None] = ContextVar("caller", default=None)

_SERVICE_NAME = "yieldrouter"


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

class ContextFilter(logging.Filter):
    """Inject operation/backend/caller context into every log record.

    Fields are empty strings when unset so aggregators can filter with
    ``backend != ""``.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.operation_id = operation_var.get() or ""
        record.backend = backend_var.get() or ""
        record.caller = caller_var.get() or ""
        return True


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------

class JSONFormatter(logging.Formatter):
    """Emit one JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=UTC).isoformat()

        payload: dict[str, Any] = {
            "timestamp": ts,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "operation_id": getattr(record, "operation_id", ""),
            "backend": getattr(record, "backend", ""),
            "caller": getattr(record, "caller", ""),
            "service": _SERVICE_NAME,
        }

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            payload["exc_type"] = exc_type.__name__ if exc_type else None
            payload["exc_value"] = str(exc_value)
            payload["exc_trace"] = traceback.format_exception(exc_type, exc_value, exc_tb)

        return json.dumps(payload, default=str)


class _ContextTextFormatter(logging.Formatter):
    """Human-readable formatter that appends only the context fields that are set."""

    _BASE_FMT = "%(asctime)s | %(levelname)-8s | %(name)s"
    _DATE_FMT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(fmt=self._BASE_FMT, datefmt=self._DATE_FMT)

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)

        tokens: list[str] = []
        op = getattr(record, "operation_id", "")
        backend = getattr(record, "backend", "")
        caller = getattr(record, "caller", "")
        if op:
            tokens.append(f"[op={op}]")
        if backend:
            tokens.append(f"[backend={backend}]")
        if caller:
            tokens.append(f"[caller={caller}]")

        context_part = (" | " + " ".join(tokens)) if tokens else ""
        line = f"{base}{context_part} | {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


# ---------------------------------------------------------------------------
# Public setup function
# ---------------------------------------------------------------------------

def setup_logging() -> None:
    """Configure application logging based on ``settings.log_format``.

    Safe to call more than once: a handler is only added to the root logger
    when none exists yet.
    """
    # Imported lazily so this module can load before settings (e.g. in tests).
    try:
        from yieldrouter.config import settings as _settings
        log_level_str = _settings.log_level.upper()
        log_format = _settings.log_format.lower()
    except Exception:
        log_level_str = "INFO"
        log_format = "text"

    log_level = getattr(logging, log_level_str, logging.INFO)

    root_logger = logging.getLogger()

    if root_logger.handlers:
        root_logger.setLevel(log_level)
        return

    root_logger.setLevel(log_level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.addFilter(ContextFilter())

    if log_format == "json":
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(_ContextTextFormatter())

    root_logger.addHandler(console_handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging initialised (level=%s, format=%s)", log_level_str, log_format
    )


# ---------------------------------------------------------------------------
# Context helpers
# ---------------------------------------------------------------------------

def generate_operation_id() -> str:
    """Generate a short operation id."""
    return uuid.uuid4().hex[:12]


def bind_context(
    operation_id: str | None = None,
    backend: str | None = None,
    caller: str | None = None,
) -> None:
    """Bind context into the current async context.

    Only the explicitly passed arguments are updated; omitted ones keep the
    value set by an outer frame.
    """
    if operation_id is not None:
        operation_var.set(operation_id)
    if backend is not None:
        backend_var.set(backend)
    if caller is not None:
        caller_var.set(caller)


def clear_context() -> None:
    """Clear all context vars in the current async context."""
    operation_var.set(None)
    backend_var.set(None)
    caller_var.set(None)


# ---------------------------------------------------------------------------
# Logger factory
# ---------------------------------------------------------------------------

def get_logger(name: str) -> logging.Logger:
    """Return a standard ``logging.Logger`` for the given module name."""
    return logging.getLogger(name)


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    context: dict[str, Any] | None = None,
) -> None:
    """Log an exception with optional structured context."""
    context_str = f" | context={context}" if context else ""
    logger.error("Exception: %s%s", exc, context_str, exc_info=True)
