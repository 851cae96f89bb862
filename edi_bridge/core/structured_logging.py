"""
EDI Bridge - Structured Logging

This module provides JSON structured logging with per-exchange context
(tenant, partner, message and correlation ids) that follows asyncio tasks.
"""

import contextvars
import copy
import json
import logging
import logging.config
import traceback
from contextlib import contextmanager
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, Optional


class LogCategory(Enum):
    """Log categories for filtering and routing."""
    SYSTEM = "system"
    SECURITY = "security"
    AUDIT = "audit"
    DOCUMENT = "document"
    TRANSPORT = "transport"
    EXTERNAL_API = "external_api"


@dataclass
class LogContext:
    """Context information attached to every record emitted inside it."""
    tenant_id: Optional[str] = None
    partner_id: Optional[str] = None
    message_id: Optional[str] = None
    correlation_id: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    additional_fields: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        if not result["additional_fields"]:
            result.pop("additional_fields")
        # Remove None values
        return {k: v for k, v in result.items() if v is not None}


_current_context: contextvars.ContextVar[Optional[LogContext]] = contextvars.ContextVar(
    "edi_bridge_log_context", default=None
)


def get_current_context() -> Optional[LogContext]:
    """Get the context active in the current task, if any."""
    return _current_context.get()


@contextmanager
def log_context(**kwargs) -> Iterator[LogContext]:
    """
    Context manager binding exchange identifiers to log records.

    Nested contexts inherit unset fields from the enclosing one.
    """
    parent = _current_context.get()
    if parent is not None:
        merged = {**parent.to_dict(), **{k: v for k, v in kwargs.items() if v is not None}}
        ctx = LogContext(**merged)
    else:
        ctx = LogContext(**kwargs)
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


class ContextFilter(logging.Filter):
    """Attach the active LogContext to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "context", None) is None:
            record.context = _current_context.get()
        return True


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured logging."""

    def __init__(self, include_context: bool = True):
        super().__init__()
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        category = getattr(record, "category", LogCategory.SYSTEM)
        if isinstance(category, LogCategory):
            category = category.value

        event: Dict[str, Any] = {
            "timestamp": record.created,
            "iso_timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "category": category,
            "message": record.getMessage(),
            "component": getattr(record, "component", record.name),
            "metadata": getattr(record, "metadata", {}) or {},
        }

        operation = getattr(record, "operation", None)
        if operation:
            event["operation"] = operation

        if self.include_context:
            context = getattr(record, "context", None)
            if context is None:
                context = _current_context.get()
            if context is not None:
                event["context"] = context.to_dict()

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            event["exception"] = {
                "type": type(exc).__name__,
                "message": str(exc),
                "traceback": traceback.format_exception(type(exc), exc, exc.__traceback__),
            }

        return json.dumps(event, ensure_ascii=False, default=str)


# Default logging configuration
DEFAULT_LOGGING_CONFIG: Dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "context": {"()": ContextFilter},
    },
    "formatters": {
        "structured": {
            "()": StructuredFormatter,
            "include_context": True,
        },
        "simple": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "level": "DEBUG",
            "formatter": "structured",
            "filters": ["context"],
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "edi_bridge": {
            "level": "INFO",
            "handlers": ["console"],
            "propagate": False,
        },
    },
    "root": {
        "level": "WARNING",
        "handlers": ["console"],
    },
}


def configure_logging(
    level: str = "INFO",
    structured: bool = True,
    config: Optional[Dict[str, Any]] = None,
) -> None:
    """Configure the logging system."""
    if config is None:
        config = copy.deepcopy(DEFAULT_LOGGING_CONFIG)
        config["loggers"]["edi_bridge"]["level"] = level.upper()
        if not structured:
            config["handlers"]["console"]["formatter"] = "simple"

    logging.config.dictConfig(config)
