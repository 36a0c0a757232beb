"""Structured logging configuration for chatguard.

This module provides a structured logging setup using Python's standard
logging module with JSON formatting for production environments.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from chatguard.app.core.config import settings


# Attributes every LogRecord carries; anything else came in through extra=
_RECORD_ATTRS = frozenset((
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message",
    "asctime", "taskName",
))


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs log records as JSON objects for consumption by log aggregation
    systems like ELK Stack or Grafana Loki.
    """

    # Contextual fields for request tracking
    CONTEXT_FIELDS = [
        "request_id",    # Request ID from X-Request-ID header
        "role",          # Rate limit role of the caller
        "identifier",    # Rate limit identifier of the caller
        "path",          # Request path
        "method",        # HTTP method
        "status_code",   # HTTP response status
    ]

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON string representation of the log record
        """
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now().astimezone().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        for field in self.CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and key not in self.CONTEXT_FIELDS
        }
        if extra:
            log_data["extra"] = extra

        if record.exc_info and record.exc_info != (None, None, None):
            log_data["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Logging filter that adds contextual fields to log records.

    Adds default values for request_id, role and the other contextual
    fields if not already present in the log record, so format strings
    referencing them never fail.
    """

    CONTEXT_DEFAULTS = {
        "request_id": None,
        "role": None,
        "identifier": None,
        "path": None,
        "method": None,
        "status_code": None,
    }

    def filter(self, record: logging.LogRecord) -> bool:
        for field, default in self.CONTEXT_DEFAULTS.items():
            if not hasattr(record, field):
                setattr(record, field, default)
        return True


def get_logging_config() -> Dict[str, Any]:
    """Get logging configuration dictionary.

    Returns:
        Logging configuration dict compatible with logging.config.dictConfig
    """
    log_format = settings.log_format.lower()
    log_level = settings.log_level.upper()

    formatters: Dict[str, Any] = {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        },
        "structured": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s - request_id=%(request_id)s - role=%(role)s - identifier=%(identifier)s"
        },
    }

    if log_format == "json":
        formatters["json"] = {
            "()": "chatguard.app.core.logging.JSONFormatter",
        }
        default_formatter = "json"
    else:
        default_formatter = "structured" if log_format == "structured" else "standard"

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": default_formatter,
            "stream": sys.stdout,
            "filters": ["context"],
        },
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {
            "context": {
                "()": "chatguard.app.core.logging.ContextFilter",
            },
        },
        "handlers": handlers,
        "loggers": {
            "chatguard": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            "uvicorn": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
    }


def setup_logging() -> None:
    """Configure logging for the application."""
    logging.config.dictConfig(get_logging_config())

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str = "chatguard") -> logging.Logger:
    """Get a logger instance with the specified name."""
    return logging.getLogger(name)


def get_log_context(
    request_id: Optional[str] = None,
    role: Optional[str] = None,
    identifier: Optional[str] = None,
    **extra
) -> Dict[str, Any]:
    """Create a log context dictionary for use with extra parameter.

    Args:
        request_id: Request ID
        role: Rate limit role
        identifier: Rate limit identifier
        **extra: Additional custom fields

    Returns:
        Dictionary suitable for passing as extra= parameter to logging calls

    Example:
        >>> logger.info(
        ...     "Rate limit checked",
        ...     extra=get_log_context(role="anonymous", identifier="1.2.3.4")
        ... )
    """
    context = {
        "request_id": request_id,
        "role": role,
        "identifier": identifier,
    }
    context.update(extra)
    return {k: v for k, v in context.items() if v is not None}
