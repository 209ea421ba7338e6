"""Structured logging configuration.

This module provides a standardized logging setup using structlog that outputs
either JSON (for production) or console format (for development).

Every event passes through ``redact_secrets`` before rendering, so credential
values bound under a sensitive key, or embedded in a URL, never reach output.

Usage:
    from labplatform.logging_config import setup_logging
    import structlog

    setup_logging(service_name="labplatform")
    logger = structlog.get_logger()
    logger.info("event_name", key1=value1, key2=value2)
"""

import logging
import os
import sys
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor

from labplatform.sanitize import redact_url

REDACTED = "[REDACTED]"

SENSITIVE_KEYS = frozenset(
    {
        "password",
        "secret",
        "secret_key",
        "token",
        "api_password",
        "api_token",
        "access_key",
        "git_token",
        "registry_token",
        "authorization",
    }
)


def _is_sensitive(key: str) -> bool:
    key = key.lower()
    return key in SENSITIVE_KEYS or key.endswith(("_password", "_token", "_secret"))


def _redact(value: Any) -> Any:
    if isinstance(value, str):
        return redact_url(value)
    if isinstance(value, dict):
        return {k: REDACTED if _is_sensitive(str(k)) else _redact(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_redact(v) for v in value)
    return value


def redact_secrets(_logger: Any, _method_name: str, event_dict: EventDict) -> EventDict:
    """Mask credential material in an event dict."""
    for key, value in list(event_dict.items()):
        if _is_sensitive(key):
            event_dict[key] = REDACTED
        else:
            event_dict[key] = _redact(value)
    return event_dict


def setup_logging(
    service_name: str | None = None,
    log_format: Literal["json", "console"] | None = None,
    log_level: str | None = None,
) -> None:
    """Configure structured logging with structlog.

    Args:
        service_name: Name of the service.
                     Falls back to SERVICE_NAME env var or "labplatform".
        log_format: Output format - "json" for production, "console" for dev.
                   Falls back to LOG_FORMAT env var or "console".
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
                  Falls back to LOG_LEVEL env var or "INFO".
    """
    # Get configuration from args or environment
    service_name = service_name or os.getenv("SERVICE_NAME", "labplatform")
    log_format = log_format or os.getenv("LOG_FORMAT", "console")
    log_level = log_level or os.getenv("LOG_LEVEL", "INFO")

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
        force=True,
    )

    processors: list[Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=False),
        # Merge contextvars (request_id, correlation_id)
        structlog.contextvars.merge_contextvars,
        structlog.processors.CallsiteParameterAdder(
            {
                structlog.processors.CallsiteParameter.FUNC_NAME,
                structlog.processors.CallsiteParameter.LINENO,
            }
        ),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        # Must run after format_exc_info so tracebacks are scrubbed too
        redact_secrets,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer(sort_keys=False))
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service=service_name)

    logger = structlog.get_logger()
    logger.info(
        "logging_initialized",
        service=service_name,
        log_format=log_format,
        log_level=log_level,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger instance."""
    return structlog.get_logger(name)
