import uuid

import structlog


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set correlation ID for current context, generating one when omitted."""
    correlation_id = correlation_id or str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    return correlation_id


def get_correlation_id() -> str | None:
    """Get correlation ID from current context."""
    return structlog.contextvars.get_contextvars().get("correlation_id")


def clear_context() -> None:
    """Clear all context variables."""
    structlog.contextvars.clear_contextvars()
