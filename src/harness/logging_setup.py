"""Structured logging configuration for the harness.

Modules log through the standard library (``logging.getLogger(__name__)``)
and attach machine-parsable context via ``extra={...}``. This module wires
structlog's ProcessorFormatter onto the root handler so those records, extras
included, render as one JSON object per line with sensitive fields redacted.
"""

import logging
import re
import sys
from typing import Any, Dict, Iterable, MutableMapping

import structlog


# Case-insensitive, partial match against field names
DEFAULT_SENSITIVE_FIELDS = (
    "token",
    "password",
    "secret",
    "key",
    "auth",
    "credential",
    "bearer",
    "private",
)

REDACTED = "[REDACTED]"

_SECRET_PATTERNS = (
    re.compile(r"gh[pousr]_[A-Za-z0-9]{16,}"),
    re.compile(r"github_pat_[A-Za-z0-9_]{16,}"),
    re.compile(r"sk-[A-Za-z0-9_-]{16,}"),
    re.compile(r"(?i)bearer\s+[A-Za-z0-9._~+/=-]+"),
)


def is_sensitive_field(
    field_name: str,
    sensitive_fields: Iterable[str] = DEFAULT_SENSITIVE_FIELDS,
) -> bool:
    """Check if a field name matches any sensitive pattern."""
    lowered = field_name.lower()
    return any(pattern in lowered for pattern in sensitive_fields)


def redact_sensitive_fields(value: Any) -> Any:
    """Recursively replace string values of sensitive keys with a marker.

    Args:
        value: Any log payload (dicts and lists are walked).

    Returns:
        A copy of the payload with sensitive string values redacted.
    """
    if isinstance(value, dict):
        redacted: Dict[str, Any] = {}
        for field_name, field_value in value.items():
            if isinstance(field_value, str) and is_sensitive_field(str(field_name)):
                redacted[field_name] = REDACTED
            else:
                redacted[field_name] = redact_sensitive_fields(field_value)
        return redacted
    if isinstance(value, (list, tuple)):
        return [redact_sensitive_fields(item) for item in value]
    return value


def sanitize_message(message: str) -> str:
    """Mask token-shaped substrings in free-form text.

    Args:
        message: Error or log text that may embed credentials.

    Returns:
        The text with recognizable secrets replaced by the redaction marker.
    """
    for pattern in _SECRET_PATTERNS:
        message = pattern.sub(REDACTED, message)
    return message


def redaction_processor(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor applying redact_sensitive_fields to each event."""
    for field_name in list(event_dict.keys()):
        if field_name == "event":
            continue
        field_value = event_dict[field_name]
        if isinstance(field_value, str) and is_sensitive_field(field_name):
            event_dict[field_name] = REDACTED
        else:
            event_dict[field_name] = redact_sensitive_fields(field_value)
    return event_dict


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    """Install the structured formatter on the root logger.

    Args:
        level: Root log level name.
        json_output: Render JSON lines when True, console output otherwise.
    """
    shared_processors = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso"),
        redaction_processor,
    ]

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())

    # httpx logs every request at INFO, which drowns the poll loop
    logging.getLogger("httpx").setLevel(logging.WARNING)
