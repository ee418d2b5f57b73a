"""Error classification and error comment formatting.

Network failures between the backend and its LLM provider are transient
and worth retrying; everything else is surfaced immediately. Classification
is a case-insensitive pattern match on the error text, so it works the same
for raised exceptions and for errors returned in-band by the backend.
"""

import re
from typing import Any, Optional

from src.harness.agent.models import ErrorInfo, ErrorType


LLM_FETCH_ERROR_PATTERNS = (
    re.compile(r"fetch failed", re.IGNORECASE),
    re.compile(r"connect\s*timeout", re.IGNORECASE),
    re.compile(r"connecttimeouterror", re.IGNORECASE),
    re.compile(r"timed?\s*out", re.IGNORECASE),
    re.compile(r"econnrefused", re.IGNORECASE),
    re.compile(r"econnreset", re.IGNORECASE),
    re.compile(r"etimedout", re.IGNORECASE),
    re.compile(r"network error", re.IGNORECASE),
    re.compile(r"connection refused", re.IGNORECASE),
    re.compile(r"connection reset", re.IGNORECASE),
)

AGENT_NOT_FOUND_PATTERNS = (
    re.compile(r"agent\s+not\s+found", re.IGNORECASE),
    re.compile(r"unknown\s+agent", re.IGNORECASE),
    re.compile(r"invalid\s+agent", re.IGNORECASE),
    re.compile(r"agent\s+\S+\s+does\s+not\s+exist", re.IGNORECASE),
    re.compile(r"no\s+agent\s+named", re.IGNORECASE),
    re.compile(r"agent\s+\S+\s+is\s+not\s+available", re.IGNORECASE),
)

ERROR_TYPE_LABELS = {
    ErrorType.API_ERROR: "API Error",
    ErrorType.CONFIGURATION: "Configuration Error",
    ErrorType.INTERNAL: "Internal Error",
    ErrorType.LLM_FETCH_ERROR: "LLM Fetch Error",
    ErrorType.LLM_TIMEOUT: "LLM Timeout",
    ErrorType.PERMISSION: "Permission Error",
    ErrorType.RATE_LIMIT: "Rate Limit",
    ErrorType.VALIDATION: "Validation Error",
}


def error_text(error: Any) -> str:
    """Flatten an exception, string or error payload into searchable text.

    Exceptions contribute their message and, when chained, the message of
    their cause. Mappings contribute ``message`` and ``cause`` string values.
    """
    if error is None:
        return ""
    if isinstance(error, str):
        return error
    if isinstance(error, BaseException):
        text = str(error)
        if error.__cause__ is not None:
            text = f"{text} {error.__cause__}"
        return text
    if isinstance(error, dict):
        parts = [
            error[key] for key in ("message", "cause") if isinstance(error.get(key), str)
        ]
        data = error.get("data")
        if isinstance(data, dict) and isinstance(data.get("message"), str):
            parts.append(data["message"])
        return " ".join(parts) if parts else str(error)
    return str(error)


def is_llm_fetch_error(error: Any) -> bool:
    """Return True when the error text carries a network-failure marker."""
    text = error_text(error)
    if not text:
        return False
    return any(pattern.search(text) for pattern in LLM_FETCH_ERROR_PATTERNS)


def is_agent_not_found_error(error: Any) -> bool:
    """Return True when the error text says the requested agent is unknown."""
    text = error_text(error)
    if not text:
        return False
    return any(pattern.search(text) for pattern in AGENT_NOT_FOUND_PATTERNS)


def create_error_info(
    error_type: ErrorType,
    message: str,
    retryable: bool,
    details: Optional[str] = None,
    suggested_action: Optional[str] = None,
) -> ErrorInfo:
    return ErrorInfo(
        type=error_type,
        message=message,
        retryable=retryable,
        details=details,
        suggested_action=suggested_action,
    )


def create_llm_fetch_error(message: str, model: Optional[str] = None) -> ErrorInfo:
    """Create a retryable error for network failures reaching the LLM."""
    return create_error_info(
        ErrorType.LLM_FETCH_ERROR,
        f"LLM request failed: {message}",
        True,
        details=f"Model: {model}" if model else None,
        suggested_action=(
            "This is a transient network error. The request may succeed on "
            "retry, or try a different model."
        ),
    )


def create_agent_error(message: str, agent: Optional[str] = None) -> ErrorInfo:
    """Create a non-retryable configuration error for agent problems."""
    return create_error_info(
        ErrorType.CONFIGURATION,
        f"Agent error: {message}",
        False,
        details=f"Requested agent: {agent}" if agent else None,
        suggested_action=(
            "Verify the agent name is correct and the required plugins are installed."
        ),
    )


def create_timeout_error(timeout_seconds: float) -> ErrorInfo:
    return create_error_info(
        ErrorType.LLM_TIMEOUT,
        f"Execution timed out after {timeout_seconds:g}s",
        True,
        suggested_action="Try again with a simpler prompt or increased timeout.",
    )


def classify_llm_error(error: Any, model: Optional[str] = None) -> Optional[ErrorInfo]:
    """Classify a prompt failure.

    Args:
        error: Exception, in-band error string or error payload.
        model: Model id for context in the error details.

    Returns:
        A retryable ``llm_fetch_error`` ErrorInfo for network failures,
        otherwise None.
    """
    if is_llm_fetch_error(error):
        return create_llm_fetch_error(error_text(error), model)
    return None


def classify_session_error(error: Any, model: Optional[str] = None) -> ErrorInfo:
    """Classify an error reported on the event stream.

    Unlike prompt failures, session errors always produce an ErrorInfo so
    the failure reason can be relayed even when it is not retryable.
    """
    classified = classify_llm_error(error, model)
    if classified is not None:
        return classified
    return create_agent_error(error_text(error))


def _error_icon(error: ErrorInfo) -> str:
    if error.type == ErrorType.LLM_TIMEOUT:
        return ":hourglass:"
    if error.type in (ErrorType.RATE_LIMIT, ErrorType.LLM_FETCH_ERROR):
        return ":warning:"
    if error.retryable:
        return ":warning:"
    return ":x:"


def format_error_comment(error: ErrorInfo) -> str:
    """Format an error as a Markdown comment body.

    Args:
        error: The error to render.

    Returns:
        Markdown with an icon, the error label, the message and, when
        present, details, a suggested action and a retryable note.
    """
    lines = [f"{_error_icon(error)} **{ERROR_TYPE_LABELS[error.type]}**", "", error.message]

    if error.details is not None:
        lines.extend(["", f"> {error.details}"])

    if error.suggested_action is not None:
        lines.extend(["", f"**Suggested action:** {error.suggested_action}"])

    if error.retryable:
        lines.extend(["", "_This error is retryable._"])

    return "\n".join(lines)
