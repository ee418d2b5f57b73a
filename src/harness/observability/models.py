"""Harness event models for observability.

Events are emitted at the key points of an agent invocation so runs can
be followed in the logs and counted in metrics.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events emitted by the harness.

    Attributes:
        INVOCATION_STARTED: An agent invocation began.
        SESSION_CREATED: A backend session was created for the invocation.
        RETRY: A prompt is about to be resent after a network failure.
        RETRIES_EXHAUSTED: Every prompt attempt failed with a network error.
        COMPLETION: The invocation finished successfully.
        TIMEOUT: The invocation hit its deadline.
        ERROR: The invocation failed.
    """

    INVOCATION_STARTED = "invocation_started"
    SESSION_CREATED = "session_created"
    RETRY = "retry"
    RETRIES_EXHAUSTED = "retries_exhausted"
    COMPLETION = "completion"
    TIMEOUT = "timeout"
    ERROR = "error"


class HarnessEvent(BaseModel):
    """Structured event emitted by the harness.

    Attributes:
        event_type: The category of event.
        target_id: What the invocation works on, e.g. "org/repo#123".
        repository: Full repository path in format "{owner}/{repo}".
        timestamp: When the event occurred (UTC timezone).
        details: Additional context specific to the event type.

    Details Field Conventions:
        SESSION_CREATED: session_id
        RETRY: attempt, error
        COMPLETION / ERROR / TIMEOUT: duration_seconds, exit_code, error
    """

    event_type: EventType = Field(..., description="The category of event being emitted")

    target_id: str = Field(..., min_length=1)

    repository: str = Field(..., min_length=1)

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC timezone)",
    )

    details: Dict[str, Any] = Field(default_factory=dict)

    def to_log_dict(self) -> Dict[str, Any]:
        """Flatten the event for structured logging.

        Returns:
            Dict[str, Any]: Event fields with the details merged in and the
            timestamp as an ISO string.
        """
        return {
            "event_type": self.event_type.value,
            "target_id": self.target_id,
            "repository": self.repository,
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }
