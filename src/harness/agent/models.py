"""Data models for agent execution.

Runtime records passed between the backend client, the retry loop, the
event stream monitor, the completion poller and the executor. They are
plain frozen dataclasses: created once, never mutated, cheap to compare
in tests.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


class ErrorType(str, Enum):
    """Categories used to format errors relayed back to GitHub."""

    API_ERROR = "api_error"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"
    LLM_FETCH_ERROR = "llm_fetch_error"
    LLM_TIMEOUT = "llm_timeout"
    PERMISSION = "permission"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"


class PromptMode(str, Enum):
    """How a prompt is delivered to the backend.

    Attributes:
        ASYNC: Fire prompt_async and poll session status until idle.
        SYNC: Block on the message call and read the reply directly.
    """

    ASYNC = "async"
    SYNC = "sync"


@dataclass(frozen=True)
class ModelSelection:
    """Provider and model identifiers sent with a prompt."""

    provider_id: str
    model_id: str

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["ModelSelection"]:
        """Parse a "provider/model" string; blank means backend default."""
        if value is None or not value.strip():
            return None
        provider_id, _, model_id = value.strip().partition("/")
        if not provider_id or not model_id:
            raise ValueError(f"Invalid model selection: {value!r}")
        return cls(provider_id=provider_id, model_id=model_id)

    def to_body(self) -> Dict[str, str]:
        return {"providerID": self.provider_id, "modelID": self.model_id}


@dataclass(frozen=True)
class ExecutionConfig:
    """Per-invocation execution settings.

    Attributes:
        agent: Name of the agent the backend should run.
        model: Model override, or None for the backend default.
        timeout_seconds: Hard deadline for the invocation, 0 for unlimited.
        prompt_mode: Whether to poll for completion or wait synchronously.
    """

    agent: str = "build"
    model: Optional[ModelSelection] = None
    timeout_seconds: float = 1800
    prompt_mode: PromptMode = PromptMode.ASYNC

    @classmethod
    def from_settings(cls, settings: Any) -> "ExecutionConfig":
        return cls(
            agent=settings.agent,
            model=ModelSelection.parse(settings.model),
            timeout_seconds=settings.timeout_seconds,
            prompt_mode=PromptMode(settings.prompt_mode),
        )


@dataclass(frozen=True)
class ErrorInfo:
    """Structured error information for classification and error comments.

    Attributes:
        type: Error category.
        message: Human-readable description.
        retryable: True when a retry may succeed.
        details: Optional extra context shown as a quote.
        suggested_action: Optional guidance for the reader.
    """

    type: ErrorType
    message: str
    retryable: bool
    details: Optional[str] = None
    suggested_action: Optional[str] = None


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported by the backend for one assistant message."""

    input: int = 0
    output: int = 0
    reasoning: int = 0
    cache_read: int = 0
    cache_write: int = 0

    @classmethod
    def from_payload(cls, tokens: Dict[str, Any]) -> "TokenUsage":
        cache = tokens.get("cache") or {}
        return cls(
            input=int(tokens.get("input") or 0),
            output=int(tokens.get("output") or 0),
            reasoning=int(tokens.get("reasoning") or 0),
            cache_read=int(cache.get("read") or 0),
            cache_write=int(cache.get("write") or 0),
        )


@dataclass(frozen=True)
class SessionHandle:
    """A backend conversation session scoped to a working directory."""

    id: str
    title: str = ""
    version: str = ""


@dataclass(frozen=True)
class AttemptRecord:
    """One prompt send within an invocation.

    Attributes:
        number: 1-based attempt number.
        prompt_text: Exact text sent on this attempt.
        is_continuation: True when this is a retry with the continuation prompt.
    """

    number: int
    prompt_text: str
    is_continuation: bool = False


@dataclass(frozen=True)
class PromptAccepted:
    """Backend accepted the prompt.

    ``parts`` and ``info`` are only populated in sync mode, where the reply
    arrives with the response; in async mode completion is polled for.
    """

    parts: Optional[Tuple[Dict[str, Any], ...]] = None
    info: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class PromptRejected:
    """Backend answered the prompt call with an in-band error."""

    error: str
    status_code: Optional[int] = None


PromptOutcome = Union[PromptAccepted, PromptRejected]


@dataclass(frozen=True)
class PollResult:
    """Terminal outcome of completion polling."""

    completed: bool
    error: Optional[str] = None
    queries: int = 0


@dataclass(frozen=True)
class StreamSnapshot:
    """Data observed on the event stream during a single attempt."""

    tokens: Optional[TokenUsage] = None
    model: Optional[str] = None
    cost: Optional[float] = None
    output_text: Optional[str] = None
    prs_created: Tuple[str, ...] = ()
    commits_created: Tuple[str, ...] = ()
    comments_posted: int = 0
    llm_error: Optional[ErrorInfo] = None
    session_idle: bool = False


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of one attempt as seen by the retry loop.

    Attributes:
        success: Whether the attempt reached a successful terminal state.
        error: Error text for failed attempts.
        llm_error: Classified error, if any.
        retryable: Whether the retry loop may resend.
        snapshot: Stream and response data gathered during the attempt.
    """

    success: bool
    error: Optional[str] = None
    llm_error: Optional[ErrorInfo] = None
    retryable: bool = False
    snapshot: StreamSnapshot = field(default_factory=StreamSnapshot)


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of a single agent invocation.

    Attributes:
        success: True when the agent finished its task.
        exit_code: 0 on success, 1 on failure, 130 on timeout.
        duration_seconds: Wall-clock time of the invocation.
        session_id: Backend session id, None if no session was created.
        error: Error text for failed invocations.
        llm_error: Classified error for failed invocations.
        token_usage: Token usage from the winning attempt only.
        model: Model reported by the backend for the winning attempt.
        cost: Cost reported by the backend for the winning attempt.
        output_text: Final text produced by the agent.
        prs_created: Pull request URLs the agent created.
        commits_created: Commit SHAs the agent created.
        comments_posted: Number of comments the agent posted.
        attempts: Number of prompt attempts made.
    """

    success: bool
    exit_code: int
    duration_seconds: float
    session_id: Optional[str] = None
    error: Optional[str] = None
    llm_error: Optional[ErrorInfo] = None
    token_usage: Optional[TokenUsage] = None
    model: Optional[str] = None
    cost: Optional[float] = None
    output_text: Optional[str] = None
    prs_created: Tuple[str, ...] = ()
    commits_created: Tuple[str, ...] = ()
    comments_posted: int = 0
    attempts: int = 0
