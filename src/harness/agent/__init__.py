"""Agent execution against an OpenCode backend.

This module runs one agent invocation end to end:
- Session creation and prompt delivery
- Retry of LLM network failures with a continuation prompt
- Background monitoring of the server event stream
- Completion polling with retry-cycle grace and abort support
- A hard deadline and guaranteed backend cleanup
"""

from src.harness.agent.errors import (
    classify_llm_error,
    format_error_comment,
    is_agent_not_found_error,
    is_llm_fetch_error,
)
from src.harness.agent.models import (
    ErrorInfo,
    ErrorType,
    ExecutionConfig,
    ExecutionResult,
    ModelSelection,
    PromptMode,
    TokenUsage,
)
from src.harness.agent.retry import CONTINUATION_PROMPT, PromptState, RetryPolicy

__all__ = [
    "CONTINUATION_PROMPT",
    "ErrorInfo",
    "ErrorType",
    "ExecutionConfig",
    "ExecutionResult",
    "ModelSelection",
    "PromptMode",
    "PromptState",
    "RetryPolicy",
    "TokenUsage",
    "classify_llm_error",
    "format_error_comment",
    "is_agent_not_found_error",
    "is_llm_fetch_error",
]
