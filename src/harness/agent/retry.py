"""Prompt send/retry state machine.

Drives the prompt attempts of one invocation:

    INIT -> SENDING -> SUCCESS
                    -> FATAL
                    -> AWAITING_RETRY -> SENDING ...
                    -> EXHAUSTED

Only failures classified as LLM network errors are retried. A retry waits
a fixed delay and resends a continuation prompt into the same session.
Attempts are strictly sequential; all loop state is local to one call.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from src.harness.agent.errors import (
    classify_llm_error,
    create_agent_error,
    error_text,
    is_agent_not_found_error,
)
from src.harness.agent.models import AttemptOutcome, AttemptRecord

logger = logging.getLogger(__name__)


CONTINUATION_PROMPT = (
    "The previous request was interrupted by a network error (fetch failed).\n"
    "Please continue where you left off. If you were in the middle of a task, resume it.\n"
    "If you had completed the task, confirm the completion."
)


class PromptState(str, Enum):
    """States of the prompt retry state machine."""

    INIT = "init"
    SENDING = "sending"
    AWAITING_RETRY = "awaiting_retry"
    SUCCESS = "success"
    EXHAUSTED = "exhausted"
    FATAL = "fatal"


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt limit and fixed delay between prompt attempts."""

    max_attempts: int = 3
    delay_seconds: float = 5.0

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_prompt_attempts,
            delay_seconds=settings.retry_delay_seconds,
        )


@dataclass(frozen=True)
class RetryResult:
    """Terminal state of the retry loop.

    Attributes:
        state: SUCCESS, FATAL or EXHAUSTED.
        outcome: Outcome of the last attempt made.
        attempts: Records of every attempt made, in order.
    """

    state: PromptState
    outcome: AttemptOutcome
    attempts: List[AttemptRecord]


AttemptFunc = Callable[[AttemptRecord], Awaitable[AttemptOutcome]]

ABORTED_OUTCOME = AttemptOutcome(success=False, error="Aborted", retryable=False)


def classify_attempt_failure(
    error: Any,
    model: Optional[str] = None,
    agent: Optional[str] = None,
) -> AttemptOutcome:
    """Turn a raised exception or in-band rejection into a failed outcome.

    Network failures are retryable; an unknown agent becomes a
    configuration error; anything else fails without classification.
    """
    message = error_text(error)

    llm_error = classify_llm_error(error, model)
    if llm_error is not None:
        return AttemptOutcome(success=False, error=message, llm_error=llm_error, retryable=True)

    if is_agent_not_found_error(error):
        return AttemptOutcome(
            success=False,
            error=message,
            llm_error=create_agent_error(message, agent),
            retryable=False,
        )

    return AttemptOutcome(success=False, error=message, retryable=False)


async def run_prompt_attempts(
    prompt_text: str,
    send_attempt: AttemptFunc,
    policy: RetryPolicy,
    remaining_seconds: Optional[Callable[[], Optional[float]]] = None,
    model: Optional[str] = None,
    agent: Optional[str] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    on_retry: Optional[Callable[[AttemptRecord, AttemptOutcome], Awaitable[Any]]] = None,
    is_cancelled: Optional[Callable[[], bool]] = None,
) -> RetryResult:
    """Run prompt attempts until success, a fatal error or exhaustion.

    Args:
        prompt_text: Task prompt for the first attempt.
        send_attempt: Performs one attempt and reports its outcome. Raised
            exceptions are classified the same way as in-band failures.
        policy: Attempt limit and delay.
        remaining_seconds: Returns the invocation time left, or None when
            unlimited. A retry is skipped when the time left does not
            exceed the delay.
        model: Model id used in error details.
        agent: Agent name used in error details.
        sleep: Awaitable delay, replaceable in tests.
        on_retry: Awaited with the next attempt record before each retry.
        is_cancelled: Checked before every send and after each retry delay.
            Once it returns True no further prompt is sent and the loop
            ends FATAL with an "Aborted" outcome.

    Returns:
        RetryResult with the terminal state and the last outcome.
    """
    state = PromptState.INIT
    attempts: List[AttemptRecord] = []
    last_outcome = AttemptOutcome(success=False, error="No attempts made")

    def aborted(number: int) -> Optional[RetryResult]:
        if is_cancelled is None or not is_cancelled():
            return None
        logger.info("Prompt attempts aborted", extra={"attempt": number})
        return RetryResult(PromptState.FATAL, ABORTED_OUTCOME, attempts)

    for number in range(1, policy.max_attempts + 1):
        is_continuation = number > 1
        record = AttemptRecord(
            number=number,
            prompt_text=CONTINUATION_PROMPT if is_continuation else prompt_text,
            is_continuation=is_continuation,
        )

        result = aborted(number)
        if result is not None:
            return result

        if is_continuation:
            state = PromptState.AWAITING_RETRY
            remaining = remaining_seconds() if remaining_seconds is not None else None
            if remaining is not None and remaining <= policy.delay_seconds:
                logger.warning(
                    "Insufficient time remaining for retry",
                    extra={
                        "attempt": number,
                        "remaining_seconds": round(remaining, 3),
                        "delay_seconds": policy.delay_seconds,
                    },
                )
                return RetryResult(PromptState.EXHAUSTED, last_outcome, attempts)

            logger.warning(
                "Retrying prompt after LLM fetch error",
                extra={
                    "attempt": number,
                    "max_attempts": policy.max_attempts,
                    "delay_seconds": policy.delay_seconds,
                    "error": last_outcome.error,
                },
            )
            if on_retry is not None:
                await on_retry(record, last_outcome)
            await sleep(policy.delay_seconds)

            result = aborted(number)
            if result is not None:
                return result

        state = PromptState.SENDING
        attempts.append(record)
        logger.debug(
            "Sending prompt",
            extra={"attempt": number, "state": state.value, "continuation": is_continuation},
        )

        try:
            last_outcome = await send_attempt(record)
        except Exception as exc:
            logger.debug("Prompt attempt raised", extra={"attempt": number, "error": str(exc)})
            last_outcome = classify_attempt_failure(exc, model, agent)

        if last_outcome.success:
            logger.info("Prompt completed", extra={"attempt": number})
            return RetryResult(PromptState.SUCCESS, last_outcome, attempts)

        if not last_outcome.retryable:
            logger.error(
                "Prompt failed with non-retryable error",
                extra={"attempt": number, "error": last_outcome.error},
            )
            return RetryResult(PromptState.FATAL, last_outcome, attempts)

    logger.error(
        "LLM fetch error: max retries exhausted",
        extra={"attempts": len(attempts), "error": last_outcome.error},
    )
    return RetryResult(PromptState.EXHAUSTED, last_outcome, attempts)
