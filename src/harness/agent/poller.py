"""Session completion polling.

After an async prompt is accepted the backend works in the background.
The poller queries the session status map at a fixed interval until the
session goes idle, the server gives up retrying, the caller aborts or the
poll budget runs out.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from src.harness.agent.models import PollResult

logger = logging.getLogger(__name__)


class ActivityTracker:
    """Progress signals shared between the event monitor and the poller.

    Attributes:
        first_meaningful_event: Set once the agent produced text, ran a
            tool or reported token usage.
        session_idle: Set when the event stream reported the session idle.
    """

    def __init__(self) -> None:
        self.first_meaningful_event = False
        self.session_idle = False

    def reset(self) -> None:
        self.first_meaningful_event = False
        self.session_idle = False


@dataclass(frozen=True)
class PollConfig:
    """Completion polling limits.

    Attributes:
        interval_seconds: Delay between status queries.
        max_seconds: Poll budget, 0 for unlimited.
        error_grace_cycles: Consecutive retry statuses tolerated.
        initial_activity_timeout_seconds: Time allowed before the first
            meaningful event when an activity tracker is supplied.
    """

    interval_seconds: float = 0.5
    max_seconds: float = 1800.0
    error_grace_cycles: int = 3
    initial_activity_timeout_seconds: float = 90.0

    @classmethod
    def from_settings(cls, settings: Any) -> "PollConfig":
        return cls(
            interval_seconds=settings.poll_interval_seconds,
            max_seconds=settings.poll_max_seconds,
            error_grace_cycles=settings.error_grace_cycles,
            initial_activity_timeout_seconds=settings.initial_activity_timeout_seconds,
        )


async def poll_for_session_completion(
    client: Any,
    session_id: str,
    directory: str,
    cancel_event: asyncio.Event,
    config: PollConfig = PollConfig(),
    tracker: Optional[ActivityTracker] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> PollResult:
    """Poll session status until a terminal state is reached.

    Args:
        client: Backend client exposing ``session_status(directory)``.
        session_id: Session to watch.
        directory: Working directory the session is scoped to.
        cancel_event: Aborts polling when set, before any further query.
        config: Polling limits.
        tracker: Optional activity signals from the event monitor.
        sleep: Awaitable delay, replaceable in tests.
        clock: Monotonic clock, replaceable in tests.

    Returns:
        PollResult. ``completed`` is True only when the session went idle.
    """
    start = clock()
    queries = 0
    retry_cycles = 0

    while True:
        if cancel_event.is_set():
            return PollResult(completed=False, error="Aborted", queries=queries)

        await sleep(config.interval_seconds)

        if cancel_event.is_set():
            return PollResult(completed=False, error="Aborted", queries=queries)

        if tracker is not None and tracker.session_idle:
            logger.debug("Session idle reported by event stream", extra={"session_id": session_id})
            return PollResult(completed=True, queries=queries)

        elapsed = clock() - start

        if (
            tracker is not None
            and not tracker.first_meaningful_event
            and elapsed >= config.initial_activity_timeout_seconds
        ):
            logger.warning(
                "No agent activity detected",
                extra={"session_id": session_id, "elapsed_seconds": round(elapsed, 1)},
            )
            return PollResult(
                completed=False,
                error=(
                    "No agent activity detected within "
                    f"{config.initial_activity_timeout_seconds:g}s"
                ),
                queries=queries,
            )

        if config.max_seconds > 0 and elapsed >= config.max_seconds:
            logger.warning(
                "Poll timeout reached",
                extra={"elapsed_seconds": round(elapsed, 1), "max_seconds": config.max_seconds},
            )
            return PollResult(
                completed=False,
                error=f"Poll timeout after {elapsed:.1f}s",
                queries=queries,
            )

        queries += 1
        try:
            statuses = await client.session_status(directory)
        except Exception as exc:
            logger.debug("Poll request failed", extra={"session_id": session_id, "error": str(exc)})
            continue

        status = statuses.get(session_id)
        if not isinstance(status, dict):
            logger.debug("Session not in status map yet", extra={"session_id": session_id})
            continue

        status_type = status.get("type")
        if status_type == "idle":
            logger.debug("Session idle", extra={"session_id": session_id, "queries": queries})
            return PollResult(completed=True, queries=queries)

        if status_type == "busy":
            retry_cycles = 0
            continue

        if status_type == "retry":
            retry_cycles += 1
            message = status.get("message") or "unknown error"
            logger.warning(
                "Session is retrying",
                extra={
                    "session_id": session_id,
                    "attempt": status.get("attempt"),
                    "retry_cycles": retry_cycles,
                    "error": message,
                },
            )
            if retry_cycles >= config.error_grace_cycles:
                return PollResult(
                    completed=False,
                    error=f"Session error after {retry_cycles} retry cycles: {message}",
                    queries=queries,
                )
            continue

        logger.debug(
            "Unknown session status",
            extra={"session_id": session_id, "status_type": status_type},
        )
