"""Agent execution orchestrator.

Runs one agent invocation against an OpenCode backend:

    bootstrap (or reuse) backend -> create session -> subscribe to events
    -> prompt attempts with retry (poll for completion in async mode)
    -> assemble result

The whole invocation runs under a single deadline. Every exit path,
including the deadline, produces exactly one ExecutionResult; nothing is
raised to the caller. Cleanup always stops the event monitor and shuts
down a backend the executor started itself. A backend supplied by the
caller is never shut down here; a session abandoned on it is aborted.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from src.harness.agent.artifacts import PromptArtifactSink
from src.harness.agent.errors import classify_llm_error, create_timeout_error
from src.harness.agent.models import (
    AttemptOutcome,
    AttemptRecord,
    ErrorInfo,
    ErrorType,
    ExecutionConfig,
    ExecutionResult,
    PromptMode,
    PromptOutcome,
    PromptRejected,
    SessionHandle,
    StreamSnapshot,
    TokenUsage,
)
from src.harness.agent.monitor import EventStreamMonitor
from src.harness.agent.poller import PollConfig, poll_for_session_completion
from src.harness.agent.retry import (
    ABORTED_OUTCOME,
    PromptState,
    RetryPolicy,
    RetryResult,
    classify_attempt_failure,
    run_prompt_attempts,
)
from src.harness.backend.client import BackendError, OpenCodeClient, build_prompt_body
from src.harness.backend.server import BackendHandle, bootstrap_backend
from src.harness.observability.emitter import EventEmitter, NullEventEmitter
from src.harness.observability.models import EventType, HarnessEvent

logger = logging.getLogger(__name__)


TIMEOUT_EXIT_CODE = 130

BackendFactory = Callable[[asyncio.Event], Awaitable[BackendHandle]]


@dataclass
class _Invocation:
    """Mutable state of one invocation, shared with the cleanup path."""

    prompt_text: str
    config: ExecutionConfig
    cancel_event: asyncio.Event
    target_id: str
    repository: str
    started_at: float
    handle: Optional[BackendHandle] = None
    owns_backend: bool = False
    session: Optional[SessionHandle] = None
    monitor: Optional[EventStreamMonitor] = None
    attempts: int = 0

    @property
    def session_id(self) -> Optional[str]:
        return self.session.id if self.session is not None else None

    def elapsed(self) -> float:
        return time.monotonic() - self.started_at


class AgentExecutor:
    """Runs agent invocations and turns every outcome into an ExecutionResult.

    Attributes:
        settings: HarnessSettings for backend, retry and polling limits.
        retry_policy: Prompt attempt limit and delay.
        poll_config: Completion polling limits.
        event_emitter: Receives invocation events.
        artifact_sink: Optional writer for the prompt text.

    Example:
        >>> executor = AgentExecutor(settings)
        >>> result = await executor.execute("Fix the failing test")
        >>> result.exit_code
        0
    """

    def __init__(
        self,
        settings: Any,
        backend_factory: Optional[BackendFactory] = None,
        event_emitter: Optional[EventEmitter] = None,
        artifact_sink: Optional[PromptArtifactSink] = None,
        retry_policy: Optional[RetryPolicy] = None,
        poll_config: Optional[PollConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        log_callback: Optional[Callable[[str], None]] = None,
    ):
        self.settings = settings
        self._backend_factory = backend_factory or self._default_backend_factory
        self.event_emitter = event_emitter or NullEventEmitter()
        self.artifact_sink = artifact_sink
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.poll_config = poll_config or PollConfig.from_settings(settings)
        self._sleep = sleep
        self._log_callback = log_callback

    async def _default_backend_factory(self, cancel_event: asyncio.Event) -> BackendHandle:
        return await bootstrap_backend(self.settings, cancel_event)

    @property
    def directory(self) -> str:
        return str(self.settings.resolved_workspace)

    async def execute(
        self,
        prompt_text: str,
        config: Optional[ExecutionConfig] = None,
        backend: Optional[BackendHandle] = None,
        cancel_event: Optional[asyncio.Event] = None,
        target_id: str = "local",
        repository: str = "local",
    ) -> ExecutionResult:
        """Run one agent invocation.

        Args:
            prompt_text: Task prompt for the agent.
            config: Execution settings; defaults come from the harness settings.
            backend: A running backend to reuse. It is never shut down by this
                call. When None a backend is started and shut down afterwards.
            cancel_event: Set by the caller to abort the invocation.
            target_id: Identifier used in emitted events.
            repository: Repository used in emitted events.

        Returns:
            ExecutionResult. Exit code 0 on success, 1 on failure and 130
            when the deadline expired.
        """
        run = _Invocation(
            prompt_text=prompt_text,
            config=config or ExecutionConfig.from_settings(self.settings),
            cancel_event=cancel_event or asyncio.Event(),
            target_id=target_id,
            repository=repository,
            started_at=time.monotonic(),
        )
        timeout_seconds = run.config.timeout_seconds

        logger.info(
            "Starting agent execution",
            extra={
                "agent": run.config.agent,
                "timeout_seconds": timeout_seconds,
                "prompt_mode": run.config.prompt_mode.value,
                "reused_backend": backend is not None,
            },
        )
        await self._emit(run, EventType.INVOCATION_STARTED, {"agent": run.config.agent})

        result: Optional[ExecutionResult] = None
        try:
            if timeout_seconds > 0:
                result = await asyncio.wait_for(
                    self._run(run, backend), timeout=timeout_seconds
                )
            else:
                result = await self._run(run, backend)
        except asyncio.TimeoutError:
            logger.warning(
                "Agent execution timed out",
                extra={"timeout_seconds": timeout_seconds, "session_id": run.session_id},
            )
            timeout_error = create_timeout_error(timeout_seconds)
            result = ExecutionResult(
                success=False,
                exit_code=TIMEOUT_EXIT_CODE,
                duration_seconds=run.elapsed(),
                session_id=run.session_id,
                error=timeout_error.message,
                llm_error=timeout_error,
                attempts=run.attempts,
            )
        except Exception as exc:
            logger.exception(
                "Agent execution failed unexpectedly",
                extra={"session_id": run.session_id},
            )
            result = self._failure(run, exc)
        finally:
            await self._cleanup(run, result)

        await self._emit_result(run, result)
        return result

    async def _run(self, run: _Invocation, backend: Optional[BackendHandle]) -> ExecutionResult:
        try:
            if backend is not None:
                run.handle = backend
            else:
                run.handle = await self._backend_factory(run.cancel_event)
                run.owns_backend = True
        except Exception as exc:
            logger.error("Backend unavailable", extra={"error": str(exc)})
            return self._failure(run, exc)

        client = run.handle.client

        try:
            run.session = await self._create_session(client)
        except Exception as exc:
            logger.error("Session creation failed", extra={"error": str(exc)})
            return self._failure(run, exc)

        await self._emit(run, EventType.SESSION_CREATED, {"session_id": run.session.id})

        if self.artifact_sink is not None:
            self.artifact_sink.write(run.session.id, run.prompt_text)

        await self._start_monitor(run, client)

        model_name = run.config.model.model_id if run.config.model is not None else None

        async def on_retry(record: AttemptRecord, previous: AttemptOutcome) -> None:
            await self._emit(
                run,
                EventType.RETRY,
                {"attempt": record.number, "error": previous.error},
            )

        retry_result = await run_prompt_attempts(
            run.prompt_text,
            lambda record: self._attempt(run, client, record),
            self.retry_policy,
            remaining_seconds=self._remaining_seconds(run),
            model=model_name,
            agent=run.config.agent,
            sleep=self._sleep,
            on_retry=on_retry,
            is_cancelled=run.cancel_event.is_set,
        )

        if retry_result.state is PromptState.EXHAUSTED:
            await self._emit(
                run,
                EventType.RETRIES_EXHAUSTED,
                {"attempts": len(retry_result.attempts), "error": retry_result.outcome.error},
            )

        return self._assemble_result(run, retry_result)

    async def _create_session(self, client: OpenCodeClient) -> SessionHandle:
        """Create the single session used by every attempt of this invocation."""
        session = await client.create_session(self.directory)
        logger.info(
            "Session created",
            extra={"session_id": session.id, "session_title": session.title},
        )
        return session

    async def _start_monitor(self, run: _Invocation, client: OpenCodeClient) -> None:
        """Subscribe to the event stream before the first prompt is sent."""
        try:
            subscription = await client.subscribe_events(self.directory)
        except BackendError as exc:
            logger.warning(
                "Event stream unavailable, continuing without it",
                extra={"error": str(exc)},
            )
            return

        run.monitor = EventStreamMonitor(
            subscription,
            run.session.id,
            log_callback=self._log_callback,
        )
        run.monitor.start()

    def _remaining_seconds(self, run: _Invocation) -> Optional[Callable[[], Optional[float]]]:
        if run.config.timeout_seconds <= 0:
            return None
        return lambda: run.config.timeout_seconds - run.elapsed()

    async def _attempt(
        self,
        run: _Invocation,
        client: OpenCodeClient,
        record: AttemptRecord,
    ) -> AttemptOutcome:
        """Send one prompt and wait for the session to finish it."""
        run.attempts = record.number
        config = run.config
        model_name = config.model.model_id if config.model is not None else None

        if run.monitor is not None:
            run.monitor.start_attempt(record.number)

        body = build_prompt_body(record.prompt_text, config.agent, config.model)
        outcome = await self._send_prompt(run, client, body)
        if outcome is None:
            logger.info("Prompt send aborted", extra={"attempt": record.number})
            return ABORTED_OUTCOME

        if isinstance(outcome, PromptRejected):
            logger.error(
                "Prompt rejected",
                extra={"attempt": record.number, "status_code": outcome.status_code, "error": outcome.error},
            )
            return classify_attempt_failure(outcome.error, model_name, config.agent)

        if config.prompt_mode is PromptMode.SYNC:
            snapshot = self._merge_sync_reply(run, outcome.parts, outcome.info)
            return self._outcome_from_snapshot(snapshot)

        poll_result = await poll_for_session_completion(
            client,
            run.session.id,
            self.directory,
            run.cancel_event,
            self.poll_config,
            tracker=run.monitor.tracker if run.monitor is not None else None,
            sleep=self._sleep,
        )
        snapshot = self._snapshot(run)

        if not poll_result.completed:
            error = poll_result.error or "Session did not reach idle state"
            logger.error(
                "Session completion polling failed",
                extra={"error": error, "session_id": run.session.id},
            )
            return AttemptOutcome(
                success=False,
                error=error,
                llm_error=snapshot.llm_error,
                retryable=False,
                snapshot=snapshot,
            )

        return self._outcome_from_snapshot(snapshot)

    async def _send_prompt(
        self,
        run: _Invocation,
        client: OpenCodeClient,
        body: dict,
    ) -> Optional[PromptOutcome]:
        """Send a prompt, giving up when the cancel event is set first.

        Returns:
            The server's outcome, or None when the send was cancelled.
        """
        send = asyncio.ensure_future(
            client.send_prompt(run.session.id, body, self.directory, run.config.prompt_mode)
        )
        canceller = asyncio.ensure_future(run.cancel_event.wait())
        try:
            done, _ = await asyncio.wait({send, canceller}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [task for task in (send, canceller) if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        if send in done:
            return send.result()
        return None

    @staticmethod
    def _outcome_from_snapshot(snapshot: StreamSnapshot) -> AttemptOutcome:
        llm_error = snapshot.llm_error
        if llm_error is None:
            return AttemptOutcome(success=True, snapshot=snapshot)
        return AttemptOutcome(
            success=False,
            error=llm_error.message,
            llm_error=llm_error,
            retryable=llm_error.type == ErrorType.LLM_FETCH_ERROR,
            snapshot=snapshot,
        )

    @staticmethod
    def _snapshot(run: _Invocation) -> StreamSnapshot:
        if run.monitor is None:
            return StreamSnapshot()
        return run.monitor.attempt_snapshot()

    def _merge_sync_reply(self, run: _Invocation, parts, info) -> StreamSnapshot:
        """Combine the synchronous reply with what the event stream saw."""
        snapshot = self._snapshot(run)

        texts = [
            part["text"]
            for part in parts or ()
            if part.get("type") == "text" and isinstance(part.get("text"), str)
        ]
        info = info or {}
        tokens = info.get("tokens")

        return StreamSnapshot(
            tokens=TokenUsage.from_payload(tokens) if isinstance(tokens, dict) else snapshot.tokens,
            model=info.get("modelID") or snapshot.model,
            cost=info.get("cost") if info.get("cost") is not None else snapshot.cost,
            output_text="\n\n".join(texts) if texts else snapshot.output_text,
            prs_created=snapshot.prs_created,
            commits_created=snapshot.commits_created,
            comments_posted=snapshot.comments_posted,
            llm_error=snapshot.llm_error,
            session_idle=True,
        )

    def _assemble_result(self, run: _Invocation, retry_result: RetryResult) -> ExecutionResult:
        """Build the final result; only the winning attempt's data is carried."""
        outcome = retry_result.outcome
        duration = run.elapsed()

        if retry_result.state is PromptState.SUCCESS:
            snapshot = outcome.snapshot
            logger.info(
                "Agent execution completed",
                extra={
                    "session_id": run.session_id,
                    "duration_seconds": round(duration, 3),
                    "attempts": len(retry_result.attempts),
                },
            )
            return ExecutionResult(
                success=True,
                exit_code=0,
                duration_seconds=duration,
                session_id=run.session_id,
                token_usage=snapshot.tokens,
                model=snapshot.model,
                cost=snapshot.cost,
                output_text=snapshot.output_text,
                prs_created=snapshot.prs_created,
                commits_created=snapshot.commits_created,
                comments_posted=snapshot.comments_posted,
                attempts=len(retry_result.attempts),
            )

        return ExecutionResult(
            success=False,
            exit_code=1,
            duration_seconds=duration,
            session_id=run.session_id,
            error=outcome.error or "Unknown error",
            llm_error=outcome.llm_error,
            attempts=len(retry_result.attempts),
        )

    def _failure(self, run: _Invocation, exc: Exception) -> ExecutionResult:
        message = str(exc) or type(exc).__name__
        model_name = run.config.model.model_id if run.config.model is not None else None
        llm_error: Optional[ErrorInfo] = classify_llm_error(exc, model_name)
        return ExecutionResult(
            success=False,
            exit_code=1,
            duration_seconds=run.elapsed(),
            session_id=run.session_id,
            error=message,
            llm_error=llm_error,
            attempts=run.attempts,
        )

    async def _cleanup(self, run: _Invocation, result: Optional[ExecutionResult]) -> None:
        """Stop the monitor and release an owned backend exactly once.

        On a supplied backend, a session left running by the deadline or by
        cancellation is aborted instead.
        """
        if run.monitor is not None:
            await run.monitor.stop(self.settings.event_shutdown_grace_seconds)

        if run.handle is not None and not run.owns_backend and self._abandoned(run, result):
            await self._abort_session(run)

        if run.handle is not None and run.owns_backend:
            run.handle.shutdown()
            try:
                await run.handle.release()
            except Exception as exc:
                logger.warning("Failed to close backend", extra={"error": str(exc)})

    @staticmethod
    def _abandoned(run: _Invocation, result: Optional[ExecutionResult]) -> bool:
        if run.session is None or run.attempts == 0:
            return False
        if result is None or result.exit_code == TIMEOUT_EXIT_CODE:
            return True
        return run.cancel_event.is_set() and not result.success

    async def _abort_session(self, run: _Invocation) -> None:
        try:
            await run.handle.client.abort_session(run.session.id, self.directory)
        except Exception as exc:
            logger.warning(
                "Failed to abort session (non-fatal)",
                extra={"session_id": run.session.id, "error": str(exc)},
            )
            return
        logger.info("Aborted abandoned session", extra={"session_id": run.session.id})

    async def _emit(self, run: _Invocation, event_type: EventType, details: dict) -> None:
        try:
            await self.event_emitter.emit(
                HarnessEvent(
                    event_type=event_type,
                    target_id=run.target_id,
                    repository=run.repository,
                    details=details,
                )
            )
        except Exception as exc:
            logger.warning("Failed to emit event", extra={"event_type": event_type.value, "error": str(exc)})

    async def _emit_result(self, run: _Invocation, result: ExecutionResult) -> None:
        details = {
            "duration_seconds": round(result.duration_seconds, 3),
            "exit_code": result.exit_code,
            "session_id": result.session_id,
            "attempts": result.attempts,
        }
        if result.success:
            await self._emit(run, EventType.COMPLETION, details)
        elif result.exit_code == TIMEOUT_EXIT_CODE:
            await self._emit(run, EventType.TIMEOUT, details)
        else:
            await self._emit(run, EventType.ERROR, {**details, "error": result.error})
