"""Event stream monitor.

Consumes the backend's server-sent event stream for one invocation in a
background task. Agent text and tool runs are logged as they complete,
token usage and model information are captured, session errors are
classified, and bash tool output is scanned for pull requests, commits
and comments the agent created.

Data is collected per attempt: start_attempt() resets the collectors so a
failed attempt never leaks into the final result.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from src.harness.agent.errors import classify_session_error
from src.harness.agent.models import ErrorInfo, StreamSnapshot, TokenUsage
from src.harness.agent.poller import ActivityTracker
from src.harness.github.urls import extract_commit_shas, extract_github_urls

logger = logging.getLogger(__name__)


@dataclass
class ArtifactDetection:
    """Artifacts found in the output of one bash command."""

    prs_created: List[str] = field(default_factory=list)
    commits_created: List[str] = field(default_factory=list)
    comment_posted: bool = False


def detect_artifacts(command: str, output: str) -> ArtifactDetection:
    """Scan a bash command and its output for GitHub artifacts.

    Args:
        command: The command line the agent ran.
        output: The command's output.

    Returns:
        ArtifactDetection with PR URLs (from ``gh pr create``), commit SHAs
        (from ``git commit``) and whether a comment was posted.
    """
    detection = ArtifactDetection()
    urls = extract_github_urls(output)

    if "gh pr create" in command:
        detection.prs_created = [url for url in urls if "/pull/" in url and "#" not in url]

    if "git commit" in command:
        detection.commits_created = extract_commit_shas(output)

    if "gh issue comment" in command or "gh pr comment" in command:
        detection.comment_posted = any("#issuecomment" in url for url in urls)

    return detection


class _AttemptCollector:
    def __init__(self, number: int) -> None:
        self.number = number
        self.pending_text = ""
        self.text_blocks: List[str] = []
        self.tokens: Optional[TokenUsage] = None
        self.model: Optional[str] = None
        self.cost: Optional[float] = None
        self.prs_created: List[str] = []
        self.commits_created: List[str] = []
        self.comments_posted = 0
        self.llm_error: Optional[ErrorInfo] = None
        self.session_idle = False

    def snapshot(self) -> StreamSnapshot:
        blocks = list(self.text_blocks)
        if self.pending_text:
            blocks.append(self.pending_text)
        return StreamSnapshot(
            tokens=self.tokens,
            model=self.model,
            cost=self.cost,
            output_text="\n\n".join(blocks) if blocks else None,
            prs_created=tuple(self.prs_created),
            commits_created=tuple(self.commits_created),
            comments_posted=self.comments_posted,
            llm_error=self.llm_error,
            session_idle=self.session_idle,
        )


def _session_id_of(event_type: str, properties: Dict[str, Any]) -> Optional[str]:
    if event_type == "message.part.updated":
        part = properties.get("part") or {}
        return part.get("sessionID")
    if event_type == "message.updated":
        info = properties.get("info") or {}
        return info.get("sessionID")
    return properties.get("sessionID")


class EventStreamMonitor:
    """Background consumer of the backend event stream.

    Attributes:
        session_id: Session whose events are collected.
        tracker: Activity signals shared with the completion poller.
    """

    def __init__(
        self,
        subscription: Any,
        session_id: str,
        tracker: Optional[ActivityTracker] = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ):
        self._subscription = subscription
        self.session_id = session_id
        self.tracker = tracker or ActivityTracker()
        self._log_callback = log_callback
        self._collector = _AttemptCollector(1)
        self._task: Optional["asyncio.Task[None]"] = None
        self._stopping = False

    @property
    def task(self) -> Optional["asyncio.Task[None]"]:
        return self._task

    def start(self) -> "asyncio.Task[None]":
        """Start consuming events in a background task and retain its handle."""
        if self._task is None:
            self._task = asyncio.ensure_future(self._run())
        return self._task

    def start_attempt(self, number: int) -> None:
        """Discard data collected so far and collect for a new attempt."""
        self._collector = _AttemptCollector(number)
        self.tracker.reset()

    def attempt_snapshot(self) -> StreamSnapshot:
        """Return the data collected for the current attempt."""
        return self._collector.snapshot()

    async def stop(self, grace_seconds: float = 2.0) -> None:
        """Close the stream and wait up to ``grace_seconds`` for the task to end.

        The task is cancelled if it is still running after the grace period.
        """
        self._stopping = True
        try:
            await self._subscription.aclose()
        except Exception as exc:
            logger.debug("Error closing event subscription", extra={"error": str(exc)})

        task = self._task
        if task is None or task.done():
            return

        done, _ = await asyncio.wait({task}, timeout=grace_seconds)
        if not done:
            logger.debug("Event monitor did not stop within grace period, cancelling")
            task.cancel()

    async def _run(self) -> None:
        try:
            async for event in self._subscription.events():
                if self._stopping:
                    break
                try:
                    self.handle_event(event)
                except Exception as exc:
                    logger.debug(
                        "Failed to process event",
                        extra={"event_type": event.get("type"), "error": str(exc)},
                    )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if not self._stopping:
                logger.debug("Event stream ended with error", extra={"error": str(exc)})
        finally:
            self._flush_text()

    def handle_event(self, event: Dict[str, Any]) -> None:
        """Route a single decoded event."""
        event_type = event.get("type") or ""
        properties = event.get("properties") or {}

        event_session = _session_id_of(event_type, properties)
        if event_session is not None and event_session != self.session_id:
            return

        if event_type == "message.part.updated":
            self._handle_part(properties.get("part") or {})
        elif event_type == "message.updated":
            self._handle_message(properties.get("info") or {})
        elif event_type == "session.error":
            self._handle_session_error(properties.get("error"))
        elif event_type == "session.idle":
            self._handle_idle()
        else:
            logger.debug("Server event", extra={"event_type": event_type})

    def _handle_part(self, part: Dict[str, Any]) -> None:
        self.tracker.first_meaningful_event = True
        part_type = part.get("type")

        if part_type == "text" and isinstance(part.get("text"), str):
            self._collector.pending_text = part["text"]
            end_time = (part.get("time") or {}).get("end")
            if end_time is not None:
                self._flush_text()
            return

        if part_type == "tool":
            state = part.get("state") or {}
            if state.get("status") != "completed":
                return
            tool_name = str(part.get("tool") or "")
            self._emit(f"[tool] {tool_name}: {state.get('title') or ''}".rstrip())

            if tool_name.lower() == "bash":
                tool_input = state.get("input") or {}
                command = str(tool_input.get("command") or tool_input.get("cmd") or "")
                self._record_artifacts(command, str(state.get("output") or ""))

    def _record_artifacts(self, command: str, output: str) -> None:
        detection = detect_artifacts(command, output)
        collector = self._collector
        for url in detection.prs_created:
            if url not in collector.prs_created:
                collector.prs_created.append(url)
        for sha in detection.commits_created:
            if sha not in collector.commits_created:
                collector.commits_created.append(sha)
        if detection.comment_posted:
            collector.comments_posted += 1

    def _handle_message(self, info: Dict[str, Any]) -> None:
        if info.get("role") != "assistant" or not isinstance(info.get("tokens"), dict):
            return
        self.tracker.first_meaningful_event = True
        collector = self._collector
        collector.tokens = TokenUsage.from_payload(info["tokens"])
        collector.model = info.get("modelID")
        collector.cost = info.get("cost")
        logger.debug(
            "Token usage received",
            extra={"model": collector.model, "cost": collector.cost},
        )

    def _handle_session_error(self, error: Any) -> None:
        logger.error(
            "Session error",
            extra={"session_id": self.session_id, "error": str(error)},
        )
        self._collector.llm_error = classify_session_error(error, self._collector.model)

    def _handle_idle(self) -> None:
        self._flush_text()
        self._collector.session_idle = True
        self.tracker.session_idle = True

    def _flush_text(self) -> None:
        text = self._collector.pending_text
        if not text:
            return
        self._collector.pending_text = ""
        self._collector.text_blocks.append(text)
        self._emit(text)

    def _emit(self, line: str) -> None:
        logger.info("Agent output: %s", line, extra={"session_id": self.session_id})
        if self._log_callback is not None:
            self._log_callback(line)
