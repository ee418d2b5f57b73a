"""Dispatcher connecting webhook triggers to agent runs.

Drives one TriggerEvent through:
acknowledge -> build prompt -> execute agent -> relay result -> complete
acknowledgment.

The dispatcher never raises: GitHub side effects are best-effort and the
executor returns a result on every path.
"""

import asyncio
import logging
import uuid
from typing import Optional

from src.harness.agent.errors import create_error_info, format_error_comment
from src.harness.agent.executor import AgentExecutor
from src.harness.agent.models import ErrorType, ExecutionResult
from src.harness.agent.prompt import build_agent_prompt
from src.harness.backend.server import BackendHandle
from src.harness.github.client import GitHubAPIError, GitHubClient
from src.harness.github.reactions import ReactionManager
from src.harness.webhook.models import TriggerEvent

logger = logging.getLogger(__name__)


class Dispatcher:
    """Runs the agent for trigger events and relays the outcome to GitHub.

    Attributes:
        executor: Runs agent invocations.
        github_client: Posts result and error comments.
        reactions: Manages acknowledgment reactions and the working label.
        custom_prompt: Extra instructions added to every prompt.
        backend: Shared backend reused across runs, or None to start one
            per run.
    """

    def __init__(
        self,
        executor: AgentExecutor,
        github_client: GitHubClient,
        reactions: ReactionManager,
        custom_prompt: Optional[str] = None,
        backend: Optional[BackendHandle] = None,
    ):
        self.executor = executor
        self.github_client = github_client
        self.reactions = reactions
        self.custom_prompt = custom_prompt
        self.backend = backend

    async def dispatch(
        self,
        event: TriggerEvent,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ExecutionResult:
        """Handle one trigger end to end.

        Args:
            event: The parsed trigger.
            cancel_event: Set to abort the agent run.

        Returns:
            The ExecutionResult of the agent run.
        """
        run_id = uuid.uuid4().hex[:12]
        logger.info(
            "Dispatching agent run",
            extra={"target_id": event.target_id, "run_id": run_id, "kind": event.kind.value},
        )

        await self.reactions.acknowledge_receipt(event)

        prompt = build_agent_prompt(event, self.custom_prompt, run_id=run_id)
        result = await self.executor.execute(
            prompt,
            backend=self.backend,
            cancel_event=cancel_event,
            target_id=event.target_id,
            repository=event.full_repository,
        )

        await self._relay_result(event, result)
        await self.reactions.complete_acknowledgment(event, result.success)

        logger.info(
            "Agent run finished",
            extra={
                "target_id": event.target_id,
                "run_id": run_id,
                "success": result.success,
                "exit_code": result.exit_code,
                "prs_created": list(result.prs_created),
                "commits_created": list(result.commits_created),
            },
        )
        return result

    async def _relay_result(self, event: TriggerEvent, result: ExecutionResult) -> None:
        """Post the error comment on failure, or the agent's reply if it posted none."""
        if result.success:
            if result.comments_posted > 0 or not result.output_text:
                return
            body = result.output_text
        else:
            error = result.llm_error or create_error_info(
                ErrorType.INTERNAL,
                result.error or "Unknown error",
                False,
            )
            body = format_error_comment(error)

        try:
            await self.github_client.create_comment(
                event.owner, event.repository, event.issue_number, body
            )
        except GitHubAPIError as e:
            logger.warning(
                "Failed to post result comment (non-fatal): %s",
                e,
                extra={"target_id": event.target_id},
            )
