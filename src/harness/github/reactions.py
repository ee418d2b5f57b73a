"""Acknowledgment reactions and the working label.

On receipt the triggering comment gets an "eyes" reaction and the issue
gets the working label. On completion the eyes reaction is swapped for
"hooray" or "confused" and the label is removed. Every step is
best-effort: failures are logged and never affect the agent run.
"""

import asyncio
import logging
from typing import Optional

from src.harness.github.client import GitHubAPIError, GitHubClient
from src.harness.webhook.models import TriggerEvent

logger = logging.getLogger(__name__)


WORKING_LABEL = "agent: working"
WORKING_LABEL_COLOR = "fcf2e1"
WORKING_LABEL_DESCRIPTION = "Agent is currently working on this"


class ReactionManager:
    """Manages acknowledgment reactions and labels for a trigger.

    Attributes:
        github_client: Client used for reactions and labels.
        bot_login: The bot's login, needed to find its own eyes reaction.
    """

    def __init__(self, github_client: GitHubClient, bot_login: Optional[str] = None):
        self.github_client = github_client
        self.bot_login = bot_login

    async def acknowledge_receipt(self, event: TriggerEvent) -> None:
        """Add the eyes reaction and the working label concurrently."""
        await asyncio.gather(self.add_eyes_reaction(event), self.add_working_label(event))

    async def add_eyes_reaction(self, event: TriggerEvent) -> bool:
        try:
            if event.comment_id is None:
                await self.github_client.create_issue_reaction(
                    event.owner, event.repository, event.issue_number, "eyes"
                )
            else:
                await self.github_client.create_comment_reaction(
                    event.owner, event.repository, event.comment_id, "eyes"
                )
        except GitHubAPIError as e:
            logger.warning("Failed to add eyes reaction (non-fatal): %s", e)
            return False
        logger.info("Added eyes reaction", extra={"comment_id": event.comment_id})
        return True

    async def add_working_label(self, event: TriggerEvent) -> bool:
        try:
            await self.github_client.ensure_label(
                event.owner,
                event.repository,
                WORKING_LABEL,
                WORKING_LABEL_COLOR,
                WORKING_LABEL_DESCRIPTION,
            )
            await self.github_client.add_label(
                event.owner, event.repository, event.issue_number, WORKING_LABEL
            )
        except GitHubAPIError as e:
            logger.warning("Failed to add working label (non-fatal): %s", e)
            return False
        logger.info("Added working label", extra={"issue_number": event.issue_number})
        return True

    async def complete_acknowledgment(self, event: TriggerEvent, success: bool) -> None:
        """Swap the eyes reaction for the outcome reaction, then drop the label."""
        await self._update_reaction(event, "hooray" if success else "confused")
        await self.remove_working_label(event)

    async def _update_reaction(self, event: TriggerEvent, content: str) -> None:
        if event.comment_id is None or self.bot_login is None:
            logger.debug("Missing comment ID or bot login, skipping reaction update")
            return

        try:
            await self._remove_eyes_reaction(event)
            await self.github_client.create_comment_reaction(
                event.owner, event.repository, event.comment_id, content
            )
            logger.info(
                "Updated reaction",
                extra={"comment_id": event.comment_id, "reaction": content},
            )
        except GitHubAPIError as e:
            logger.warning("Failed to update reaction (non-fatal): %s", e)

    async def _remove_eyes_reaction(self, event: TriggerEvent) -> None:
        reactions = await self.github_client.list_comment_reactions(
            event.owner, event.repository, event.comment_id
        )
        for reaction in reactions:
            user = reaction.get("user") or {}
            if reaction.get("content") == "eyes" and user.get("login") == self.bot_login:
                await self.github_client.delete_comment_reaction(
                    event.owner, event.repository, event.comment_id, reaction["id"]
                )
                return

    async def remove_working_label(self, event: TriggerEvent) -> None:
        try:
            await self.github_client.remove_label(
                event.owner, event.repository, event.issue_number, WORKING_LABEL
            )
        except GitHubAPIError as e:
            logger.warning("Failed to remove working label (non-fatal): %s", e)
