"""GitHub webhook trigger models.

A TriggerEvent is the part of an ``issue_comment`` or ``issues`` webhook
that the harness needs to acknowledge the request, build the agent prompt
and reply on the same issue or pull request.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class TriggerKind(str, Enum):
    """Webhook event types that can trigger the agent.

    Attributes:
        ISSUE_COMMENT: A comment on an issue or pull request mentioned the bot.
        ISSUE_OPENED: A new issue mentioned the bot in its body.
    """

    ISSUE_COMMENT = "issue_comment"
    ISSUE_OPENED = "issues"


class AuthorAssociation(str, Enum):
    """Author associations allowed to trigger the agent."""

    OWNER = "OWNER"
    MEMBER = "MEMBER"
    COLLABORATOR = "COLLABORATOR"


class TriggerEvent(BaseModel):
    """Parsed webhook event that triggers an agent run.

    Attributes:
        kind: Webhook event type.
        owner: Repository owner.
        repository: Repository name without the owner prefix.
        issue_number: Issue or pull request number.
        title: Issue or pull request title.
        body: Issue body for opened issues, comment body for comments.
        author: Login of the user who triggered the run.
        author_association: The author's association with the repository.
        is_pull_request: True when the comment was made on a pull request.
        comment_id: Triggering comment id, None for opened issues.
    """

    kind: TriggerKind
    owner: str = Field(..., min_length=1)
    repository: str = Field(..., min_length=1)
    issue_number: int = Field(..., gt=0)
    title: str = ""
    body: str = ""
    author: str = Field(..., min_length=1)
    author_association: AuthorAssociation
    is_pull_request: bool = False
    comment_id: Optional[int] = None

    @property
    def full_repository(self) -> str:
        """Repository path in format "{owner}/{repository}"."""
        return f"{self.owner}/{self.repository}"

    @property
    def target_id(self) -> str:
        """Canonical identifier in format "{owner}/{repository}#{issue_number}"."""
        return f"{self.owner}/{self.repository}#{self.issue_number}"
