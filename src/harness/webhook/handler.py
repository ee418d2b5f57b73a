"""GitHub webhook parsing for agent triggers.

Turns raw ``issue_comment`` and ``issues`` webhook payloads into
TriggerEvent objects. A payload triggers the agent only when:

- the action is ``created`` (comments) or ``opened`` (issues)
- the author is an OWNER, MEMBER or COLLABORATOR of the repository
- the comment or issue body mentions the trigger phrase
- the comment was not written by the bot itself

GitHub Webhook Payload Structure (issue_comment event):
{
  "action": "created",
  "issue": {
    "number": 42,
    "title": "Issue title",
    "pull_request": {...}   # present only for pull request comments
  },
  "comment": {
    "id": 1001,
    "body": "@fro-bot please fix the tests",
    "user": {"login": "octocat"},
    "author_association": "MEMBER"
  },
  "repository": {"name": "repo-name", "owner": {"login": "owner-name"}}
}
"""

import logging
from typing import Any, Dict, Optional

from .models import AuthorAssociation, TriggerEvent, TriggerKind

logger = logging.getLogger(__name__)


SUPPORTED_ACTIONS = {
    TriggerKind.ISSUE_COMMENT: "created",
    TriggerKind.ISSUE_OPENED: "opened",
}


class WebhookHandler:
    """Parses GitHub webhook payloads into TriggerEvent objects.

    Attributes:
        trigger_phrase: Text a body must contain to trigger the agent.
        bot_login: The bot's own login; its comments never trigger a run.
    """

    def __init__(self, trigger_phrase: str, bot_login: Optional[str] = None) -> None:
        self.trigger_phrase = trigger_phrase
        self.bot_login = bot_login

    def parse_event(
        self, event_name: str, payload: Dict[str, Any]
    ) -> Optional[TriggerEvent]:
        """Parse a webhook delivery.

        Args:
            event_name: Value of the X-GitHub-Event header.
            payload: The raw webhook payload.

        Returns:
            TriggerEvent when the delivery should trigger the agent,
            None otherwise.
        """
        if not isinstance(payload, dict):
            logger.warning("Invalid payload: expected dict, got %s", type(payload))
            return None

        try:
            kind = TriggerKind(event_name)
        except ValueError:
            logger.debug("Ignoring unsupported event type: %s", event_name)
            return None

        action = payload.get("action")
        if action != SUPPORTED_ACTIONS[kind]:
            logger.debug("Ignoring %s action: %s", event_name, action)
            return None

        try:
            if kind is TriggerKind.ISSUE_COMMENT:
                return self._parse_comment(payload)
            return self._parse_opened_issue(payload)
        except Exception as e:
            logger.exception("Unexpected error parsing webhook payload: %s", e)
            return None

    def _parse_comment(self, payload: Dict[str, Any]) -> Optional[TriggerEvent]:
        comment = payload.get("comment")
        issue = payload.get("issue")
        if not isinstance(comment, dict) or not isinstance(issue, dict):
            logger.warning("Missing 'comment' or 'issue' in issue_comment payload")
            return None

        author = self._extract_user_login(comment.get("user"), "comment author")
        if author is None:
            return None
        if self.bot_login and author.lower() == self.bot_login.lower():
            logger.debug("Ignoring comment written by the bot")
            return None

        body = comment.get("body") or ""
        return self._build_event(
            payload,
            kind=TriggerKind.ISSUE_COMMENT,
            issue=issue,
            body=body,
            author=author,
            association=comment.get("author_association"),
            comment_id=comment.get("id"),
        )

    def _parse_opened_issue(self, payload: Dict[str, Any]) -> Optional[TriggerEvent]:
        issue = payload.get("issue")
        if not isinstance(issue, dict):
            logger.warning("Missing or invalid 'issue' field in payload")
            return None

        author = self._extract_user_login(issue.get("user"), "issue author")
        if author is None:
            return None

        return self._build_event(
            payload,
            kind=TriggerKind.ISSUE_OPENED,
            issue=issue,
            body=issue.get("body") or "",
            author=author,
            association=issue.get("author_association"),
            comment_id=None,
        )

    def _build_event(
        self,
        payload: Dict[str, Any],
        kind: TriggerKind,
        issue: Dict[str, Any],
        body: str,
        author: str,
        association: Any,
        comment_id: Any,
    ) -> Optional[TriggerEvent]:
        if not self.mentions_trigger(body):
            logger.debug("Body does not mention trigger phrase")
            return None

        try:
            author_association = AuthorAssociation(association)
        except ValueError:
            logger.info(
                "Ignoring trigger from unauthorized author: %s (%s)",
                author,
                association,
            )
            return None

        repo_data = payload.get("repository")
        if not isinstance(repo_data, dict):
            logger.warning("Missing or invalid 'repository' field in payload")
            return None

        repo_name = repo_data.get("name")
        if not isinstance(repo_name, str) or not repo_name.strip():
            logger.warning("Invalid or empty repository name: %s", repo_name)
            return None

        owner = self._extract_user_login(repo_data.get("owner"), "repository owner")
        if owner is None:
            return None

        issue_number = issue.get("number")
        if not isinstance(issue_number, int) or issue_number <= 0:
            logger.warning("Invalid issue number: %s", issue_number)
            return None

        event = TriggerEvent(
            kind=kind,
            owner=owner,
            repository=repo_name.strip(),
            issue_number=issue_number,
            title=(issue.get("title") or "").strip(),
            body=body,
            author=author,
            author_association=author_association,
            is_pull_request=isinstance(issue.get("pull_request"), dict),
            comment_id=comment_id if isinstance(comment_id, int) else None,
        )

        logger.info("Parsed trigger event: kind=%s, target=%s", kind.value, event.target_id)
        return event

    def mentions_trigger(self, body: str) -> bool:
        """Check whether a body mentions the trigger phrase (case-insensitive)."""
        return bool(body) and self.trigger_phrase.lower() in body.lower()

    def _extract_user_login(self, user_data: Any, context: str) -> Optional[str]:
        if not isinstance(user_data, dict):
            logger.warning("Missing or invalid %s data: %s", context, type(user_data))
            return None

        login = user_data.get("login")
        if not isinstance(login, str) or not login.strip():
            logger.warning("Invalid or empty %s login: %s", context, login)
            return None

        return login.strip()
