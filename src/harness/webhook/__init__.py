"""GitHub webhook handling for agent triggers.

Parses issue_comment (created) and issues (opened) deliveries and keeps
only those from trusted authors that mention the trigger phrase.
"""

from .handler import WebhookHandler
from .models import AuthorAssociation, TriggerEvent, TriggerKind

__all__ = [
    "AuthorAssociation",
    "TriggerEvent",
    "TriggerKind",
    "WebhookHandler",
]
