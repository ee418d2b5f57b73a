"""GitHub API access for relaying agent results.

- GitHubClient: comments, labels and reactions with retry and rate limiting
- ReactionManager: eyes/hooray/confused reactions and the working label
- URL helpers: strict extraction of GitHub URLs and commit SHAs
"""

from src.harness.github.client import GitHubAPIError, GitHubClient, RateLimitError
from src.harness.github.reactions import WORKING_LABEL, ReactionManager

__all__ = [
    "GitHubAPIError",
    "GitHubClient",
    "RateLimitError",
    "ReactionManager",
    "WORKING_LABEL",
]
