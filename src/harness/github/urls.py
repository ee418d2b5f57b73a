"""GitHub URL and commit SHA extraction from tool output.

Only URLs whose hostname is exactly github.com or api.github.com are
accepted, so look-alike hosts in agent output are never reported as
artifacts.
"""

import re
from typing import List
from urllib.parse import urlparse

GITHUB_HOSTNAMES = ("github.com", "api.github.com")

_GITHUB_URL_PATTERN = re.compile(
    r"https://github\.com/[a-zA-Z0-9-]+/[\w.-]+/(?:pull|issues)/\d+(?:#issuecomment-\d+)?"
)

# Standard `git commit` summary line: [branch-name abc1234]
_COMMIT_SHA_PATTERN = re.compile(r"\[[\w-]+\s+([a-f0-9]{7,40})\]")


def is_github_url(url: str) -> bool:
    """Return True when the URL's hostname is a GitHub hostname."""
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return False
    return hostname in GITHUB_HOSTNAMES


def _unique(values: List[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def extract_github_urls(text: str) -> List[str]:
    """Extract unique pull request, issue and comment URLs in order of appearance."""
    matches = _GITHUB_URL_PATTERN.findall(text)
    return [url for url in _unique(matches) if is_github_url(url)]


def extract_commit_shas(text: str) -> List[str]:
    """Extract unique commit SHAs from git commit output."""
    return _unique(_COMMIT_SHA_PATTERN.findall(text))
