"""GitHub integration: issue models and the async REST client."""

from src.bugfixer.github.client import GitHubAPIError, GitHubClient, RateLimitError
from src.bugfixer.github.models import (
    Issue,
    IssueState,
    PRCreateRequest,
    PRCreateResult,
    RepositoryRef,
    issue_url_pattern,
    parse_issue_url,
    parse_repository,
)

__all__ = [
    "GitHubAPIError",
    "GitHubClient",
    "Issue",
    "IssueState",
    "PRCreateRequest",
    "PRCreateResult",
    "RateLimitError",
    "RepositoryRef",
    "issue_url_pattern",
    "parse_issue_url",
    "parse_repository",
]
