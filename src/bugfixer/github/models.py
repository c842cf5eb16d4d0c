"""GitHub data models for the bug fixer.

This module defines the tracker-side models consumed by the pipeline:
- Issue: Immutable snapshot of a GitHub issue
- RepositoryRef: Owner/name pair identifying a repository
- PRCreateRequest / PRCreateResult: Pull request creation payloads

It also provides helpers to parse issue URLs and repository identifiers.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_WEB_URL = "https://github.com"
REPOSITORY_PATTERN = re.compile(
    r"^(?:https?://[^/]+/)?([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+?)(?:\.git)?/?$"
)


class IssueState(str, Enum):
    """State of an issue on the tracker."""

    OPEN = "open"
    CLOSED = "closed"


class Issue(BaseModel):
    """Snapshot of a GitHub issue fetched on demand.

    The tracker is the source of truth; this snapshot is never written
    back and is frozen once constructed.

    Attributes:
        number: Issue number within the repository.
        title: Issue title.
        body: Issue body (empty string when GitHub returns null).
        labels: Label names attached to the issue.
        state: Open or closed.
        created_at: Creation timestamp.
        updated_at: Last update timestamp.
        author_login: Login of the issue author.
    """

    model_config = ConfigDict(frozen=True)

    number: int = Field(..., gt=0)
    title: str
    body: str = ""
    labels: List[str] = Field(default_factory=list)
    state: IssueState = IssueState.OPEN
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    author_login: str = ""

    @classmethod
    def from_github_response(cls, data: Dict[str, Any]) -> "Issue":
        """Build an Issue from a GitHub REST API issue payload.

        Args:
            data: JSON payload from GET /repos/{owner}/{repo}/issues/{n}.

        Returns:
            Issue snapshot.
        """
        labels = []
        for label in data.get("labels") or []:
            if isinstance(label, str):
                labels.append(label)
            elif isinstance(label, dict) and label.get("name"):
                labels.append(label["name"])

        return cls(
            number=data["number"],
            title=data.get("title") or "",
            body=data.get("body") or "",
            labels=labels,
            state=IssueState(data.get("state", "open")),
            created_at=data.get("created_at") or datetime.now(timezone.utc),
            updated_at=data.get("updated_at") or datetime.now(timezone.utc),
            author_login=(data.get("user") or {}).get("login", ""),
        )


class RepositoryRef(BaseModel):
    """Owner/name pair identifying a hosted repository."""

    model_config = ConfigDict(frozen=True)

    owner: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)

    @property
    def full_name(self) -> str:
        """Repository path in format "{owner}/{name}"."""
        return f"{self.owner}/{self.name}"

    @property
    def url(self) -> str:
        """Canonical web URL of the repository."""
        return f"https://github.com/{self.owner}/{self.name}"

    def issue_id(self, issue_number: int) -> str:
        """Canonical issue identifier in format "{owner}/{name}#{number}"."""
        return f"{self.full_name}#{issue_number}"


class PRCreateRequest(BaseModel):
    """Request payload for creating a pull request."""

    title: str = Field(..., min_length=1)
    body: str = ""
    head_branch: str = Field(..., min_length=1)
    base_branch: str = Field(..., min_length=1)


class PRCreateResult(BaseModel):
    """Result of a successful pull request creation."""

    pr_number: int = Field(..., gt=0)
    pr_url: str

    @classmethod
    def from_github_response(cls, data: Dict[str, Any]) -> "PRCreateResult":
        """Build a result from the GitHub pulls API response."""
        return cls(
            pr_number=data["number"],
            pr_url=data.get("html_url") or data.get("url", ""),
        )


def issue_url_pattern(web_url: str = DEFAULT_WEB_URL) -> "re.Pattern[str]":
    """Pattern for issue and pull request URLs on one web host.

    The scheme of ``web_url`` is ignored, so http and https links both
    match. Any path prefix (GitHub Enterprise behind a proxy) is kept.
    """
    parts = urlsplit(web_url if "//" in web_url else f"//{web_url}")
    host = parts.netloc + parts.path.rstrip("/")
    return re.compile(
        rf"(?:^|//){re.escape(host)}/([^/\s]+)/([^/\s]+)/(?:issues|pull)/(\d+)",
        re.IGNORECASE,
    )


def parse_issue_url(
    issue_url: str, web_url: str = DEFAULT_WEB_URL
) -> Optional[Tuple[RepositoryRef, int]]:
    """Parse an issue or pull request URL on the configured GitHub host.

    Args:
        issue_url: URL such as https://github.com/owner/repo/issues/123.
        web_url: Web root of the GitHub instance; URLs on any other host
            are rejected.

    Returns:
        Tuple of (repository, issue number), or None if the URL is malformed.

    Example:
        >>> repo, number = parse_issue_url("https://github.com/acme/widgets/issues/42")
        >>> (repo.full_name, number)
        ('acme/widgets', 42)
        >>> parse_issue_url(
        ...     "https://git.corp.example/acme/widgets/issues/7",
        ...     web_url="https://git.corp.example",
        ... )[1]
        7
    """
    if not issue_url:
        return None
    match = issue_url_pattern(web_url).search(issue_url)
    if match is None:
        return None
    owner, name, number = match.groups()
    return RepositoryRef(owner=owner, name=name), int(number)


def parse_repository(repository: str) -> Optional[RepositoryRef]:
    """Parse a repository identifier.

    Accepts "owner/repo", "https://github.com/owner/repo" and the
    same forms with a trailing ".git" or slash.

    Args:
        repository: Repository identifier or URL.

    Returns:
        RepositoryRef, or None if the identifier cannot be parsed.
    """
    if not repository:
        return None
    match = REPOSITORY_PATTERN.match(repository.strip())
    if match is None:
        return None
    owner, name = match.groups()
    return RepositoryRef(owner=owner, name=name)
