"""Pull request publication for applied proposals.

Builds the pull request title, body and issue comment from a proposal,
opens the pull request and comments on the originating issue.
"""

import logging

from src.bugfixer.github.client import GitHubAPIError, GitHubClient
from src.bugfixer.github.models import PRCreateRequest, PRCreateResult, RepositoryRef
from src.bugfixer.proposals.models import CodeChange, FixProposal

logger = logging.getLogger(__name__)


def _prefix_lines(text: str, prefix: str) -> str:
    return "\n".join(f"{prefix}{line}" for line in text.split("\n"))


def render_change_diff(change: CodeChange) -> str:
    """Diff-style rendering of one change.

    Example:
        >>> change = CodeChange(file_path="a.py", original_code="x = 1", new_code="x = 2")
        >>> print(render_change_diff(change))
        - x = 1
        + x = 2
    """
    original = (
        _prefix_lines(change.original_code, "- ")
        if change.original_code
        else "- /* new file */"
    )
    return f"{original}\n{_prefix_lines(change.new_code, '+ ')}"


def build_pr_title(proposal: FixProposal) -> str:
    return f"Fix: {proposal.title}"


def build_pr_body(proposal: FixProposal) -> str:
    """Markdown pull request description for a proposal."""
    sections = []
    for change in proposal.code_changes:
        sections.append(
            f"### {change.file_path}\n\n"
            f"{change.explanation}\n\n"
            f"```diff\n{render_change_diff(change)}\n```"
        )

    return (
        f"## Fix for Issue #{proposal.issue_number}\n\n"
        f"{proposal.description}\n\n"
        f"Closes #{proposal.issue_number}\n\n"
        "### Changes\n\n"
        + "\n\n".join(sections)
        + "\n\n---\n"
        f"*This PR was automatically generated with {proposal.confidence}% confidence.*"
    )


def build_issue_comment(pr: PRCreateResult) -> str:
    return f"A fix has been proposed in PR #{pr.pr_number}: {pr.pr_url}"


class PRPublisher:
    """Opens pull requests for applied proposals."""

    def __init__(self, github_client: GitHubClient, repository: RepositoryRef):
        self.github_client = github_client
        self.repository = repository

    async def publish(
        self,
        proposal: FixProposal,
        head_branch: str,
        base_branch: str,
    ) -> PRCreateResult:
        """Open the pull request and comment on the issue.

        A failed issue comment is logged and does not fail publication,
        since the pull request already exists at that point.

        Raises:
            GitHubAPIError: If the pull request cannot be created.
        """
        result = await self.github_client.create_pull_request(
            self.repository.owner,
            self.repository.name,
            PRCreateRequest(
                title=build_pr_title(proposal),
                body=build_pr_body(proposal),
                head_branch=head_branch,
                base_branch=base_branch,
            ),
        )

        try:
            await self.github_client.create_comment(
                self.repository.owner,
                self.repository.name,
                proposal.issue_number,
                build_issue_comment(result),
            )
        except GitHubAPIError as e:
            logger.warning(
                "Failed to comment on issue",
                extra={
                    "issue_number": proposal.issue_number,
                    "pr_number": result.pr_number,
                    "status_code": e.status_code,
                },
            )

        return result
