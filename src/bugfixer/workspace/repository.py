"""Local working tree management for a monitored repository.

A WorkingTree is a disk-resident checkout reused across proposals for the
same repository. Its ``lock`` serializes apply pipelines so two approvals
never interleave fetches, checkouts or commits in the same directory.

All git invocations go through CommandRunner; any non-zero exit or
timeout raises GitCommandError with credentials stripped from the
recorded command and output.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import List, Optional, Sequence

from src.bugfixer.runner.command import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

NON_ALNUM_PATTERN = re.compile(r"[^a-zA-Z0-9]")


class GitCommandError(Exception):
    """Raised when a git command fails or times out.

    Attributes:
        command: The git command line (credentials redacted).
        exit_code: Process exit code (-1 for timeout/OS errors).
        output: Combined output (credentials redacted).
    """

    def __init__(self, command: str, exit_code: int, output: str):
        self.command = command
        self.exit_code = exit_code
        self.output = output
        detail = output.strip().splitlines()[-1] if output.strip() else "no output"
        super().__init__(f"git command failed ({exit_code}): {command}: {detail}")


def working_dir_for(base_path: Path, repository_url: str) -> Path:
    """Directory holding the checkout for a repository URL.

    Example:
        >>> working_dir_for(Path("/var/repos"), "https://github.com/acme/widgets")
        PosixPath('/var/repos/https___github_com_acme_widgets')
    """
    return base_path / NON_ALNUM_PATTERN.sub("_", repository_url)


def authenticated_clone_url(web_url: str, full_name: str, token: str) -> str:
    """Build an HTTPS clone URL that authenticates with a token."""
    scheme, _, host = web_url.partition("://")
    return f"{scheme}://x-access-token:{token}@{host}/{full_name}.git"


class WorkingTree:
    """A reusable local checkout of one repository.

    Attributes:
        path: Checkout directory.
        lock: Serializes apply pipelines against this checkout.

    Example:
        >>> tree = WorkingTree(Path("/var/repos/acme"), clone_url, CommandRunner())
        >>> async with tree.lock:
        ...     await tree.prepare("main")
        ...     await tree.checkout_branch("bugfix/issue-42-1700000000000")
    """

    def __init__(
        self,
        path: Path,
        clone_url: str,
        runner: CommandRunner,
        timeout_seconds: float = 300,
        author_name: str = "Pluggable Bug Fixer",
        author_email: str = "bugfixer@users.noreply.github.com",
        secrets: Sequence[str] = (),
    ):
        """Initialize the working tree.

        Args:
            path: Checkout directory (created on first prepare).
            clone_url: URL to clone from; may embed credentials.
            runner: Command runner for git invocations.
            timeout_seconds: Timeout applied to each git command.
            author_name: Commit author and committer name.
            author_email: Commit author and committer email.
            secrets: Values scrubbed from logged commands and error output.
        """
        self.path = path
        self.clone_url = clone_url
        self.runner = runner
        self.timeout_seconds = timeout_seconds
        self.author_name = author_name
        self.author_email = author_email
        self._secrets: List[str] = [s for s in secrets if s]
        self.lock = asyncio.Lock()

    @property
    def is_cloned(self) -> bool:
        return (self.path / ".git").is_dir()

    def _redact(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, "***")
        return text

    async def _git(self, *args: str, cwd: Optional[Path] = None) -> CommandResult:
        result = await self.runner.run(
            ["git", *args],
            cwd=cwd or self.path,
            timeout=self.timeout_seconds,
        )
        if not result.success:
            raise GitCommandError(
                command=self._redact(" ".join(["git", *args])),
                exit_code=result.exit_code,
                output=self._redact(result.output),
            )
        return result

    async def prepare(self, base_branch: str) -> None:
        """Clone the repository, or reset an existing checkout to the remote.

        An existing checkout is hard-reset to ``origin/<base_branch>`` and
        cleaned, discarding leftovers from earlier failed applies.

        Raises:
            GitCommandError: If any git command fails.
        """
        if not self.is_cloned:
            logger.info(
                "Cloning repository",
                extra={"path": str(self.path), "url": self._redact(self.clone_url)},
            )
            self.path.parent.mkdir(parents=True, exist_ok=True)
            await self._git("clone", self.clone_url, str(self.path), cwd=self.path.parent)
        else:
            logger.info(
                "Refreshing existing checkout",
                extra={"path": str(self.path), "base_branch": base_branch},
            )
            await self._git("fetch", "--prune", "origin")

        await self._git("checkout", "-f", "-B", base_branch, f"origin/{base_branch}")
        await self._git("reset", "--hard", f"origin/{base_branch}")
        await self._git("clean", "-fd")

    async def checkout_branch(self, branch_name: str) -> None:
        """Check out a branch that already exists on the remote.

        Raises:
            GitCommandError: If the fetch or checkout fails.
        """
        await self._git("fetch", "origin", branch_name)
        await self._git("checkout", "-B", branch_name, f"origin/{branch_name}")
        logger.info(
            "Checked out branch",
            extra={"path": str(self.path), "branch": branch_name},
        )

    async def commit_file(self, relative_path: str, message: str) -> None:
        """Stage one file and commit it on its own.

        Raises:
            GitCommandError: If staging or committing fails.
        """
        await self._git("add", "--", relative_path)
        await self._git(
            "-c",
            f"user.name={self.author_name}",
            "-c",
            f"user.email={self.author_email}",
            "commit",
            "-m",
            message,
        )
        logger.info(
            "Committed change",
            extra={"file_path": relative_path, "commit_message": message},
        )

    async def push(self, branch_name: str) -> None:
        """Push a local branch to origin.

        Raises:
            GitCommandError: If the push fails.
        """
        await self._git("push", "origin", branch_name)
        logger.info("Pushed branch", extra={"branch": branch_name})
