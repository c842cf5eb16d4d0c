"""Repository context assembly for fix analysis.

The ContextAssembler selects a bounded set of relevant files from a
repository through the GitHub contents API and renders them into one
size-capped text bundle for the language model. Blocks are emitted in
this order:

1. Well-known config and manifest files (each capped)
2. The root directory listing
3. Source files, issue-referenced paths first (at most ``max_files``)

Large source files keep their head and tail around an explicit
truncation marker. Individual fetch failures skip that file; a failure
of the whole assembly yields CONTEXT_UNAVAILABLE instead of raising.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from src.bugfixer.github.client import GitHubAPIError, GitHubClient, RateLimitError
from src.bugfixer.github.models import Issue, RepositoryRef

logger = logging.getLogger(__name__)

CONTEXT_UNAVAILABLE = "Repository context unavailable"

CONFIG_FILES = [
    "README.md",
    "package.json",
    "tsconfig.json",
    "Cargo.toml",
    "pyproject.toml",
    "setup.py",
    "requirements.txt",
    "go.mod",
    "pom.xml",
    "build.gradle",
    "Gemfile",
    "composer.json",
]

SOURCE_DIRECTORIES = ["src", "lib", "app", "api", "core", "models", "controllers", "handlers"]

SOURCE_EXTENSIONS = [
    "ts", "tsx", "js", "jsx", "mjs", "cjs",
    "py", "rb", "go", "rs", "java", "kt", "swift",
    "c", "h", "cc", "cpp", "hpp", "cs", "php", "scala",
    "vue", "svelte",
]

_EXT_ALTERNATION = "|".join(sorted(SOURCE_EXTENSIONS, key=len, reverse=True))
BACKTICK_PATH_PATTERN = re.compile(rf"`([\w./-]+\.(?:{_EXT_ALTERNATION}))`")
BARE_PATH_PATTERN = re.compile(rf"(?<![\w./-])((?:[\w.-]+/)*[\w.-]+\.(?:{_EXT_ALTERNATION}))\b")
LEADING_DOT_SLASH = re.compile(r"^(?:\./)+")

TRUNCATION_HEAD_CHARS = 2000
TRUNCATION_TAIL_CHARS = 1000


def has_source_extension(path: str) -> bool:
    _, dot, ext = path.rpartition(".")
    return bool(dot) and ext.lower() in SOURCE_EXTENSIONS


def truncate_content(
    content: str,
    max_chars: int = 3000,
    head_chars: int = TRUNCATION_HEAD_CHARS,
    tail_chars: int = TRUNCATION_TAIL_CHARS,
) -> str:
    """Keep a file's head and tail around a truncation marker.

    Content at or below ``max_chars`` is returned unchanged.

    Example:
        >>> text = truncate_content("a" * 5000, max_chars=3000, head_chars=20, tail_chars=10)
        >>> "[4970 characters truncated]" in text
        True
    """
    if len(content) <= max_chars:
        return content
    head_chars = min(head_chars, max_chars)
    tail_chars = min(tail_chars, max_chars - head_chars)
    omitted = len(content) - head_chars - tail_chars
    tail = content[-tail_chars:] if tail_chars else ""
    return (
        f"{content[:head_chars]}\n"
        f"... [{omitted} characters truncated] ...\n"
        f"{tail}"
    )


def extract_referenced_paths(issue: Optional[Issue]) -> List[str]:
    """Paths mentioned in an issue's title or body, in order of appearance.

    Matches backtick-quoted filenames and bare ``path/to/file.ext`` tokens
    with a recognized source extension.
    """
    if issue is None:
        return []
    text = f"{issue.title}\n{issue.body}"
    found: List[str] = []
    for pattern in (BACKTICK_PATH_PATTERN, BARE_PATH_PATTERN):
        for match in pattern.finditer(text):
            path = LEADING_DOT_SLASH.sub("", match.group(1))
            if path and path not in found:
                found.append(path)
    return found


def format_block(path: str, content: str) -> str:
    return f"=== {path} ===\n{content}"


@dataclass
class _FetchSession:
    """Per-assembly fetch state; set once the API reports a rate limit."""

    rate_limited: bool = False


class ContextAssembler:
    """Builds the context bundle for one repository.

    Attributes:
        github_client: Client used for contents API reads.
        repository: Repository to read from.
        max_files: Cap on source files included.
        max_file_chars: Per-source-file size before truncation applies.
        config_file_chars: Per-config-file character cap.
    """

    def __init__(
        self,
        github_client: GitHubClient,
        repository: RepositoryRef,
        max_files: int = 15,
        max_file_chars: int = 3000,
        config_file_chars: int = 2000,
    ):
        self.github_client = github_client
        self.repository = repository
        self.max_files = max_files
        self.max_file_chars = max_file_chars
        self.config_file_chars = config_file_chars

    def _skip(self, session: _FetchSession, path: str, error: Exception) -> None:
        if isinstance(error, RateLimitError):
            session.rate_limited = True
            logger.warning(
                "Rate limited while assembling context; skipping remaining fetches",
                extra={
                    "repository": self.repository.full_name,
                    "path": path,
                    "reset_at": error.reset_at,
                },
            )
            return
        logger.debug(
            "Skipping unreadable path",
            extra={
                "path": path,
                "status_code": getattr(error, "status_code", None),
                "error_type": type(error).__name__,
            },
        )

    async def _read(self, session: _FetchSession, path: str) -> Optional[str]:
        if session.rate_limited:
            return None
        try:
            return await self.github_client.get_file_content(
                self.repository.owner, self.repository.name, path
            )
        except (GitHubAPIError, ValueError) as e:
            self._skip(session, path, e)
            return None

    async def _list_source_files(self, session: _FetchSession, directory: str) -> List[str]:
        if session.rate_limited:
            return []
        try:
            entries = await self.github_client.get_directory_entries(
                self.repository.owner, self.repository.name, directory
            )
        except (GitHubAPIError, ValueError) as e:
            self._skip(session, directory, e)
            return []
        return [
            entry["path"]
            for entry in entries
            if entry["type"] == "file" and has_source_extension(entry["path"])
        ]

    async def candidate_files(
        self,
        issue: Optional[Issue] = None,
        session: Optional[_FetchSession] = None,
    ) -> List[str]:
        """Ordered, de-duplicated candidate source paths.

        Issue-referenced paths come first, followed by root source files
        and the shallow probe of conventional source directories.
        """
        session = session or _FetchSession()
        candidates: List[str] = []

        def add(path: str) -> None:
            if path not in candidates:
                candidates.append(path)

        for path in extract_referenced_paths(issue):
            add(path)
        for path in await self._list_source_files(session, ""):
            add(path)
        for directory in SOURCE_DIRECTORIES:
            for path in await self._list_source_files(session, directory):
                add(path)
        return candidates

    async def assemble(self, issue: Optional[Issue] = None) -> str:
        """Build the context bundle.

        Failed fetches (including rate limiting) skip that path and keep
        every block gathered so far.

        Args:
            issue: Optional issue whose referenced paths are prioritized.

        Returns:
            Tagged text blocks joined by blank lines, or CONTEXT_UNAVAILABLE.
        """
        try:
            return await self._assemble(issue)
        except Exception as e:
            logger.error(
                "Failed to assemble repository context",
                extra={
                    "repository": self.repository.full_name,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return CONTEXT_UNAVAILABLE

    async def _assemble(self, issue: Optional[Issue]) -> str:
        session = _FetchSession()
        blocks: List[str] = []

        for path in CONFIG_FILES:
            content = await self._read(session, path)
            if content:
                blocks.append(format_block(path, content[: self.config_file_chars]))

        listing = ""
        if not session.rate_limited:
            try:
                listing = await self.github_client.get_directory_listing(
                    self.repository.owner, self.repository.name, ""
                )
            except (GitHubAPIError, ValueError) as e:
                self._skip(session, "", e)
        if listing:
            blocks.append(format_block("Repository Structure", listing))

        included = 0
        for path in await self.candidate_files(issue, session):
            if included >= self.max_files:
                break
            content = await self._read(session, path)
            if content is None:
                continue
            blocks.append(format_block(path, truncate_content(content, self.max_file_chars)))
            included += 1

        logger.info(
            "Assembled repository context",
            extra={
                "repository": self.repository.full_name,
                "issue_number": issue.number if issue else None,
                "source_files": included,
                "rate_limited": session.rate_limited,
                "total_chars": sum(len(b) for b in blocks),
            },
        )
        return "\n\n".join(blocks)
