"""Tests for repository context assembly.

The GitHub client is an AsyncMock backed by an in-memory file map.
"""

import asyncio
from typing import Dict, List
from unittest.mock import AsyncMock

from hypothesis import given, settings, strategies as st

from src.bugfixer.context.assembler import (
    CONTEXT_UNAVAILABLE,
    ContextAssembler,
    extract_referenced_paths,
    format_block,
    truncate_content,
)
from src.bugfixer.github.client import GitHubAPIError, RateLimitError
from src.bugfixer.github.models import RepositoryRef


def run_async(coro):
    return asyncio.run(coro)


REPOSITORY = RepositoryRef(owner="acme", name="widgets")


def _fake_github(files: Dict[str, str]) -> AsyncMock:
    """AsyncMock GitHub client serving ``files`` through the contents API."""

    def entries_for(directory: str) -> List[Dict[str, str]]:
        prefix = f"{directory}/" if directory else ""
        seen = {}
        for path in files:
            if not path.startswith(prefix):
                continue
            rest = path[len(prefix):]
            head, sep, _ = rest.partition("/")
            entry_path = f"{prefix}{head}"
            seen[entry_path] = {
                "name": head,
                "path": entry_path,
                "type": "dir" if sep else "file",
            }
        return list(seen.values())

    async def get_file_content(owner, repo, path, ref=None):
        return files.get(path)

    async def get_directory_entries(owner, repo, path="", ref=None):
        return entries_for(path)

    async def get_directory_listing(owner, repo, path="", ref=None):
        return "\n".join(f"{e['type']}:{e['path']}" for e in entries_for(path))

    client = AsyncMock()
    client.get_file_content.side_effect = get_file_content
    client.get_directory_entries.side_effect = get_directory_entries
    client.get_directory_listing.side_effect = get_directory_listing
    return client


class TestTruncateContent:
    def test_short_content_unchanged(self):
        assert truncate_content("abc", max_chars=10) == "abc"

    def test_keeps_head_and_tail(self):
        content = "H" * 2500 + "T" * 2500
        result = truncate_content(content)
        assert result.startswith("H" * 2000)
        assert result.endswith("T" * 1000)
        assert "... [2000 characters truncated] ..." in result

    @given(
        content=st.text(min_size=0, max_size=6000),
        max_chars=st.integers(min_value=1, max_value=4000),
    )
    @settings(max_examples=100)
    def test_truncated_output_is_bounded_and_marked(self, content, max_chars):
        result = truncate_content(content, max_chars=max_chars)
        if len(content) <= max_chars:
            assert result == content
        else:
            head = min(2000, max_chars)
            tail = min(1000, max_chars - head)
            marker = f"... [{len(content) - head - tail} characters truncated] ..."
            assert marker in result
            # Raw characters kept around the marker never exceed the cap
            assert len(result) - len(marker) - 2 <= max_chars


class TestExtractReferencedPaths:
    def test_backticks_and_bare_paths(self, issue_factory):
        issue = issue_factory(
            title="Crash in `utils.py`",
            body="Stack trace points at src/app/main.ts line 4 and ./lib/db.go",
        )
        assert extract_referenced_paths(issue) == [
            "utils.py",
            "src/app/main.ts",
            "lib/db.go",
        ]

    def test_ignores_unknown_extensions(self, issue_factory):
        issue = issue_factory(title="Docs", body="see README.md and notes.txt")
        assert extract_referenced_paths(issue) == []

    def test_no_issue(self):
        assert extract_referenced_paths(None) == []


class TestContextAssembler:
    def test_block_order(self, issue_factory):
        github = _fake_github(
            {
                "README.md": "# Widgets",
                "package.json": '{"name": "widgets"}',
                "index.js": "module.exports = 1;",
                "src/parse.ts": "export function parse() {}",
            }
        )
        assembler = ContextAssembler(github, REPOSITORY)

        text = run_async(assembler.assemble(issue_factory(body="nothing specific")))

        blocks = text.split("\n\n")
        headers = [b.splitlines()[0] for b in blocks if b.startswith("=== ")]
        assert headers == [
            "=== README.md ===",
            "=== package.json ===",
            "=== Repository Structure ===",
            "=== index.js ===",
            "=== src/parse.ts ===",
        ]

    def test_structure_listing(self):
        github = _fake_github({"index.js": "x", "src/a.ts": "y"})
        text = run_async(ContextAssembler(github, REPOSITORY).assemble())
        assert format_block("Repository Structure", "file:index.js\ndir:src") in text

    def test_referenced_paths_come_first(self, issue_factory):
        github = _fake_github(
            {
                "index.js": "root",
                "deep/nested/bug.py": "def broken(): pass",
            }
        )
        issue = issue_factory(body="The problem is in deep/nested/bug.py")

        text = run_async(ContextAssembler(github, REPOSITORY).assemble(issue))

        assert text.index("=== deep/nested/bug.py ===") < text.index("=== index.js ===")

    def test_missing_referenced_file_is_skipped(self, issue_factory):
        github = _fake_github({"index.js": "root"})
        issue = issue_factory(body="see `gone.py`")

        text = run_async(ContextAssembler(github, REPOSITORY).assemble(issue))

        assert "gone.py ===" not in text
        assert "=== index.js ===" in text

    def test_caps_file_count(self):
        files = {f"src/module_{i:02d}.py": f"value = {i}" for i in range(30)}
        github = _fake_github(files)

        text = run_async(ContextAssembler(github, REPOSITORY, max_files=5).assemble())

        assert text.count("=== src/module_") == 5

    def test_large_source_file_is_truncated(self):
        github = _fake_github({"src/big.py": "x" * 10000})

        text = run_async(ContextAssembler(github, REPOSITORY).assemble())

        assert "... [7000 characters truncated] ..." in text
        assert "x" * 3001 not in text

    def test_config_files_are_capped(self):
        github = _fake_github({"README.md": "r" * 5000})

        text = run_async(ContextAssembler(github, REPOSITORY).assemble())

        assert "r" * 2000 in text
        assert "r" * 2001 not in text

    def test_unreadable_file_is_skipped(self):
        github = _fake_github({"index.js": "root", "src/a.py": "a = 1"})
        original = github.get_file_content.side_effect

        async def flaky(owner, repo, path, ref=None):
            if path == "index.js":
                raise GitHubAPIError("boom", status_code=500)
            return await original(owner, repo, path, ref)

        github.get_file_content.side_effect = flaky

        text = run_async(ContextAssembler(github, REPOSITORY).assemble())

        assert "=== index.js ===" not in text
        assert "=== src/a.py ===" in text

    def test_rate_limit_keeps_gathered_blocks(self):
        github = _fake_github(
            {
                "README.md": "# Widgets",
                "src/a.py": "a = 1",
                "src/b.py": "b = 2",
                "src/c.py": "c = 3",
            }
        )
        original = github.get_file_content.side_effect
        requested = []

        async def limited(owner, repo, path, ref=None):
            requested.append(path)
            if path == "src/b.py":
                raise RateLimitError("API rate limit exceeded", reset_at=0)
            return await original(owner, repo, path, ref)

        github.get_file_content.side_effect = limited

        text = run_async(ContextAssembler(github, REPOSITORY).assemble())

        assert text != CONTEXT_UNAVAILABLE
        assert "=== README.md ===" in text
        assert "=== src/a.py ===" in text
        assert "=== src/b.py ===" not in text
        assert "src/c.py" not in requested

    def test_undecodable_response_is_skipped(self):
        github = _fake_github({"index.js": "root", "src/a.py": "a = 1"})
        original = github.get_file_content.side_effect

        async def garbled(owner, repo, path, ref=None):
            if path == "index.js":
                raise ValueError("Expecting value: line 1 column 1 (char 0)")
            return await original(owner, repo, path, ref)

        github.get_file_content.side_effect = garbled

        text = run_async(ContextAssembler(github, REPOSITORY).assemble())

        assert "=== src/a.py ===" in text

    def test_listing_failure_keeps_config_files(self):
        github = _fake_github({"README.md": "# Widgets", "src/a.py": "a = 1"})
        github.get_directory_listing.side_effect = GitHubAPIError("boom", status_code=502)

        text = run_async(ContextAssembler(github, REPOSITORY).assemble())

        assert "=== README.md ===" in text
        assert "=== Repository Structure ===" not in text
        assert "=== src/a.py ===" in text

    def test_total_failure_returns_sentinel(self):
        github = _fake_github({})
        github.get_directory_listing.side_effect = RuntimeError("network down")

        text = run_async(ContextAssembler(github, REPOSITORY).assemble())

        assert text == CONTEXT_UNAVAILABLE
