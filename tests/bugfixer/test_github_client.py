"""Tests for the async GitHub client and GitHub URL parsing.

HTTP traffic is served by httpx.MockTransport handlers.
"""

import asyncio
import base64
import json
from typing import Callable, List

import httpx
import pytest
from hypothesis import given, strategies as st

from src.bugfixer.github.client import GitHubAPIError, GitHubClient, RateLimitError
from src.bugfixer.github.models import (
    Issue,
    PRCreateRequest,
    issue_url_pattern,
    parse_issue_url,
    parse_repository,
)


def run_async(coro):
    return asyncio.run(coro)


def _client(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> GitHubClient:
    client = GitHubClient(token="ghp_test", base_delay=0, max_delay=0, **kwargs)
    client._client = httpx.AsyncClient(
        base_url=client.base_url,
        headers=client._default_headers(),
        transport=httpx.MockTransport(handler),
    )
    return client


def _issue_json(number: int, **extra) -> dict:
    data = {
        "number": number,
        "title": f"Issue {number}",
        "body": None,
        "labels": [{"name": "bug"}],
        "state": "open",
        "created_at": "2024-01-01T00:00:00Z",
        "updated_at": "2024-01-02T00:00:00Z",
        "user": {"login": "octocat"},
    }
    data.update(extra)
    return data


class TestParsing:
    def test_issue_url(self):
        repo, number = parse_issue_url("https://github.com/acme/widgets/issues/42")
        assert repo.full_name == "acme/widgets"
        assert number == 42

    def test_pull_url(self):
        repo, number = parse_issue_url("https://github.com/acme/widgets/pull/7")
        assert number == 7

    @pytest.mark.parametrize(
        "url",
        ["", "not a url", "https://github.com/acme/widgets", "https://github.com/acme/widgets/issues/abc"],
    )
    def test_malformed_issue_urls(self, url):
        assert parse_issue_url(url) is None

    def test_enterprise_issue_url(self):
        repo, number = parse_issue_url(
            "https://git.corp.example/acme/widgets/issues/9",
            web_url="https://git.corp.example",
        )
        assert (repo.full_name, number) == ("acme/widgets", 9)

    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/acme/widgets/issues/9",
            "https://evil.example/git.corp.example/acme/widgets/issues/9",
            "https://notgit.corp.example/acme/widgets/issues/9",
        ],
    )
    def test_issue_url_on_other_host(self, url):
        assert parse_issue_url(url, web_url="https://git.corp.example") is None

    def test_web_url_path_prefix(self):
        pattern = issue_url_pattern("https://corp.example/github/")
        match = pattern.search("https://corp.example/github/acme/widgets/pull/3")
        assert match.groups() == ("acme", "widgets", "3")

    @pytest.mark.parametrize(
        "value",
        [
            "acme/widgets",
            "https://github.com/acme/widgets",
            "https://github.com/acme/widgets.git",
            "https://github.com/acme/widgets/",
        ],
    )
    def test_repository_forms(self, value):
        assert parse_repository(value).full_name == "acme/widgets"

    @pytest.mark.parametrize("value", ["", "widgets", "https://github.com/acme", "a/b/c/d"])
    def test_invalid_repositories(self, value):
        assert parse_repository(value) is None

    @given(
        owner=st.from_regex(r"[A-Za-z0-9][A-Za-z0-9-]{0,20}", fullmatch=True),
        name=st.from_regex(r"[A-Za-z0-9_][A-Za-z0-9_-]{0,20}", fullmatch=True),
        number=st.integers(min_value=1, max_value=10**6),
    )
    def test_issue_url_round_trip(self, owner, name, number):
        repo, parsed = parse_issue_url(f"https://github.com/{owner}/{name}/issues/{number}")
        assert (repo.owner, repo.name, parsed) == (owner, name, number)

    def test_issue_from_response(self):
        issue = Issue.from_github_response(_issue_json(5))
        assert issue.body == ""
        assert issue.labels == ["bug"]
        assert issue.author_login == "octocat"


class TestRequests:
    def test_get_issue_sends_auth_headers(self):
        seen: List[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=_issue_json(42))

        issue = run_async(_client(handler).get_issue("acme", "widgets", 42))

        assert issue.number == 42
        assert seen[0].url.path == "/repos/acme/widgets/issues/42"
        assert seen[0].headers["Authorization"] == "Bearer ghp_test"

    def test_retries_server_errors(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) < 3:
                return httpx.Response(502)
            return httpx.Response(200, json=_issue_json(1))

        issue = run_async(_client(handler).get_issue("acme", "widgets", 1))

        assert issue.number == 1
        assert len(attempts) == 3

    def test_gives_up_after_max_retries(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(503, text="unavailable")

        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(_client(handler, max_retries=2).get_issue("acme", "widgets", 1))

        assert exc_info.value.status_code == 503
        assert len(attempts) == 3

    def test_client_errors_are_not_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(404, json={"message": "Not Found"})

        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(_client(handler).get_issue("acme", "widgets", 1))

        assert exc_info.value.status_code == 404
        assert len(attempts) == 1

    def test_rate_limit(self):
        def handler(request):
            return httpx.Response(
                403,
                headers={"x-ratelimit-remaining": "0", "x-ratelimit-reset": "0"},
            )

        with pytest.raises(RateLimitError) as exc_info:
            run_async(_client(handler).get_issue("acme", "widgets", 1))

        assert exc_info.value.reset_at == 0

    def test_connection_errors_are_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(GitHubAPIError):
            run_async(_client(handler, max_retries=1).get_issue("acme", "widgets", 1))

        assert len(attempts) == 2


class TestIssues:
    def test_list_issues_filters_pull_requests_and_labels(self):
        seen: List[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(
                200,
                json=[
                    _issue_json(3),
                    _issue_json(2, pull_request={"url": "x"}),
                    _issue_json(1),
                ],
            )

        issues = run_async(
            _client(handler).list_issues("acme", "widgets", labels=["bug", "auto-fix"])
        )

        assert [i.number for i in issues] == [3, 1]
        params = seen[0].url.params
        assert params["state"] == "open"
        assert params["labels"] == "bug,auto-fix"

    def test_list_issues_respects_limit_across_pages(self):
        def handler(request):
            page = int(request.url.params["page"])
            per_page = int(request.url.params["per_page"])
            start = (page - 1) * per_page
            return httpx.Response(
                200, json=[_issue_json(n) for n in range(start + 1, start + per_page + 1)]
            )

        issues = run_async(_client(handler).list_issues("acme", "widgets", limit=2))

        assert [i.number for i in issues] == [1, 2]

    def test_create_comment(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"id": 1})

        run_async(_client(handler).create_comment("acme", "widgets", 4, "hello"))

        assert bodies == [{"body": "hello"}]


class TestContents:
    def test_file_content_is_decoded(self):
        encoded = base64.b64encode("print('hi')\n".encode()).decode()

        def handler(request):
            return httpx.Response(200, json={"type": "file", "content": encoded, "size": 12})

        content = run_async(_client(handler).get_file_content("acme", "widgets", "main.py"))

        assert content == "print('hi')\n"

    def test_missing_file_is_none(self):
        def handler(request):
            return httpx.Response(404, json={"message": "Not Found"})

        assert run_async(_client(handler).get_file_content("acme", "widgets", "nope.py")) is None

    def test_directory_is_none(self):
        def handler(request):
            return httpx.Response(200, json=[{"name": "a.py", "path": "src/a.py", "type": "file"}])

        assert run_async(_client(handler).get_file_content("acme", "widgets", "src")) is None

    def test_server_error_propagates(self):
        def handler(request):
            return httpx.Response(500)

        with pytest.raises(GitHubAPIError):
            run_async(_client(handler, max_retries=0).get_file_content("acme", "widgets", "a.py"))

    def test_directory_listing(self):
        def handler(request):
            assert request.url.path == "/repos/acme/widgets/contents"
            return httpx.Response(
                200,
                json=[
                    {"name": "src", "path": "src", "type": "dir"},
                    {"name": "README.md", "path": "README.md", "type": "file"},
                ],
            )

        listing = run_async(_client(handler).get_directory_listing("acme", "widgets"))

        assert listing == "dir:src\nfile:README.md"

    def test_missing_directory_is_empty(self):
        def handler(request):
            return httpx.Response(404)

        assert run_async(_client(handler).get_directory_entries("acme", "widgets", "lib")) == []


class TestBranchesAndPulls:
    def test_default_branch(self):
        def handler(request):
            return httpx.Response(200, json={"default_branch": "develop"})

        assert run_async(_client(handler).get_default_branch("acme", "widgets")) == "develop"

    def test_create_branch_from_base_head(self):
        posted = []

        def handler(request):
            if request.method == "GET":
                assert request.url.path == "/repos/acme/widgets/git/ref/heads/main"
                return httpx.Response(200, json={"object": {"sha": "abc123"}})
            posted.append(json.loads(request.content))
            return httpx.Response(201, json={})

        sha = run_async(_client(handler).create_branch("acme", "widgets", "bugfix/issue-1-1", "main"))

        assert sha == "abc123"
        assert posted == [{"ref": "refs/heads/bugfix/issue-1-1", "sha": "abc123"}]

    def test_create_pull_request(self):
        def handler(request):
            payload = json.loads(request.content)
            assert payload["head"] == "bugfix/issue-1-1"
            assert payload["base"] == "main"
            return httpx.Response(
                201, json={"number": 12, "html_url": "https://github.com/acme/widgets/pull/12"}
            )

        result = run_async(
            _client(handler).create_pull_request(
                "acme",
                "widgets",
                PRCreateRequest(
                    title="Fix: x", body="b", head_branch="bugfix/issue-1-1", base_branch="main"
                ),
            )
        )

        assert result.pr_number == 12
        assert result.pr_url == "https://github.com/acme/widgets/pull/12"
