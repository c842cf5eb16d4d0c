"""GitHub API client for issue, content and pull request interactions.

This module provides an async wrapper around the GitHub REST API for:
- Reading issues (single and label-filtered listings)
- Reading file contents and directory listings
- Creating branches and pull requests
- Commenting on issues

Includes rate limiting and retry logic for API resilience.
"""

import asyncio
import base64
import binascii
import logging
import random
import time
from typing import Any, Dict, List, Optional

import httpx

from src.bugfixer.github.models import Issue, PRCreateRequest, PRCreateResult


logger = logging.getLogger(__name__)


class GitHubAPIError(Exception):
    """Raised when a GitHub API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the response.
        response_body: Response body from GitHub API.
        request_url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(message)


class RateLimitError(GitHubAPIError):
    """Raised when GitHub API rate limit is exceeded.

    Attributes:
        reset_at: Unix timestamp when the rate limit resets.
        retry_after: Seconds to wait before retrying.
    """

    def __init__(
        self,
        message: str,
        reset_at: Optional[int] = None,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.reset_at = reset_at
        self.retry_after = retry_after


class GitHubClient:
    """Async GitHub API client with rate limiting and retry logic.

    Every repository-scoped method takes the owner and repository name
    explicitly so a single client can serve several monitored repositories.

    Attributes:
        token: GitHub API token (PAT or GitHub App token).
        base_url: Base URL for GitHub API (default: https://api.github.com).
        max_retries: Maximum number of retry attempts for transient failures.
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum delay in seconds between retries.
        timeout: Request timeout in seconds.

    Example:
        >>> async with GitHubClient(token="ghp_xxx") as client:
        ...     issue = await client.get_issue("owner", "repo", 42)
    """

    RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

    # GitHub caps page size at 100
    MAX_PAGE_SIZE = 100

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        timeout: float = 30.0,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                timeout=self.timeout,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "PluggableBugFixer/1.0",
        }

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff with full jitter.

        Args:
            attempt: The current retry attempt (0-indexed).

        Returns:
            Delay in seconds before the next retry.
        """
        capped_delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        return random.uniform(0, capped_delay)

    @staticmethod
    def _parse_int_header(headers: httpx.Headers, name: str) -> Optional[int]:
        value = headers.get(name)
        if value is not None:
            try:
                return int(value)
            except ValueError:
                return None
        return None

    def _raise_rate_limit(self, response: httpx.Response) -> None:
        """Translate a rate-limited response into RateLimitError.

        Raises:
            RateLimitError: Always, carrying reset and retry hints.
        """
        reset_at = self._parse_int_header(response.headers, "x-ratelimit-reset")

        retry_after = None
        if reset_at is not None:
            retry_after = max(0, reset_at - int(time.time()))

        retry_after_header = self._parse_int_header(response.headers, "retry-after")
        if retry_after_header is not None:
            retry_after = retry_after_header

        logger.warning(
            "GitHub API rate limit exceeded",
            extra={
                "reset_at": reset_at,
                "retry_after": retry_after,
                "limit": self._parse_int_header(response.headers, "x-ratelimit-limit"),
            },
        )

        raise RateLimitError(
            message="GitHub API rate limit exceeded",
            status_code=response.status_code,
            reset_at=reset_at,
            retry_after=retry_after,
            request_url=str(response.url),
        )

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Make an HTTP request with retry logic.

        Transient failures (timeouts, connection errors, 5xx, 408) are
        retried with exponential backoff. Rate limits are surfaced
        immediately so callers can decide whether to wait.

        Args:
            method: HTTP method (GET, POST, PATCH, ...).
            path: API path (e.g., /repos/owner/repo/issues/1).
            json_data: Optional JSON body.
            params: Optional query string parameters.

        Returns:
            The HTTP response from GitHub.

        Raises:
            GitHubAPIError: If the request fails after all retries.
            RateLimitError: If rate limit is exceeded.
        """
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.request(
                    method=method,
                    url=path,
                    json=json_data,
                    params=params,
                )

                if response.status_code == 403:
                    remaining = self._parse_int_header(
                        response.headers, "x-ratelimit-remaining"
                    )
                    if remaining == 0:
                        self._raise_rate_limit(response)

                if response.status_code == 429:
                    self._raise_rate_limit(response)

                if response.status_code in self.RETRYABLE_STATUS_CODES:
                    if attempt < self.max_retries:
                        delay = self._calculate_backoff(attempt)
                        logger.warning(
                            "Retryable error from GitHub API",
                            extra={
                                "status_code": response.status_code,
                                "attempt": attempt + 1,
                                "max_retries": self.max_retries,
                                "delay": delay,
                                "path": path,
                            },
                        )
                        await asyncio.sleep(delay)
                        continue

                if response.status_code >= 400:
                    error_body = response.text
                    # 404s are an expected branch for content probes
                    log = logger.debug if response.status_code == 404 else logger.error
                    log(
                        "GitHub API error",
                        extra={
                            "status_code": response.status_code,
                            "path": path,
                            "method": method,
                            "response_body": error_body[:500],
                        },
                    )
                    raise GitHubAPIError(
                        message=f"GitHub API error: {response.status_code}",
                        status_code=response.status_code,
                        response_body=error_body,
                        request_url=str(response.url),
                    )

                return response

            except GitHubAPIError:
                raise
            except httpx.RequestError as e:
                last_exception = e
                if attempt < self.max_retries:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        "Request error, retrying",
                        extra={
                            "error": str(e),
                            "error_type": type(e).__name__,
                            "attempt": attempt + 1,
                            "max_retries": self.max_retries,
                            "delay": delay,
                            "path": path,
                        },
                    )
                    await asyncio.sleep(delay)
                    continue

        logger.error(
            "GitHub API request failed after all retries",
            extra={
                "path": path,
                "method": method,
                "max_retries": self.max_retries,
                "last_error": str(last_exception),
            },
        )
        raise GitHubAPIError(
            message=f"Request failed after {self.max_retries} retries: {last_exception}",
            request_url=f"{self.base_url}{path}",
        )

    # -------------------------------------------------------------------------
    # Issues
    # -------------------------------------------------------------------------

    async def get_issue(self, owner: str, repo: str, issue_number: int) -> Issue:
        """Get a single issue.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.
            issue_number: Issue number to retrieve.

        Returns:
            Issue snapshot.

        Raises:
            GitHubAPIError: If the request fails (404 included).
        """
        path = f"/repos/{owner}/{repo}/issues/{issue_number}"

        logger.debug(
            "Getting issue details",
            extra={"owner": owner, "repo": repo, "issue_number": issue_number},
        )

        response = await self._request(method="GET", path=path)
        return Issue.from_github_response(response.json())

    async def list_issues(
        self,
        owner: str,
        repo: str,
        labels: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Issue]:
        """List open issues, newest first.

        Pull requests returned by the issues endpoint are filtered out.

        Args:
            owner: Repository owner.
            repo: Repository name.
            labels: Only return issues carrying all of these labels.
            limit: Maximum number of issues to return (None = all).

        Returns:
            List of open issues.

        Raises:
            GitHubAPIError: If a page request fails.
        """
        path = f"/repos/{owner}/{repo}/issues"
        per_page = self.MAX_PAGE_SIZE
        if limit is not None:
            per_page = max(1, min(limit, self.MAX_PAGE_SIZE))

        params: Dict[str, Any] = {
            "state": "open",
            "sort": "created",
            "direction": "desc",
            "per_page": per_page,
        }
        if labels:
            params["labels"] = ",".join(labels)

        issues: List[Issue] = []
        page = 1
        while True:
            params["page"] = page
            response = await self._request(method="GET", path=path, params=params)
            items = response.json()
            if not items:
                break

            for item in items:
                if "pull_request" in item:
                    continue
                issues.append(Issue.from_github_response(item))
                if limit is not None and len(issues) >= limit:
                    break

            if limit is not None and len(issues) >= limit:
                break
            if len(items) < per_page:
                break
            page += 1

        logger.info(
            "Listed open issues",
            extra={
                "owner": owner,
                "repo": repo,
                "labels": labels or [],
                "count": len(issues),
            },
        )
        return issues

    async def create_comment(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        body: str,
    ) -> Dict[str, Any]:
        """Create a comment on an issue.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.
            issue_number: Issue number to comment on.
            body: Comment body in markdown format.

        Returns:
            The created comment data from GitHub API.

        Raises:
            GitHubAPIError: If the request fails.
        """
        path = f"/repos/{owner}/{repo}/issues/{issue_number}/comments"

        logger.info(
            "Creating comment on issue",
            extra={
                "owner": owner,
                "repo": repo,
                "issue_number": issue_number,
                "body_length": len(body),
            },
        )

        response = await self._request(method="POST", path=path, json_data={"body": body})
        result = response.json()

        logger.info(
            "Comment created successfully",
            extra={
                "owner": owner,
                "repo": repo,
                "issue_number": issue_number,
                "comment_id": result.get("id"),
            },
        )
        return result

    # -------------------------------------------------------------------------
    # Contents
    # -------------------------------------------------------------------------

    async def get_file_content(
        self,
        owner: str,
        repo: str,
        path: str,
        ref: Optional[str] = None,
    ) -> Optional[str]:
        """Read a file's decoded text content.

        Args:
            owner: Repository owner.
            repo: Repository name.
            path: File path relative to the repository root.
            ref: Optional branch, tag or commit SHA.

        Returns:
            File content, or None when the path does not exist, is a
            directory, or is not decodable text.

        Raises:
            GitHubAPIError: For failures other than 404.
        """
        try:
            response = await self._request(
                method="GET",
                path=f"/repos/{owner}/{repo}/contents/{path.lstrip('/')}",
                params={"ref": ref} if ref else None,
            )
        except RateLimitError:
            raise
        except GitHubAPIError as e:
            if e.status_code == 404:
                return None
            raise

        data = response.json()
        if not isinstance(data, dict) or data.get("type") != "file":
            return None

        content = data.get("content")
        if not content:
            return "" if data.get("size") == 0 else None

        try:
            return base64.b64decode(content).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            logger.debug(
                "Skipping undecodable file content",
                extra={"owner": owner, "repo": repo, "path": path},
            )
            return None

    async def get_directory_entries(
        self,
        owner: str,
        repo: str,
        path: str = "",
        ref: Optional[str] = None,
    ) -> List[Dict[str, str]]:
        """List a directory's entries.

        Returns:
            List of {"name", "path", "type"} dicts; empty when the path
            does not exist or is not a directory.

        Raises:
            GitHubAPIError: For failures other than 404.
        """
        api_path = f"/repos/{owner}/{repo}/contents"
        if path.strip("/"):
            api_path = f"{api_path}/{path.strip('/')}"

        try:
            response = await self._request(
                method="GET",
                path=api_path,
                params={"ref": ref} if ref else None,
            )
        except RateLimitError:
            raise
        except GitHubAPIError as e:
            if e.status_code == 404:
                return []
            raise

        data = response.json()
        if not isinstance(data, list):
            return []

        return [
            {
                "name": item.get("name", ""),
                "path": item.get("path", ""),
                "type": item.get("type", ""),
            }
            for item in data
        ]

    async def get_directory_listing(
        self,
        owner: str,
        repo: str,
        path: str = "",
        ref: Optional[str] = None,
    ) -> str:
        """Render a directory listing as newline-separated "type:path" lines."""
        entries = await self.get_directory_entries(owner, repo, path, ref=ref)
        return "\n".join(f"{entry['type']}:{entry['path']}" for entry in entries)

    # -------------------------------------------------------------------------
    # Branches and pull requests
    # -------------------------------------------------------------------------

    async def get_default_branch(self, owner: str, repo: str) -> str:
        """Get the repository's default branch name.

        Raises:
            GitHubAPIError: If the request fails.
        """
        response = await self._request(method="GET", path=f"/repos/{owner}/{repo}")
        return response.json().get("default_branch") or "main"

    async def create_branch(
        self,
        owner: str,
        repo: str,
        branch_name: str,
        base_branch: str,
    ) -> str:
        """Create a branch pointing at the head of another branch.

        Args:
            owner: Repository owner.
            repo: Repository name.
            branch_name: Name of the branch to create.
            base_branch: Branch whose head commit the new branch starts from.

        Returns:
            SHA the new branch points at.

        Raises:
            GitHubAPIError: If the base ref lookup or ref creation fails.
        """
        ref_response = await self._request(
            method="GET",
            path=f"/repos/{owner}/{repo}/git/ref/heads/{base_branch}",
        )
        sha = ref_response.json()["object"]["sha"]

        logger.info(
            "Creating branch",
            extra={
                "owner": owner,
                "repo": repo,
                "branch": branch_name,
                "base": base_branch,
                "sha": sha,
            },
        )

        await self._request(
            method="POST",
            path=f"/repos/{owner}/{repo}/git/refs",
            json_data={"ref": f"refs/heads/{branch_name}", "sha": sha},
        )
        return sha

    async def create_pull_request(
        self,
        owner: str,
        repo: str,
        request: PRCreateRequest,
    ) -> PRCreateResult:
        """Create a pull request.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.
            request: Pull request creation request with title, body, branches.

        Returns:
            PRCreateResult with the created PR number and URL.

        Raises:
            GitHubAPIError: If the request fails.
        """
        logger.info(
            "Creating pull request",
            extra={
                "owner": owner,
                "repo": repo,
                "title": request.title,
                "head": request.head_branch,
                "base": request.base_branch,
            },
        )

        response = await self._request(
            method="POST",
            path=f"/repos/{owner}/{repo}/pulls",
            json_data={
                "title": request.title,
                "body": request.body,
                "head": request.head_branch,
                "base": request.base_branch,
            },
        )
        result = PRCreateResult.from_github_response(response.json())

        logger.info(
            "Pull request created successfully",
            extra={
                "owner": owner,
                "repo": repo,
                "pr_number": result.pr_number,
                "pr_url": result.pr_url,
            },
        )
        return result
