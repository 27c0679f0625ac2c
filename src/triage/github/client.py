"""GitHub API client for issue triage.

This module provides an async wrapper around the GitHub REST API for:
- Fetching an issue
- Creating comments on issues
- Adding labels to issues

Every request obtains its bearer token from the InstallationTokenCache
immediately beforehand, so a token refreshed mid-run is picked up by the
next call. Requests are bounded by a timeout and a redirect limit and are
not retried; callers decide how to recover.

Failure mapping:
- 404 responses raise NotFoundError
- any other non-2xx response, timeout, transport failure, or malformed
  body raises UpstreamError
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from src.triage.errors import NotFoundError, UpstreamError
from src.triage.github.auth import InstallationTokenCache
from src.triage.github.constants import (
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_TIMEOUT_SECONDS,
    GITHUB_API_URL,
    api_headers,
)
from src.triage.github.models import GitHubIssue


logger = logging.getLogger(__name__)


class GitHubClient:
    """Async GitHub API client authenticated as an app installation.

    Attributes:
        credentials: Source of installation access tokens.
        base_url: Base URL for GitHub API (default: https://api.github.com).
        timeout: Request timeout in seconds.
        max_redirects: Maximum number of redirects followed per request.

    Example:
        >>> client = GitHubClient(credentials=token_cache)
        >>> async with client:
        ...     issue = await client.fetch_issue("owner", "repo", 123)
    """

    def __init__(
        self,
        credentials: InstallationTokenCache,
        base_url: str = GITHUB_API_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the GitHub client.

        Args:
            credentials: Installation token cache used for every request.
            base_url: Base URL for GitHub API. Use this to support
                      GitHub Enterprise Server endpoints.
            timeout: Request timeout in seconds.
            max_redirects: Maximum number of redirects to follow.
            transport: Optional httpx transport, used by tests.
        """
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_redirects = max_redirects
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary.

        Returns:
            The httpx AsyncClient instance.
        """
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                follow_redirects=True,
                max_redirects=self.max_redirects,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubClient":
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: Any,
        exc_val: Any,
        exc_tb: Any,
    ) -> None:
        """Async context manager exit - close the client."""
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[Dict[str, Any]] = None,
        not_found_message: Optional[str] = None,
    ) -> httpx.Response:
        """Make an authenticated HTTP request and classify failures.

        Args:
            method: HTTP method (GET, POST).
            path: API path (e.g., /repos/owner/repo/issues/1/comments).
            json_data: Optional JSON body for the request.
            not_found_message: Message for the NotFoundError raised on 404.

        Returns:
            The successful HTTP response from GitHub.

        Raises:
            CredentialError: If no installation token could be obtained.
            NotFoundError: If GitHub responds with 404.
            UpstreamError: On any other failure.
        """
        token = await self.credentials.get_token()

        try:
            response = await self.client.request(
                method=method,
                url=path,
                json=json_data,
                headers=api_headers(token),
            )
        except httpx.TimeoutException as e:
            logger.error(
                "GitHub API request timed out",
                extra={"path": path, "method": method, "timeout": self.timeout},
            )
            raise UpstreamError(
                f"Request to GitHub timed out after {self.timeout}s",
                request_url=f"{self.base_url}{path}",
            ) from e
        except httpx.HTTPError as e:
            logger.error(
                "GitHub API request failed",
                extra={"path": path, "method": method, "error": str(e)},
            )
            raise UpstreamError(
                f"Request to GitHub failed: {e}",
                request_url=f"{self.base_url}{path}",
            ) from e

        if response.status_code == 404:
            message = not_found_message or f"Resource not found: {path}"
            logger.error(
                "GitHub resource not found",
                extra={"path": path, "method": method},
            )
            raise NotFoundError(
                message,
                status_code=404,
                request_url=str(response.url),
            )

        if not response.is_success:
            logger.error(
                "GitHub API error",
                extra={
                    "status_code": response.status_code,
                    "path": path,
                    "method": method,
                    "response_body": response.text[:500],
                },
            )
            raise UpstreamError(
                f"GitHub API error: {response.status_code}",
                status_code=response.status_code,
                request_url=str(response.url),
            )

        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"GitHub returned a non-JSON body: {e}",
                status_code=response.status_code,
                request_url=str(response.url),
            ) from e

    async def fetch_issue(
        self,
        owner: str,
        repo: str,
        issue_number: int,
    ) -> GitHubIssue:
        """Get issue details.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.
            issue_number: Issue number to retrieve.

        Returns:
            Snapshot of the issue.

        Raises:
            NotFoundError: If the issue does not exist.
            UpstreamError: If the request fails.
        """
        path = f"/repos/{owner}/{repo}/issues/{issue_number}"

        logger.debug(
            "Getting issue details",
            extra={"owner": owner, "repo": repo, "issue_number": issue_number},
        )

        response = await self._request(
            method="GET",
            path=path,
            not_found_message=f"Issue #{issue_number} not found in {owner}/{repo}",
        )

        try:
            return GitHubIssue.from_github_response(self._json(response))
        except UpstreamError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError(
                f"Unexpected issue representation from GitHub: {e}",
                status_code=response.status_code,
                request_url=str(response.url),
            ) from e

    async def post_comment(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        body: str,
    ) -> str:
        """Create a comment on an issue.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.
            issue_number: Issue number to comment on.
            body: Comment body in markdown format.

        Returns:
            The HTML URL of the created comment (empty if GitHub omits it).

        Raises:
            NotFoundError: If the issue does not exist.
            UpstreamError: If the request fails.
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

        response = await self._request(
            method="POST",
            path=path,
            json_data={"body": body},
            not_found_message=f"Issue #{issue_number} not found in {owner}/{repo}",
        )

        result = self._json(response)
        comment_url = result.get("html_url") if isinstance(result, dict) else None

        logger.info(
            "Comment created successfully",
            extra={
                "owner": owner,
                "repo": repo,
                "issue_number": issue_number,
                "comment_url": comment_url,
            },
        )

        return comment_url or ""

    async def add_labels(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        labels: Iterable[str],
    ) -> List[str]:
        """Add labels to an issue.

        Duplicate label names are sent once, in first-seen order.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.
            issue_number: Issue number to label.
            labels: Label names to add.

        Returns:
            Names of all labels on the issue after adding.

        Raises:
            NotFoundError: If the issue does not exist.
            UpstreamError: If the request fails.
        """
        unique_labels = list(dict.fromkeys(labels))
        path = f"/repos/{owner}/{repo}/issues/{issue_number}/labels"

        logger.info(
            "Adding labels to issue",
            extra={
                "owner": owner,
                "repo": repo,
                "issue_number": issue_number,
                "labels": unique_labels,
            },
        )

        response = await self._request(
            method="POST",
            path=path,
            json_data={"labels": unique_labels},
            not_found_message=f"Issue #{issue_number} not found in {owner}/{repo}",
        )

        result = self._json(response)
        if not isinstance(result, list):
            raise UpstreamError(
                "Unexpected labels representation from GitHub",
                status_code=response.status_code,
                request_url=str(response.url),
            )

        applied = [
            label["name"]
            for label in result
            if isinstance(label, dict) and isinstance(label.get("name"), str)
        ]

        logger.info(
            "Labels added successfully",
            extra={
                "owner": owner,
                "repo": repo,
                "issue_number": issue_number,
                "total_labels": len(applied),
            },
        )

        return applied
