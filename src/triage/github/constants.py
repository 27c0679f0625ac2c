"""Shared constants for GitHub REST API access."""

from typing import Dict

GITHUB_API_URL = "https://api.github.com"

GITHUB_API_VERSION = "2022-11-28"

USER_AGENT = "IssueTriage-Agent/1.0"

DEFAULT_TIMEOUT_SECONDS = 10.0

DEFAULT_MAX_REDIRECTS = 5


def api_headers(token: str) -> Dict[str, str]:
    """Build headers for an authenticated GitHub API request.

    Args:
        token: Bearer token, either an app JWT or an installation token.

    Returns:
        Dictionary of HTTP headers.
    """
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
        "User-Agent": USER_AGENT,
    }
