"""GitHub API access authenticated as a GitHub App installation."""

from src.triage.github.auth import InstallationTokenCache
from src.triage.github.client import GitHubClient
from src.triage.github.models import GitHubIssue, InstallationToken

__all__ = [
    "GitHubClient",
    "GitHubIssue",
    "InstallationToken",
    "InstallationTokenCache",
]
