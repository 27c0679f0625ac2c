"""GitHub API data models.

Source:
- GET /repos/{owner}/{repo}/issues/{number}
- POST /app/installations/{installation_id}/access_tokens
"""

from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


class GitHubIssue(BaseModel):
    """Read-only snapshot of a GitHub issue.

    Fetched on demand for every tool call and never cached.

    Attributes:
        id: Global GitHub identifier of the issue.
        number: Issue number within the repository.
        title: Issue title.
        body: Issue description, None when the author left it empty.
        author: Login of the user who opened the issue.
        state: Either "open" or "closed".
    """

    id: int
    number: int = Field(..., gt=0)
    title: str
    body: Optional[str] = None
    author: str
    state: Literal["open", "closed"]

    @classmethod
    def from_github_response(cls, data: Dict[str, Any]) -> "GitHubIssue":
        """Build an issue from the raw REST representation.

        Raises:
            KeyError, TypeError, pydantic.ValidationError: On malformed data.
        """
        return cls(
            id=data["id"],
            number=data["number"],
            title=data["title"],
            body=data.get("body"),
            author=data["user"]["login"],
            state=data["state"],
        )


@dataclass(frozen=True)
class InstallationToken:
    """A GitHub App installation access token.

    Attributes:
        token: The bearer token string.
        expires_at: Absolute expiry as POSIX seconds.
    """

    token: str
    expires_at: float

    def is_valid(self, now: float, margin_seconds: float) -> bool:
        """True when the token outlives ``now`` by more than the margin."""
        return now + margin_seconds < self.expires_at
