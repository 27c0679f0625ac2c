"""GitHub webhook payload models for the triage service.

Only the fields needed to locate the issue are modelled; GitHub sends many
more, and those are ignored.

GitHub Webhook Payload Structure (issues event):
{
  "action": "opened",
  "issue": {"number": 123, "title": "Issue title", "body": "Issue body"},
  "repository": {"name": "repo-name", "owner": {"login": "owner-name"}},
  "installation": {"id": 456}
}
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ISSUES_EVENT = "issues"

OPENED_ACTION = "opened"


class WebhookOwner(BaseModel):
    model_config = ConfigDict(extra="ignore")

    login: str = Field(..., min_length=1)


class WebhookRepository(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1)
    owner: WebhookOwner


class WebhookIssue(BaseModel):
    model_config = ConfigDict(extra="ignore")

    number: int = Field(..., gt=0)
    title: str
    body: Optional[str] = None


class WebhookInstallation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int


class GitHubWebhookPayload(BaseModel):
    """Parsed GitHub ``issues`` webhook payload.

    Attributes:
        action: The issue event action (opened, closed, edited, ...).
        issue: Number, title and body of the issue.
        repository: Repository name and owner login.
        installation: The GitHub App installation that received the event.
    """

    model_config = ConfigDict(extra="ignore")

    action: str = Field(..., description="The issue event action")
    issue: WebhookIssue
    repository: WebhookRepository
    installation: Optional[WebhookInstallation] = None

    @property
    def owner(self) -> str:
        return self.repository.owner.login

    @property
    def repo(self) -> str:
        return self.repository.name

    @property
    def issue_number(self) -> int:
        return self.issue.number

    @property
    def issue_id(self) -> str:
        """Canonical issue identifier ``{owner}/{repo}#{number}``."""
        return f"{self.owner}/{self.repo}#{self.issue_number}"

    @property
    def is_opened(self) -> bool:
        return self.action == OPENED_ACTION


class WebhookResponse(BaseModel):
    """Acknowledgment returned to GitHub for a webhook delivery."""

    status: Literal["processing", "ignored"]
    reason: Optional[str] = None
