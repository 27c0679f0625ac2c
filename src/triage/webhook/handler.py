"""GitHub webhook handler for the triage service.

The handler is the trust boundary: a delivery is only parsed after its
signature has been verified against the shared secret. Only ``opened``
issue events start a triage run. Before the run is launched an
installation token is obtained, so credential failures surface to GitHub
as an HTTP error instead of a silently failing background run.

The handler never waits for the run itself; GitHub expects an
acknowledgment within 10 seconds.
"""

import logging
from typing import Any, Dict, Optional

from src.triage.github.auth import InstallationTokenCache
from src.triage.metrics import TriageMetrics
from src.triage.runner import TriageRunner
from src.triage.webhook.models import (
    ISSUES_EVENT,
    GitHubWebhookPayload,
    WebhookResponse,
)
from src.triage.webhook.signature import verify_signature


logger = logging.getLogger(__name__)


class WebhookHandler:
    """Authenticates webhook deliveries and triggers triage runs.

    Attributes:
        secret: The GitHub webhook secret.
        credentials: Installation token cache, warmed before each run.
        runner: Launches the background triage run.
        metrics: Optional metrics sink for webhook outcomes.
    """

    def __init__(
        self,
        secret: str,
        credentials: InstallationTokenCache,
        runner: TriageRunner,
        metrics: Optional[TriageMetrics] = None,
    ) -> None:
        self.secret = secret
        self.credentials = credentials
        self.runner = runner
        self.metrics = metrics

    async def handle(
        self,
        signature_header: Optional[str],
        raw_body: Optional[bytes],
        event: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Handle one webhook delivery.

        Args:
            signature_header: Value of the ``X-Hub-Signature-256`` header.
            raw_body: The exact bytes of the request body.
            event: Value of the ``X-GitHub-Event`` header. Deliveries for
                any event other than ``issues`` (such as ``ping``) are
                acknowledged as ignored without parsing the body.

        Returns:
            The acknowledgment body: ``{"status": "processing"}`` or
            ``{"status": "ignored", "reason": ...}``.

        Raises:
            AuthError: If the signature is missing or invalid.
            pydantic.ValidationError: If the body is not a valid issue event.
            CredentialError: If no installation token could be obtained.
        """
        try:
            verify_signature(signature_header, raw_body, self.secret)
        except Exception:
            self._record("rejected")
            raise

        if event is not None and event != ISSUES_EVENT:
            logger.info("Ignoring event: %s", event)
            self._record("ignored")
            return WebhookResponse(
                status="ignored",
                reason=f"Event was {event}, not '{ISSUES_EVENT}'",
            ).model_dump(exclude_none=True)

        try:
            payload = GitHubWebhookPayload.model_validate_json(raw_body)
        except Exception:
            self._record("rejected")
            raise

        if not payload.is_opened:
            logger.info("Ignoring action: %s", payload.action)
            self._record("ignored")
            return WebhookResponse(
                status="ignored",
                reason=f"Action was {payload.action}, not 'opened'",
            ).model_dump(exclude_none=True)

        try:
            await self.credentials.get_token()
        except Exception:
            self._record("rejected")
            raise

        self.runner.launch(payload.owner, payload.repo, payload.issue_number)

        logger.info(
            "Webhook processed for issue",
            extra={
                "issue_id": payload.issue_id,
                "installation_id": (
                    payload.installation.id if payload.installation else None
                ),
            },
        )
        self._record("processing")
        return WebhookResponse(status="processing").model_dump(exclude_none=True)

    def _record(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_webhook(outcome)
