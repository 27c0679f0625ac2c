"""GitHub webhook handling for the triage service.

This module verifies and parses GitHub ``issues`` webhook deliveries and
launches a triage run for every ``opened`` event.
"""

from .handler import WebhookHandler
from .models import GitHubWebhookPayload, WebhookResponse
from .signature import compute_signature, verify_signature

__all__ = [
    "GitHubWebhookPayload",
    "WebhookHandler",
    "WebhookResponse",
    "compute_signature",
    "verify_signature",
]
