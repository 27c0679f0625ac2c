"""Error taxonomy for the issue triage service.

Errors fall into three families:

- AuthError: the inbound trust boundary (webhook signatures) and outbound
  credential acquisition. Raised before a triage run starts, or fatal to it.
- TrackerError: GitHub REST failures. These are converted to conversation
  text by the tool handlers and never reach the orchestrator loop.
- AgentError: fatal conditions of a single triage run.
"""

from typing import Any, List, Optional


class TriageError(Exception):
    """Base exception for all triage service errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# -----------------------------------------------------------------------------
# Authentication
# -----------------------------------------------------------------------------


class AuthError(TriageError):
    """Raised when a request or credential cannot be authenticated."""


class MissingPayloadError(AuthError):
    def __init__(self, message: str = "Missing payload"):
        super().__init__(message)


class MissingSignatureError(AuthError):
    def __init__(self, message: str = "Missing signature"):
        super().__init__(message)


class InvalidSignatureError(AuthError):
    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)


class CredentialError(AuthError):
    """Raised when an installation access token cannot be obtained.

    Attributes:
        cause: The underlying exception, if any.
    """

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(message)


# -----------------------------------------------------------------------------
# Issue tracker
# -----------------------------------------------------------------------------


class TrackerError(TriageError):
    """Raised when a GitHub API request fails.

    Attributes:
        status_code: HTTP status code from the response, if one was received.
        request_url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        request_url: Optional[str] = None,
    ):
        self.status_code = status_code
        self.request_url = request_url
        super().__init__(message)


class NotFoundError(TrackerError):
    """The requested GitHub resource does not exist (HTTP 404)."""


class UpstreamError(TrackerError):
    """Non-2xx response other than 404, transport failure, or bad body."""


# -----------------------------------------------------------------------------
# Agent
# -----------------------------------------------------------------------------


class AgentError(TriageError):
    """Raised when a triage run cannot reach a clean terminal state.

    Attributes:
        history: The conversation up to the failure, attached by the
            orchestrator for logging.
    """

    def __init__(self, message: str, history: Optional[List[Any]] = None):
        self.history = history
        super().__init__(message)


class InvalidAgentResponseError(AgentError):
    """The model's terminal message was not plain text."""


class LoopExhaustedError(AgentError):
    """A loop bound ended the run while the model still requested tools.

    Attributes:
        bound: Which bound fired, ``"max_messages"`` or ``"max_steps"``.
    """

    def __init__(
        self,
        message: str,
        bound: str,
        history: Optional[List[Any]] = None,
    ):
        self.bound = bound
        super().__init__(message, history=history)


class UnknownToolError(AgentError):
    """The model requested a tool that is not registered."""

    def __init__(self, tool_name: str, history: Optional[List[Any]] = None):
        self.tool_name = tool_name
        super().__init__(f"Unknown tool requested: {tool_name}", history=history)
