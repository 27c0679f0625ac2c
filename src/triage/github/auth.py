"""GitHub App installation token cache.

GitHub Apps authenticate in two hops: a short-lived JWT signed with the
app's RSA private key is exchanged for an installation access token, which
is then used as the bearer token for REST calls. Installation tokens live
for an hour, so one is cached and reused until it is within the safety
margin of its expiry.

Concurrent callers that find the cache cold or expired share a single
refresh: the first caller starts the exchange as a task and later callers
await that same task, so exactly one exchange request is made and every
waiter receives the same token or the same CredentialError. The task is
cleared once it settles, so a call after a failure tries again.

Source:
- POST /app/installations/{installation_id}/access_tokens
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import httpx
import jwt

from src.triage.errors import CredentialError
from src.triage.github.constants import (
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_TIMEOUT_SECONDS,
    GITHUB_API_URL,
    api_headers,
)
from src.triage.github.models import InstallationToken


logger = logging.getLogger(__name__)


# A token handed to a caller must stay valid at least this long
TOKEN_SAFETY_MARGIN_SECONDS = 60

# Backdate the JWT to tolerate clock drift between us and GitHub
JWT_CLOCK_SKEW_SECONDS = 60

# GitHub rejects app JWTs that live longer than 10 minutes
JWT_LIFETIME_SECONDS = 10 * 60


def _parse_expiry(value: Any) -> float:
    """Parse GitHub's ISO-8601 ``expires_at`` into POSIX seconds.

    Raises:
        ValueError: If the value is not an ISO-8601 timestamp.
    """
    if not isinstance(value, str):
        raise ValueError(f"expires_at must be a string, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        raise ValueError(f"expires_at has no timezone: {value}")
    return parsed.timestamp()


class InstallationTokenCache:
    """Mints and caches a GitHub App installation access token.

    Attributes:
        app_id: GitHub App identifier, used as the JWT issuer.
        installation_id: Installation the token is scoped to.
        base_url: Base URL for GitHub API.
        timeout: Request timeout in seconds for the exchange call.
        max_redirects: Maximum redirects followed by the exchange call.

    Example:
        >>> cache = InstallationTokenCache(app_id="123", installation_id="456",
        ...                                private_key=pem)
        >>> token = await cache.get_token()
    """

    def __init__(
        self,
        app_id: str,
        installation_id: str,
        private_key: str,
        base_url: str = GITHUB_API_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        clock: Callable[[], float] = time.time,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the token cache.

        Args:
            app_id: GitHub App identifier.
            installation_id: GitHub App installation identifier.
            private_key: PEM-encoded RSA private key of the app.
            base_url: Base URL for GitHub API.
            timeout: Request timeout in seconds.
            max_redirects: Maximum number of redirects to follow.
            clock: Returns the current time as POSIX seconds.
            transport: Optional httpx transport, used by tests.
        """
        self.app_id = app_id
        self.installation_id = installation_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_redirects = max_redirects
        self._private_key = private_key
        self._clock = clock
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._cached: Optional[InstallationToken] = None
        self._inflight: Optional["asyncio.Future[InstallationToken]"] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                follow_redirects=True,
                max_redirects=self.max_redirects,
                transport=self._transport,
            )
        return self._client

    @property
    def cached_token(self) -> Optional[InstallationToken]:
        return self._cached

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def invalidate(self) -> None:
        """Drop the cached token so the next call refreshes it."""
        self._cached = None

    async def get_token(self) -> str:
        """Return a token valid for at least the safety margin.

        Returns:
            The installation access token.

        Raises:
            CredentialError: If a refresh was needed and failed.
        """
        now = self._clock()
        if self._cached is not None and self._cached.is_valid(
            now, TOKEN_SAFETY_MARGIN_SECONDS
        ):
            return self._cached.token

        # No await between the check and the assignment, so only the first
        # caller starts a refresh; the rest await its outcome
        if self._inflight is None:
            logger.info(
                "Generating new GitHub App installation token",
                extra={"installation_id": self.installation_id},
            )
            self._inflight = asyncio.ensure_future(self._refresh_and_store(now))

        # Shielded so one cancelled caller does not cancel the shared refresh
        token = await asyncio.shield(self._inflight)
        return token.token

    async def _refresh_and_store(self, now: float) -> InstallationToken:
        try:
            token = await self._refresh(now)
            self._cached = token
            return token
        finally:
            self._inflight = None

    def create_app_jwt(self, now: Optional[float] = None) -> str:
        """Sign a short-lived JWT asserting the app's identity.

        Args:
            now: Current time as POSIX seconds; defaults to the clock.

        Returns:
            The encoded RS256 JWT.

        Raises:
            CredentialError: If the private key cannot sign the payload.
        """
        issued = int(self._clock() if now is None else now)
        payload = {
            "iat": issued - JWT_CLOCK_SKEW_SECONDS,
            "exp": issued + JWT_LIFETIME_SECONDS,
            "iss": self.app_id,
        }
        try:
            return jwt.encode(payload, self._private_key, algorithm="RS256")
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            logger.error(
                "Failed to sign GitHub App JWT",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            raise CredentialError(f"Could not sign GitHub App JWT: {e}", cause=e)

    async def _refresh(self, now: float) -> InstallationToken:
        """Exchange a fresh app JWT for an installation token."""
        app_jwt = self.create_app_jwt(now)
        path = f"/app/installations/{self.installation_id}/access_tokens"

        try:
            response = await self.client.post(path, headers=api_headers(app_jwt))
        except httpx.HTTPError as e:
            logger.error(
                "Installation token exchange failed",
                extra={"path": path, "error": str(e)},
            )
            raise CredentialError(
                f"Could not reach GitHub token endpoint: {e}", cause=e
            )

        if not response.is_success:
            logger.error(
                "Installation token exchange rejected",
                extra={
                    "path": path,
                    "status_code": response.status_code,
                    "response_body": response.text[:500],
                },
            )
            raise CredentialError(
                f"GitHub token endpoint returned {response.status_code}"
            )

        token = self._parse_token_response(response)

        # The exchange itself takes time; check against the instant it ended
        now = self._clock()
        if not token.is_valid(now, TOKEN_SAFETY_MARGIN_SECONDS):
            raise CredentialError(
                "GitHub issued an installation token that expires within "
                f"{TOKEN_SAFETY_MARGIN_SECONDS}s"
            )

        logger.info(
            "Cached new installation token",
            extra={
                "installation_id": self.installation_id,
                "expires_in": int(token.expires_at - now),
            },
        )
        return token

    def _parse_token_response(self, response: httpx.Response) -> InstallationToken:
        try:
            data: Dict[str, Any] = response.json()
            token = data["token"]
            if not isinstance(token, str) or not token:
                raise ValueError("token must be a non-empty string")
            return InstallationToken(
                token=token,
                expires_at=_parse_expiry(data["expires_at"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise CredentialError(
                f"Malformed installation token response: {e}", cause=e
            )
