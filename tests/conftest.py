"""Pytest configuration and shared fixtures for all tests."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from langchain_core.messages import AIMessage, BaseMessage

from src.triage.config import TriageSettings


WEBHOOK_SECRET = "test-webhook-secret"


# ---------------------------------------------------------------------------
# Keys and settings
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_private_key) -> str:
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


@pytest.fixture
def make_settings(private_key_pem):
    """Factory for TriageSettings built from keyword arguments."""

    def _make(**overrides: Any) -> TriageSettings:
        values: Dict[str, Any] = {
            "github_app_id": "12345",
            "github_installation_id": "67890",
            "github_private_key": private_key_pem,
            "github_webhook_secret": WEBHOOK_SECRET,
            "llm_url": "http://llm.test/v1",
        }
        values.update(overrides)
        return TriageSettings(**values)

    return _make


# ---------------------------------------------------------------------------
# Fake GitHub API
# ---------------------------------------------------------------------------


def _iso(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


class FakeGitHub:
    """In-memory GitHub REST API served through httpx.MockTransport.

    Attributes:
        requests: Every request received, in order.
        token_exchanges: Number of installation token exchanges served.
        token_lifetime: Seconds until issued tokens expire.
        statuses: Per-route status overrides, keyed by route name
            ("token", "issue", "comments", "labels").
        timeouts: Route names that raise a read timeout.
        exchange_delay: Seconds the token endpoint waits before replying.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.token_exchanges = 0
        self.token_lifetime = 3600
        self.statuses: Dict[str, int] = {}
        self.timeouts: set = set()
        self.exchange_delay = 0.0
        self.issue: Dict[str, Any] = {
            "id": 1001,
            "number": 42,
            "title": "Crash when saving settings",
            "body": "Saving settings throws a NullPointerException.",
            "user": {"login": "octocat"},
            "state": "open",
        }

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def requests_to(self, route: str) -> List[httpx.Request]:
        return [r for r in self.requests if self._route(r) == route]

    @staticmethod
    def _route(request: httpx.Request) -> str:
        path = request.url.path
        if path.endswith("/access_tokens"):
            return "token"
        if path.endswith("/comments"):
            return "comments"
        if path.endswith("/labels"):
            return "labels"
        return "issue"

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self._route(request)

        if route in self.timeouts:
            raise httpx.ReadTimeout("timed out", request=request)

        status = self.statuses.get(route)
        if status is not None and status >= 300:
            return httpx.Response(status, json={"message": "error"})

        if route == "token":
            self.token_exchanges += 1
            if self.exchange_delay:
                await asyncio.sleep(self.exchange_delay)
            expires = datetime.now(timezone.utc) + timedelta(
                seconds=self.token_lifetime
            )
            return httpx.Response(
                201,
                json={
                    "token": f"ghs_token_{self.token_exchanges}",
                    "expires_at": _iso(expires),
                },
            )

        if route == "comments":
            body = json.loads(request.content)
            return httpx.Response(
                201,
                json={
                    "id": 555,
                    "body": body["body"],
                    "html_url": "https://github.com/acme/widgets/issues/42#issuecomment-555",
                },
            )

        if route == "labels":
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json=[{"id": i, "name": name} for i, name in enumerate(body["labels"])],
            )

        return httpx.Response(200, json=self.issue)


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


# ---------------------------------------------------------------------------
# Scripted chat model
# ---------------------------------------------------------------------------


ScriptStep = Union[AIMessage, Callable[[List[BaseMessage]], AIMessage]]


class ScriptedChatModel:
    """Chat model double that replays scripted replies.

    Each entry is either an AIMessage or a callable that receives the
    conversation and returns one. When the script runs out, the last entry
    is repeated.
    """

    def __init__(self, script: List[ScriptStep]) -> None:
        self.script = list(script)
        self.calls: List[List[BaseMessage]] = []
        self.bound_tools: Optional[List[Dict[str, Any]]] = None

    def bind_tools(self, tools: List[Dict[str, Any]], **kwargs: Any) -> "ScriptedChatModel":
        self.bound_tools = tools
        return self

    async def ainvoke(self, messages: List[BaseMessage], **kwargs: Any) -> AIMessage:
        self.calls.append(list(messages))
        index = min(len(self.calls) - 1, len(self.script) - 1)
        step = self.script[index]
        return step(messages) if callable(step) else step


@pytest.fixture
def scripted_model():
    """Factory building a ScriptedChatModel from a list of replies."""
    return ScriptedChatModel
