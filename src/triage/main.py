"""FastAPI application entry point for the issue triage service.

The app receives GitHub issue webhooks, verifies them, and launches an
agent run in the background for every newly opened issue.

Endpoints:
- POST /github/webhook: GitHub webhook receiver
- GET /health: liveness probe
- GET /metrics: Prometheus metrics
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import Response
from langchain_core.language_models import BaseChatModel
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import ValidationError

from src.triage.agent.orchestrator import TriageAgent, create_chat_model
from src.triage.agent.tools import build_github_tools
from src.triage.config import TriageSettings, get_settings
from src.triage.errors import AuthError, CredentialError
from src.triage.github.auth import InstallationTokenCache
from src.triage.github.client import GitHubClient
from src.triage.metrics import TriageMetrics, generate_metrics_output, get_metrics
from src.triage.runner import TriageRunner
from src.triage.webhook.handler import WebhookHandler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@dataclass
class TriageServices:
    """Everything the app wires together at startup."""

    settings: TriageSettings
    credentials: InstallationTokenCache
    github_client: GitHubClient
    agent: TriageAgent
    runner: TriageRunner
    webhook_handler: WebhookHandler
    metrics: TriageMetrics

    async def close(self) -> None:
        await self.runner.shutdown()
        await self.github_client.close()
        await self.credentials.close()


def _redact_secret(value: str, visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters.

    Args:
        value: The secret value to redact.
        visible_chars: Number of characters to show at the start.

    Returns:
        Redacted string with asterisks replacing hidden characters.
    """
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(settings: TriageSettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info("Triage configuration:")
    logger.info(f"  GitHub Base URL: {settings.github_base_url}")
    logger.info(f"  GitHub App ID: {settings.github_app_id}")
    logger.info(f"  GitHub Installation ID: {settings.github_installation_id}")
    logger.info("  GitHub Private Key: <redacted>")
    logger.info(
        f"  GitHub Webhook Secret: {_redact_secret(settings.github_webhook_secret)}"
    )
    logger.info(f"  LLM URL: {settings.llm_url}")
    logger.info(f"  LLM Model: {settings.llm_model}")
    logger.info(f"  Max Messages: {settings.max_messages}")
    logger.info(f"  Max Steps: {settings.max_steps}")
    logger.info(f"  Request Timeout Seconds: {settings.request_timeout_seconds}")
    logger.info(f"  Host: {settings.host}")
    logger.info(f"  Port: {settings.port}")


def build_services(
    settings: TriageSettings,
    llm: Optional[BaseChatModel] = None,
    metrics: Optional[TriageMetrics] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> TriageServices:
    """Wire all triage dependencies.

    Args:
        settings: Validated triage settings.
        llm: Chat model override; defaults to ChatOpenAI from settings.
        metrics: Metrics instance; defaults to the global one.
        transport: httpx transport override for GitHub traffic.

    Returns:
        Fully wired TriageServices.
    """
    metrics = metrics or get_metrics()

    credentials = InstallationTokenCache(
        app_id=settings.github_app_id,
        installation_id=settings.github_installation_id,
        private_key=settings.github_private_key,
        base_url=settings.github_base_url,
        timeout=settings.request_timeout_seconds,
        max_redirects=settings.max_redirects,
        transport=transport,
    )
    github_client = GitHubClient(
        credentials=credentials,
        base_url=settings.github_base_url,
        timeout=settings.request_timeout_seconds,
        max_redirects=settings.max_redirects,
        transport=transport,
    )
    agent = TriageAgent(
        llm=llm or create_chat_model(settings),
        registry=build_github_tools(github_client),
        max_messages=settings.max_messages,
        max_steps=settings.max_steps,
        metrics=metrics,
    )
    runner = TriageRunner(agent=agent, metrics=metrics)
    webhook_handler = WebhookHandler(
        secret=settings.github_webhook_secret,
        credentials=credentials,
        runner=runner,
        metrics=metrics,
    )

    return TriageServices(
        settings=settings,
        credentials=credentials,
        github_client=github_client,
        agent=agent,
        runner=runner,
        webhook_handler=webhook_handler,
        metrics=metrics,
    )


def create_app(services: Optional[TriageServices] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        services: Pre-built services. When None, settings are loaded from
                  the environment during startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Triage service starting up...")

        wired = services
        if wired is None:
            settings = get_settings()
            _log_configuration(settings)
            wired = build_services(settings)
        app.state.services = wired

        logger.info("Triage service started successfully")

        yield

        logger.info("Triage service shutting down...")
        await wired.close()
        logger.info("Triage service shutdown complete")

    app = FastAPI(
        title="Issue Triage Agent",
        description="Labels and summarizes newly opened GitHub issues",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health():
        """Liveness probe endpoint."""
        return {"status": "healthy"}

    @app.get("/metrics")
    async def metrics(request: Request):
        """Prometheus metrics endpoint."""
        registry = request.app.state.services.metrics.registry
        return Response(
            content=generate_metrics_output(registry),
            media_type=CONTENT_TYPE_LATEST,
        )

    @app.post("/github/webhook")
    async def github_webhook(
        request: Request,
        x_hub_signature_256: Optional[str] = Header(default=None),
        x_github_event: Optional[str] = Header(default=None),
    ):
        """GitHub webhook receiver endpoint.

        Verifies the signature over the raw body, ignores anything but
        newly opened issues (non-issue events such as ping included), and
        starts the triage run in the background.
        """
        handler: WebhookHandler = request.app.state.services.webhook_handler
        raw_body = await request.body()

        try:
            return await handler.handle(
                x_hub_signature_256, raw_body, event=x_github_event
            )
        except CredentialError as e:
            logger.error(
                "Could not obtain installation credentials",
                extra={"error": e.message},
            )
            raise HTTPException(
                status_code=502,
                detail="Could not obtain installation credentials",
            )
        except AuthError as e:
            logger.warning("Rejected webhook delivery", extra={"error": e.message})
            raise HTTPException(status_code=400, detail=e.message)
        except ValidationError as e:
            raise HTTPException(
                status_code=422,
                detail=e.errors(
                    include_url=False, include_context=False, include_input=False
                ),
            )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    dev_settings = get_settings()
    uvicorn.run(
        "src.triage.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
    )
