"""Supervised fire-and-forget execution of triage runs.

The webhook handler acknowledges GitHub immediately and hands the run to
TriageRunner, which owns the run's task, error handling and logging. Each
run is one independent asyncio task. A failed run is logged with its issue
coordinates and message history and then dropped; runs are never retried.
"""

import asyncio
import logging
import time
from typing import Optional, Set

from src.triage.agent.models import AgentResult, serialize_history
from src.triage.agent.orchestrator import TriageAgent
from src.triage.errors import (
    AgentError,
    InvalidAgentResponseError,
    LoopExhaustedError,
)
from src.triage.metrics import TriageMetrics


logger = logging.getLogger(__name__)


class TriageRunner:
    """Launches triage runs as background tasks and supervises them.

    Attributes:
        agent: The agent that performs each run.
        metrics: Metrics sink for run outcomes.
    """

    def __init__(self, agent: TriageAgent, metrics: Optional[TriageMetrics] = None):
        self.agent = agent
        self.metrics = metrics
        # Strong references keep running tasks from being garbage collected
        self._tasks: Set["asyncio.Task[Optional[AgentResult]]"] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def launch(
        self,
        owner: str,
        repo: str,
        issue_number: int,
    ) -> "asyncio.Task[Optional[AgentResult]]":
        """Start a triage run without waiting for it.

        Must be called from a running event loop.

        Returns:
            The task running the triage. Callers may ignore it.
        """
        task = asyncio.create_task(
            self.run(owner, repo, issue_number),
            name=f"triage:{owner}/{repo}#{issue_number}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run(
        self,
        owner: str,
        repo: str,
        issue_number: int,
    ) -> Optional[AgentResult]:
        """Run one triage and convert its outcome into logs and metrics.

        Returns:
            The AgentResult on success, None if the run failed.
        """
        repository = f"{owner}/{repo}"
        coordinates = {"owner": owner, "repo": repo, "issue_number": issue_number}
        started = time.monotonic()
        outcome = "unexpected"

        if self.metrics is not None:
            self.metrics.record_run_started(repository)

        logger.info("Starting triage run", extra=coordinates)

        try:
            result = await self.agent.run(owner, repo, issue_number)
            outcome = "success"
            logger.info(
                "Triage run completed",
                extra={
                    **coordinates,
                    "steps": result.steps,
                    "response": result.response,
                    "history": result.history_for_logging(),
                },
            )
            return result
        except InvalidAgentResponseError as e:
            outcome = "invalid_response"
            self._log_failure("Agent produced an invalid response", e, coordinates)
        except LoopExhaustedError as e:
            outcome = "loop_exhausted"
            self._log_failure("Agent loop exhausted", e, coordinates)
        except AgentError as e:
            outcome = "agent_error"
            self._log_failure("Agent run failed", e, coordinates)
        except asyncio.CancelledError:
            outcome = "cancelled"
            logger.warning("Triage run cancelled", extra=coordinates)
            raise
        except Exception:
            logger.exception("Unexpected error in triage run", extra=coordinates)
        finally:
            if self.metrics is not None and outcome != "cancelled":
                self.metrics.record_run_completed(
                    repository, outcome, time.monotonic() - started
                )

        return None

    def _log_failure(self, summary: str, error: AgentError, coordinates: dict) -> None:
        logger.error(
            summary,
            extra={
                **coordinates,
                "error": error.message,
                "error_type": type(error).__name__,
                "history": serialize_history(error.history or []),
            },
        )

    async def shutdown(self) -> None:
        """Cancel runs still in flight and wait for them to finish."""
        tasks = list(self._tasks)
        if not tasks:
            return

        logger.info("Cancelling in-flight triage runs", extra={"count": len(tasks)})
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
