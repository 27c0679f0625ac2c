"""Unit tests for TriageRunner.

Verifies that each run outcome is logged and counted, that failures never
escape the background task, and that shutdown cancels in-flight runs.
"""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage
from prometheus_client import CollectorRegistry

from src.triage.agent.models import AgentResult
from src.triage.errors import (
    AgentError,
    InvalidAgentResponseError,
    LoopExhaustedError,
    UnknownToolError,
)
from src.triage.metrics import TriageMetrics
from src.triage.runner import TriageRunner


def run_async(coro):
    return asyncio.run(coro)


def _completed(metrics: TriageMetrics, result: str) -> float:
    value = metrics.registry.get_sample_value(
        "triage_runs_completed_total",
        {"repository": "acme/widgets", "result": result},
    )
    return value or 0.0


@pytest.fixture
def metrics():
    return TriageMetrics(registry=CollectorRegistry())


def _make_runner(metrics, **agent_run_kwargs):
    agent = MagicMock()
    agent.run = AsyncMock(**agent_run_kwargs)
    return TriageRunner(agent=agent, metrics=metrics), agent


class TestRunOutcomes:
    def test_success_returns_result(self, metrics):
        result = AgentResult(
            response="Labeled as bug",
            history=[HumanMessage(content="triage"), AIMessage(content="Labeled as bug")],
            steps=2,
        )
        runner, agent = _make_runner(metrics, return_value=result)

        assert run_async(runner.run("acme", "widgets", 42)) is result
        agent.run.assert_awaited_once_with("acme", "widgets", 42)
        assert _completed(metrics, "success") == 1.0
        assert (
            metrics.registry.get_sample_value(
                "triage_runs_started_total", {"repository": "acme/widgets"}
            )
            == 1.0
        )

    @pytest.mark.parametrize(
        "error, result",
        [
            (InvalidAgentResponseError("Agent failed to produce a valid response"), "invalid_response"),
            (LoopExhaustedError("stopped", bound="max_steps"), "loop_exhausted"),
            (UnknownToolError("delete_repo"), "agent_error"),
            (AgentError("something else"), "agent_error"),
            (RuntimeError("boom"), "unexpected"),
        ],
    )
    def test_failures_are_contained(self, metrics, error, result):
        runner, _ = _make_runner(metrics, side_effect=error)

        assert run_async(runner.run("acme", "widgets", 42)) is None
        assert _completed(metrics, result) == 1.0

    def test_failure_log_carries_coordinates_and_history(self, metrics, caplog):
        error = InvalidAgentResponseError(
            "Agent failed to produce a valid response",
            history=[HumanMessage(content="triage acme/widgets#42")],
        )
        runner, _ = _make_runner(metrics, side_effect=error)

        with caplog.at_level(logging.ERROR, logger="src.triage.runner"):
            run_async(runner.run("acme", "widgets", 42))

        (record,) = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert record.owner == "acme"
        assert record.repo == "widgets"
        assert record.issue_number == 42
        assert record.error == "Agent failed to produce a valid response"
        assert record.history == [
            {"role": "human", "content": "triage acme/widgets#42"}
        ]

    def test_duration_is_observed(self, metrics):
        runner, _ = _make_runner(metrics, side_effect=RuntimeError("boom"))

        run_async(runner.run("acme", "widgets", 42))

        assert (
            metrics.registry.get_sample_value(
                "triage_run_duration_seconds_count", {"repository": "acme/widgets"}
            )
            == 1.0
        )


class TestLaunch:
    def test_launch_tracks_task_until_done(self, metrics):
        result = AgentResult(response="done")
        runner, _ = _make_runner(metrics, return_value=result)

        async def scenario():
            task = runner.launch("acme", "widgets", 42)
            pending_while_running = runner.pending
            outcome = await task
            await asyncio.sleep(0)
            return pending_while_running, outcome, task.get_name()

        pending, outcome, name = run_async(scenario())

        assert pending == 1
        assert outcome is result
        assert runner.pending == 0
        assert name == "triage:acme/widgets#42"

    def test_failed_run_does_not_raise_from_task(self, metrics):
        runner, _ = _make_runner(metrics, side_effect=RuntimeError("boom"))

        async def scenario():
            return await runner.launch("acme", "widgets", 42)

        assert run_async(scenario()) is None

    def test_shutdown_cancels_in_flight_runs(self, metrics):
        started = []

        async def hang(owner, repo, issue_number):
            started.append(issue_number)
            await asyncio.sleep(3600)

        runner, _ = _make_runner(metrics, side_effect=hang)

        async def scenario():
            tasks = [runner.launch("acme", "widgets", n) for n in (1, 2)]
            await asyncio.sleep(0)
            await runner.shutdown()
            return tasks

        tasks = run_async(scenario())

        assert started == [1, 2]
        assert all(task.cancelled() for task in tasks)
        assert runner.pending == 0
        assert _completed(metrics, "unexpected") == 0.0

    def test_shutdown_without_runs_is_noop(self, metrics):
        runner, _ = _make_runner(metrics)
        run_async(runner.shutdown())
        assert runner.pending == 0
