"""Unit tests for the bounded agent loop.

Drives TriageAgent with a scripted chat model and in-memory tools, and
asserts on the conversation it builds, the bounds that stop it, and the
errors it raises.
"""

import asyncio
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage
from prometheus_client import CollectorRegistry
from pydantic import BaseModel

from src.triage.agent.models import AgentResult
from src.triage.agent.orchestrator import TriageAgent
from src.triage.agent.tools import ToolDescriptor, ToolRegistry, build_github_tools
from src.triage.errors import (
    InvalidAgentResponseError,
    LoopExhaustedError,
    NotFoundError,
    UnknownToolError,
)
from src.triage.metrics import TriageMetrics


def run_async(coro):
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


class NoteArgs(BaseModel):
    text: str = "note"
    delay: float = 0.0


def _tool_call(name: str, call_id: str, args: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"name": name, "args": args or {}, "id": call_id, "type": "tool_call"}


def _calls(*calls: Dict[str, Any]) -> AIMessage:
    return AIMessage(content="", tool_calls=list(calls))


def _make_registry(log: Optional[List[str]] = None) -> ToolRegistry:
    """Registry with a single ``note`` tool that records completions."""

    async def note(args: NoteArgs) -> str:
        if args.delay:
            await asyncio.sleep(args.delay)
        if log is not None:
            log.append(args.text)
        return f"noted {args.text}"

    return ToolRegistry(
        [
            ToolDescriptor(
                name="note",
                description="Record a note",
                args_schema=NoteArgs,
                handler=note,
            )
        ]
    )


def _make_agent(model, registry=None, **kwargs) -> TriageAgent:
    return TriageAgent(llm=model, registry=registry or _make_registry(), **kwargs)


# ---------------------------------------------------------------------------
# Clean termination
# ---------------------------------------------------------------------------


class TestCleanEnd:
    def test_reply_without_tool_calls_ends_after_one_model_call(self, scripted_model):
        model = scripted_model([AIMessage(content="Nothing to do")])
        agent = _make_agent(model)

        result = run_async(agent.run("acme", "widgets", 42))

        assert isinstance(result, AgentResult)
        assert result.response == "Nothing to do"
        assert result.steps == 0
        assert len(model.calls) == 1
        assert len(result.history) == 3

    def test_seed_conversation(self, scripted_model):
        model = scripted_model([AIMessage(content="done")])
        agent = _make_agent(model)

        run_async(agent.run("acme", "widgets", 42))

        seed = model.calls[0]
        assert isinstance(seed[0], SystemMessage)
        assert isinstance(seed[1], HumanMessage)
        assert "acme/widgets" in seed[1].content
        assert "issueNumber: 42" in seed[1].content

    def test_tools_are_bound_to_model(self, scripted_model):
        model = scripted_model([AIMessage(content="done")])
        _make_agent(model)

        assert [tool["function"]["name"] for tool in model.bound_tools] == ["note"]

    def test_tool_round_then_final_reply(self, scripted_model):
        model = scripted_model(
            [
                _calls(_tool_call("note", "call_1", {"text": "a"})),
                AIMessage(content="Triaged"),
            ]
        )
        agent = _make_agent(model)

        result = run_async(agent.run("acme", "widgets", 42))

        assert result.response == "Triaged"
        assert result.steps == 1
        tool_message = result.history[3]
        assert isinstance(tool_message, ToolMessage)
        assert tool_message.content == "noted a"
        assert tool_message.tool_call_id == "call_1"
        # The model saw the tool result before replying
        assert model.calls[1][-1] is tool_message

    def test_tool_error_text_lets_loop_continue(self, scripted_model):
        client = MagicMock()
        client.fetch_issue = AsyncMock(
            side_effect=NotFoundError("Issue #42 not found in acme/widgets", 404)
        )
        model = scripted_model(
            [
                _calls(
                    _tool_call(
                        "get_issue_by_number",
                        "call_1",
                        {"owner": "acme", "repo": "widgets", "issueNumber": 42},
                    )
                ),
                AIMessage(content="The issue could not be found."),
            ]
        )
        agent = _make_agent(model, registry=build_github_tools(client))

        result = run_async(agent.run("acme", "widgets", 42))

        assert result.response == "The issue could not be found."
        assert result.history[3].content.startswith("Error fetching issue")


# ---------------------------------------------------------------------------
# Bounds
# ---------------------------------------------------------------------------


class TestBounds:
    def test_message_bound_stops_endless_tool_calls(self, scripted_model):
        model = scripted_model([_calls(_tool_call("note", "call"))])
        agent = _make_agent(model, max_messages=10, max_steps=10)

        with pytest.raises(LoopExhaustedError) as exc_info:
            run_async(agent.run("acme", "widgets", 42))

        assert exc_info.value.bound == "max_messages"
        # 2 seed messages, then one reply and one tool result per cycle
        assert len(model.calls) == 5
        assert len(exc_info.value.history) == 11

    def test_step_bound_stops_endless_tool_calls(self, scripted_model):
        model = scripted_model([_calls(_tool_call("note", "call"))])
        agent = _make_agent(model, max_messages=1000, max_steps=3)

        with pytest.raises(LoopExhaustedError) as exc_info:
            run_async(agent.run("acme", "widgets", 42))

        assert exc_info.value.bound == "max_steps"
        assert len(model.calls) == 4

    def test_final_text_reply_at_bound_is_success(self, scripted_model):
        model = scripted_model(
            [
                _calls(_tool_call("note", "c1")),
                _calls(_tool_call("note", "c2")),
                _calls(_tool_call("note", "c3")),
                AIMessage(content="done"),
            ]
        )
        agent = _make_agent(model, max_messages=1000, max_steps=3)

        result = run_async(agent.run("acme", "widgets", 42))

        assert result.response == "done"
        assert result.steps == 3


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    def test_non_text_final_reply_is_invalid(self, scripted_model):
        model = scripted_model(
            [AIMessage(content=[{"type": "text", "text": "structured"}])]
        )
        agent = _make_agent(model)

        with pytest.raises(InvalidAgentResponseError) as exc_info:
            run_async(agent.run("acme", "widgets", 42))

        assert exc_info.value.message == "Agent failed to produce a valid response"
        assert len(exc_info.value.history) == 3

    def test_malformed_tool_call_is_invalid(self, scripted_model):
        model = scripted_model(
            [
                AIMessage(
                    content="",
                    invalid_tool_calls=[
                        {
                            "name": "note",
                            "args": "{not json",
                            "id": "call_1",
                            "error": "could not parse arguments",
                            "type": "invalid_tool_call",
                        }
                    ],
                )
            ]
        )
        agent = _make_agent(model)

        with pytest.raises(InvalidAgentResponseError):
            run_async(agent.run("acme", "widgets", 42))

    def test_unknown_tool_is_fatal_and_runs_nothing(self, scripted_model):
        log: List[str] = []
        model = scripted_model(
            [
                _calls(
                    _tool_call("note", "call_1", {"text": "first"}),
                    _tool_call("delete_repo", "call_2"),
                )
            ]
        )
        agent = _make_agent(model, registry=_make_registry(log))

        with pytest.raises(UnknownToolError) as exc_info:
            run_async(agent.run("acme", "widgets", 42))

        assert exc_info.value.tool_name == "delete_repo"
        assert log == []
        assert isinstance(exc_info.value.history[-1], AIMessage)

    def test_non_ai_message_is_invalid(self):
        model = MagicMock()
        model.bind_tools.return_value = model
        model.ainvoke = AsyncMock(return_value=HumanMessage(content="hi"))
        agent = _make_agent(model)

        with pytest.raises(InvalidAgentResponseError):
            run_async(agent.run("acme", "widgets", 42))


# ---------------------------------------------------------------------------
# Concurrent tool execution
# ---------------------------------------------------------------------------


class TestToolExecution:
    def test_results_keep_request_order_when_completion_order_differs(
        self, scripted_model
    ):
        log: List[str] = []
        model = scripted_model(
            [
                _calls(
                    _tool_call("note", "slow", {"text": "slow", "delay": 0.05}),
                    _tool_call("note", "fast", {"text": "fast"}),
                ),
                AIMessage(content="done"),
            ]
        )
        agent = _make_agent(model, registry=_make_registry(log))

        result = run_async(agent.run("acme", "widgets", 42))

        assert log == ["fast", "slow"]
        tool_messages = [m for m in result.history if isinstance(m, ToolMessage)]
        assert [m.tool_call_id for m in tool_messages] == ["slow", "fast"]
        assert [m.content for m in tool_messages] == ["noted slow", "noted fast"]

    def test_tool_calls_are_counted(self, scripted_model):
        metrics = TriageMetrics(registry=CollectorRegistry())
        model = scripted_model(
            [
                _calls(_tool_call("note", "a"), _tool_call("note", "b")),
                AIMessage(content="done"),
            ]
        )
        agent = _make_agent(model, metrics=metrics)

        run_async(agent.run("acme", "widgets", 42))

        assert (
            metrics.registry.get_sample_value(
                "triage_tool_calls_total", {"tool": "note"}
            )
            == 2.0
        )
