"""Bounded agent loop driving the issue triage conversation.

The loop is an explicit finite-state machine with states AGENT, TOOLS and
END:

    AGENT --(tool calls, within bounds)--> TOOLS --> AGENT
    AGENT --(no tool calls, or a bound reached)--> END

Two independent bounds stop a model that never stops calling tools:

- max_messages: once the conversation holds more messages than this, the
  loop ends after the next model reply.
- max_steps: the number of completed AGENT->TOOLS cycles.

A run only succeeds when the model itself stops requesting tools and its
final reply is plain text. Ending on a bound while tool calls are still
pending raises LoopExhaustedError; a non-text or malformed final reply
raises InvalidAgentResponseError. Neither is retried here.

Tool calls within one assistant turn run concurrently. Their results are
appended in the order the calls were requested, and all of them are
awaited before the model is called again.
"""

import asyncio
import logging
from typing import Any, List, Optional, Sequence, Tuple

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from langchain_openai import ChatOpenAI

from src.triage.agent.models import AgentResult, AgentState
from src.triage.agent.prompts import TRIAGE_SYSTEM_PROMPT, build_triage_prompt
from src.triage.agent.tools import ToolRegistry
from src.triage.config import TriageSettings
from src.triage.errors import (
    AgentError,
    InvalidAgentResponseError,
    LoopExhaustedError,
)
from src.triage.metrics import TriageMetrics


logger = logging.getLogger(__name__)


DEFAULT_MAX_MESSAGES = 10
DEFAULT_MAX_STEPS = 10


def create_chat_model(settings: TriageSettings) -> ChatOpenAI:
    """Create the chat model for an OpenAI-compatible endpoint.

    Args:
        settings: Validated triage settings.

    Returns:
        The ChatOpenAI client instance.
    """
    return ChatOpenAI(
        base_url=settings.llm_url,
        model=settings.llm_model,
        temperature=settings.llm_temperature,
        timeout=settings.llm_timeout_seconds,
        api_key=settings.llm_api_key,
    )


class TriageAgent:
    """Drives the model/tool conversation for one issue at a time.

    The agent holds no per-run state: every call to run() owns its own
    conversation, so one instance can serve concurrent runs.

    Attributes:
        registry: Tools offered to the model.
        max_messages: Conversation length bound.
        max_steps: AGENT->TOOLS cycle bound.

    Example:
        >>> agent = TriageAgent(llm=create_chat_model(settings), registry=tools)
        >>> result = await agent.run("acme", "widgets", 42)
        >>> print(result.response)
    """

    def __init__(
        self,
        llm: BaseChatModel,
        registry: ToolRegistry,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        max_steps: int = DEFAULT_MAX_STEPS,
        metrics: Optional[TriageMetrics] = None,
    ):
        """Initialize the agent.

        Args:
            llm: Chat model supporting bind_tools.
            registry: Tools offered to the model.
            max_messages: Maximum conversation length before the loop ends.
            max_steps: Maximum number of AGENT->TOOLS cycles.
            metrics: Optional metrics sink for tool call counts.
        """
        self.registry = registry
        self.max_messages = max_messages
        self.max_steps = max_steps
        self.metrics = metrics
        self._model = llm.bind_tools(registry.as_openai_tools())

    async def run(self, owner: str, repo: str, issue_number: int) -> AgentResult:
        """Triage one issue.

        Args:
            owner: Repository owner.
            repo: Repository name.
            issue_number: Number of the issue to triage.

        Returns:
            AgentResult with the final reply and full history.

        Raises:
            LoopExhaustedError: If a bound ended the loop mid tool use.
            InvalidAgentResponseError: If the final reply was not plain text.
            UnknownToolError: If the model requested an unregistered tool.
        """
        messages = [
            SystemMessage(content=TRIAGE_SYSTEM_PROMPT),
            HumanMessage(content=build_triage_prompt(owner, repo, issue_number)),
        ]
        return await self.invoke(messages)

    async def invoke(self, messages: Sequence[BaseMessage]) -> AgentResult:
        """Run the loop from a seeded conversation until it terminates."""
        conversation: List[BaseMessage] = list(messages)
        state = AgentState.AGENT
        steps = 0
        bound: Optional[str] = None

        try:
            while state is not AgentState.END:
                if state is AgentState.AGENT:
                    conversation.append(await self._call_model(conversation))
                    state, bound = self._next_state(conversation, steps)
                else:
                    conversation.extend(await self._run_tools(conversation[-1]))
                    steps += 1
                    state = AgentState.AGENT

            return self._finish(conversation, steps, bound)
        except AgentError as e:
            if e.history is None:
                e.history = list(conversation)
            raise

    async def _call_model(self, conversation: List[BaseMessage]) -> AIMessage:
        logger.debug(
            "Calling model",
            extra={"message_count": len(conversation)},
        )
        response = await self._model.ainvoke(conversation)
        if not isinstance(response, AIMessage):
            raise InvalidAgentResponseError(
                f"Model returned {type(response).__name__}, expected AIMessage"
            )
        return response

    def _next_state(
        self,
        conversation: List[BaseMessage],
        steps: int,
    ) -> Tuple[AgentState, Optional[str]]:
        """Decide the transition after an AGENT step.

        Returns:
            The next state, and the bound that forced END if one did.
        """
        last = conversation[-1]
        if not getattr(last, "tool_calls", None):
            return AgentState.END, None

        if len(conversation) > self.max_messages:
            return AgentState.END, "max_messages"

        if steps >= self.max_steps:
            return AgentState.END, "max_steps"

        return AgentState.TOOLS, None

    async def _run_tools(self, message: BaseMessage) -> List[ToolMessage]:
        calls: List[Any] = list(getattr(message, "tool_calls", None) or [])

        # Resolve every tool before running any, so an unknown name fails
        # the turn without side effects
        for call in calls:
            self.registry.get(call["name"])

        logger.info(
            "Executing tool calls",
            extra={"tools": [call["name"] for call in calls]},
        )

        if self.metrics is not None:
            for call in calls:
                self.metrics.record_tool_call(call["name"])

        results = await asyncio.gather(
            *(self.registry.invoke(call["name"], call.get("args")) for call in calls)
        )

        return [
            ToolMessage(
                content=result,
                tool_call_id=call.get("id") or "",
                name=call["name"],
            )
            for call, result in zip(calls, results)
        ]

    def _finish(
        self,
        conversation: List[BaseMessage],
        steps: int,
        bound: Optional[str],
    ) -> AgentResult:
        last = conversation[-1]

        if bound is not None:
            limit = self.max_messages if bound == "max_messages" else self.max_steps
            raise LoopExhaustedError(
                f"Agent loop stopped at {bound}={limit} with tool calls pending",
                bound=bound,
            )

        if getattr(last, "invalid_tool_calls", None):
            raise InvalidAgentResponseError("Model produced a malformed tool call")

        if not isinstance(last.content, str):
            logger.error(
                "Invalid agent response",
                extra={"content_type": type(last.content).__name__},
            )
            raise InvalidAgentResponseError(
                "Agent failed to produce a valid response"
            )

        logger.info(
            "Agent run completed",
            extra={"steps": steps, "message_count": len(conversation)},
        )
        return AgentResult(response=last.content, history=conversation, steps=steps)
