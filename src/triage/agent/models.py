"""Data models for the triage agent loop."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from langchain_core.messages import BaseMessage


class AgentState(str, Enum):
    """States of the agent loop.

    Attributes:
        AGENT: Send the conversation to the model and append its reply.
        TOOLS: Execute the tool calls requested by the last reply.
        END: Terminal; validate the final reply.
    """

    AGENT = "agent"
    TOOLS = "tools"
    END = "end"


@dataclass
class AgentResult:
    """Outcome of a triage run that reached a clean end.

    Attributes:
        response: The model's final plain-text reply.
        history: Every message of the conversation, in order.
        steps: Number of completed Agent->Tools cycles.
    """

    response: str
    history: List[BaseMessage] = field(default_factory=list)
    steps: int = 0

    def history_for_logging(self) -> List[Dict[str, Any]]:
        return serialize_history(self.history)


def serialize_history(messages: List[BaseMessage]) -> List[Dict[str, Any]]:
    """Flatten messages into JSON-friendly dicts for structured logs."""
    serialized = []
    for message in messages:
        entry: Dict[str, Any] = {
            "role": message.type,
            "content": message.content,
        }
        tool_calls = getattr(message, "tool_calls", None)
        if tool_calls:
            entry["tool_calls"] = [
                {"name": call["name"], "args": call["args"]} for call in tool_calls
            ]
        tool_call_id = getattr(message, "tool_call_id", None)
        if tool_call_id:
            entry["tool_call_id"] = tool_call_id
        serialized.append(entry)
    return serialized
