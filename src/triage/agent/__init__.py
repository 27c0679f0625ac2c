"""Tool-augmented agent loop for issue triage."""

from src.triage.agent.models import AgentResult, AgentState
from src.triage.agent.orchestrator import TriageAgent, create_chat_model
from src.triage.agent.tools import ToolDescriptor, ToolRegistry, build_github_tools

__all__ = [
    "AgentResult",
    "AgentState",
    "ToolDescriptor",
    "ToolRegistry",
    "TriageAgent",
    "build_github_tools",
    "create_chat_model",
]
