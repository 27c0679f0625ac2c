"""Tool registry exposing GitHub operations to the language model.

Each tool is a ToolDescriptor: a unique name, a description the model reads
when deciding what to call, a pydantic model describing its arguments, and
an async handler. Arguments are validated against the schema before the
handler runs.

Tools always produce text. GitHub failures, credential failures, and
argument validation errors are rendered as natural-language error strings
that become part of the conversation, so the model can decide whether to
retry, skip the step, or report the failure. The orchestrator therefore
never sees an exception from a tool. The one exception is an unknown tool
name, which is a programming error and fatal to the run.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.triage.errors import (
    CredentialError,
    NotFoundError,
    UnknownToolError,
    UpstreamError,
)
from src.triage.github.client import GitHubClient


logger = logging.getLogger(__name__)


ToolHandler = Callable[[Any], Awaitable[str]]

# Failures a GitHub-backed handler converts to conversation text
TOOL_FAILURES = (NotFoundError, UpstreamError, CredentialError)


@dataclass(frozen=True)
class ToolDescriptor:
    """A callable tool offered to the model.

    Attributes:
        name: Unique tool name within a registry.
        description: What the tool does, written for the model.
        args_schema: Pydantic model the arguments are validated against.
        handler: Consumes the validated arguments and returns text.
    """

    name: str
    description: str
    args_schema: Type[BaseModel]
    handler: ToolHandler

    def to_openai_tool(self) -> Dict[str, Any]:
        """Render as an OpenAI function-tool definition for bind_tools."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.args_schema.model_json_schema(),
            },
        }


class ToolRegistry:
    """Mapping from tool name to ToolDescriptor."""

    def __init__(self, tools: Optional[List[ToolDescriptor]] = None):
        self._tools: Dict[str, ToolDescriptor] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: ToolDescriptor) -> None:
        """Register a tool.

        Raises:
            ValueError: If a tool with the same name is already registered.
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> ToolDescriptor:
        """Resolve a tool by name.

        Raises:
            UnknownToolError: If no tool with that name is registered.
        """
        try:
            return self._tools[name]
        except KeyError:
            raise UnknownToolError(name) from None

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def as_openai_tools(self) -> List[Dict[str, Any]]:
        return [tool.to_openai_tool() for tool in self._tools.values()]

    async def invoke(self, name: str, args: Optional[Mapping[str, Any]]) -> str:
        """Validate arguments and run a tool.

        Args:
            name: Name of the tool requested by the model.
            args: Raw arguments from the model's tool call.

        Returns:
            The tool's text result, or a text-encoded error.

        Raises:
            UnknownToolError: If the tool is not registered.
        """
        tool = self.get(name)

        try:
            validated = tool.args_schema.model_validate(dict(args or {}))
        except ValidationError as e:
            logger.warning(
                "Tool arguments failed validation",
                extra={"tool": name, "errors": e.error_count()},
            )
            return f"Invalid arguments for {name}: {e}"

        try:
            result = await tool.handler(validated)
        except Exception as e:
            logger.exception("Tool handler raised", extra={"tool": name})
            return f"Error running {name}: {e}"

        return result if isinstance(result, str) else str(result)


# -----------------------------------------------------------------------------
# GitHub tools
# -----------------------------------------------------------------------------


class IssueCoordinates(BaseModel):
    """Arguments shared by every issue-scoped tool."""

    model_config = ConfigDict(populate_by_name=True)

    owner: str = Field(
        ...,
        min_length=1,
        description="The owner of the repository (user or organization)",
    )
    repo: str = Field(..., min_length=1, description="The name of the repository")
    issue_number: int = Field(
        ...,
        alias="issueNumber",
        gt=0,
        description="The number of the issue",
    )


class GetIssueArgs(IssueCoordinates):
    pass


class PostCommentArgs(IssueCoordinates):
    body: str = Field(
        ...,
        min_length=1,
        description="The markdown content of the comment to post",
    )


class AddLabelsArgs(IssueCoordinates):
    labels: List[str] = Field(
        ...,
        min_length=1,
        description="The label names to add to the issue",
    )


def build_github_tools(client: GitHubClient) -> ToolRegistry:
    """Create a registry with the issue triage tools bound to a client.

    Args:
        client: Authenticated GitHub client used by every handler.

    Returns:
        Registry holding get_issue_by_number, post_comment and add_labels.
    """

    async def get_issue_by_number(args: GetIssueArgs) -> str:
        try:
            issue = await client.fetch_issue(args.owner, args.repo, args.issue_number)
        except TOOL_FAILURES as e:
            return f"Error fetching issue: {e.message}"
        return issue.model_dump_json()

    async def post_comment(args: PostCommentArgs) -> str:
        try:
            url = await client.post_comment(
                args.owner, args.repo, args.issue_number, args.body
            )
        except TOOL_FAILURES as e:
            return f"Error posting comment: {e.message}"
        return f"Comment posted successfully: {url}"

    async def add_labels(args: AddLabelsArgs) -> str:
        try:
            applied = await client.add_labels(
                args.owner, args.repo, args.issue_number, args.labels
            )
        except TOOL_FAILURES as e:
            return f"Error adding labels: {e.message}"
        return f"Labels applied successfully: {', '.join(applied)}"

    return ToolRegistry(
        [
            ToolDescriptor(
                name="get_issue_by_number",
                description=(
                    "Fetch a GitHub issue by its number. Returns the issue id, "
                    "number, title, body, author and state as JSON."
                ),
                args_schema=GetIssueArgs,
                handler=get_issue_by_number,
            ),
            ToolDescriptor(
                name="post_comment",
                description=(
                    "Post a markdown comment on a GitHub issue. Use this to "
                    "leave the triage summary for the maintainers."
                ),
                args_schema=PostCommentArgs,
                handler=post_comment,
            ),
            ToolDescriptor(
                name="add_labels",
                description=(
                    "Add one or more labels to a GitHub issue, for example "
                    "'bug', 'enhancement', 'documentation' or 'question'."
                ),
                args_schema=AddLabelsArgs,
                handler=add_labels,
            ),
        ]
    )
