"""Tool system types.

Tools receive the raw argument text exactly as the model wrote it between the
``<tool_call>`` tags and return plain text that is fed back into the
conversation.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

__all__ = [
    "ToolSpec",
    "ToolHandler",
    "AsyncToolHandler",
    "Tool",
    "ToolRunner",
    "SimpleTool",
    "ToolCategory",
]


# -----------------------------------------------------------------------------
# Tool Categories
# -----------------------------------------------------------------------------


class ToolCategory:
    """Standard tool categories for organization."""

    READ = "read"
    WRITE = "write"
    SYSTEM = "system"
    VCS = "vcs"
    UTILITY = "utility"


# -----------------------------------------------------------------------------
# Tool Specification
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Description of a tool as presented to the model.

    Attributes:
        name: Unique identifier used in ``<tool_call name="...">``.
        description: One-line summary of what the tool does.
        usage: Example of the argument text the tool expects.
        category: Tool category for organization.
        is_write: Whether the tool modifies the workspace.
    """

    name: str
    description: str
    usage: str = ""
    category: str = ToolCategory.UTILITY
    is_write: bool = False

    def render(self) -> str:
        """Render the catalogue entry used in the system prompt."""
        line = f"- {self.name}: {self.description}"
        if self.usage:
            line += f'\n  <tool_call name="{self.name}">{self.usage}</tool_call>'
        return line

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "name": self.name,
            "description": self.description,
            "usage": self.usage,
            "category": self.category,
            "is_write": self.is_write,
        }


# -----------------------------------------------------------------------------
# Tool Handler Types
# -----------------------------------------------------------------------------

# Synchronous tool handler
ToolHandler = Callable[[str], Any]

# Asynchronous tool handler
AsyncToolHandler = Callable[[str], Awaitable[Any]]


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class Tool(Protocol):
    """Protocol for tool implementations."""

    @property
    def name(self) -> str:
        ...

    @property
    def spec(self) -> ToolSpec:
        ...

    async def execute(self, arguments: str) -> Any:
        """Run the tool.

        Args:
            arguments: Raw argument text from the tool call.

        Returns:
            The tool's result; converted to text by the executor.

        Raises:
            Exception: If tool execution fails.
        """
        ...


@runtime_checkable
class ToolRunner(Protocol):
    """Anything the orchestrator can hand a tool call to."""

    async def execute(self, name: str, arguments: str) -> str:
        ...


# -----------------------------------------------------------------------------
# Simple Tool Implementation
# -----------------------------------------------------------------------------


@dataclass
class SimpleTool:
    """Tool implementation wrapping a plain callable.

    Example:
        tool = SimpleTool(
            spec=ToolSpec(name="echo", description="Echo the arguments"),
            handler=lambda args: args,
        )
    """

    spec: ToolSpec
    handler: ToolHandler | AsyncToolHandler
    _is_async: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        self._is_async = inspect.iscoroutinefunction(self.handler)

    @property
    def name(self) -> str:
        return self.spec.name

    async def execute(self, arguments: str) -> Any:
        if self._is_async:
            return await self.handler(arguments)  # type: ignore[misc]
        return self.handler(arguments)
