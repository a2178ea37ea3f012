"""Built-in tools available to the agent."""

from __future__ import annotations

from pathlib import Path

from ..orchestration.tools import ToolRegistry
from .base import WorkspaceTool
from .errors import ErrorCode, MissingParameterError, ToolError, WorkspaceEscapeError
from .files import ReadFileTool, WriteFileTool
from .shell import GitCommandTool, ShellCommandTool, detect_interactive_command

__all__ = [
    "BUILTIN_TOOLS",
    "register_builtin_tools",
    "WorkspaceTool",
    "ShellCommandTool",
    "GitCommandTool",
    "ReadFileTool",
    "WriteFileTool",
    "ToolError",
    "ErrorCode",
    "MissingParameterError",
    "WorkspaceEscapeError",
    "detect_interactive_command",
]

BUILTIN_TOOLS: tuple[type[WorkspaceTool], ...] = (
    ShellCommandTool,
    WriteFileTool,
    ReadFileTool,
    GitCommandTool,
)


def register_builtin_tools(
    registry: ToolRegistry,
    working_directory: Path | str | None = None,
) -> list[str]:
    """Register every built-in tool rooted at ``working_directory``.

    Returns:
        Names of the registered tools, in registration order.
    """
    names: list[str] = []
    for tool_cls in BUILTIN_TOOLS:
        registry.register(tool_cls(working_directory))
        names.append(tool_cls.name)
    return names
