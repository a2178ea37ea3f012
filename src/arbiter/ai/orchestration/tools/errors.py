"""Exceptions raised by the tool system."""

from __future__ import annotations

__all__ = [
    "ToolExecutionError",
    "ToolNotFoundError",
    "DuplicateToolError",
]


class ToolExecutionError(Exception):
    """Raised when a tool cannot produce a result.

    Attributes:
        tool_name: Name of the tool that failed.
        cause: Underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        tool_name: str = "",
        cause: BaseException | None = None,
    ) -> None:
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(message)


class ToolNotFoundError(ToolExecutionError):
    """Raised when the requested tool is not registered or is disabled."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}", tool_name=name)
        self.name = name


class DuplicateToolError(Exception):
    """Raised when attempting to register a tool with a name that already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")
