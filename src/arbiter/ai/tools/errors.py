"""Error types raised by the built-in workspace tools."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = ["ErrorCode", "ToolError", "MissingParameterError", "WorkspaceEscapeError"]


class ErrorCode:
    """Constants for error codes carried by :class:`ToolError`."""

    MISSING_PARAMETER = "missing_parameter"
    INVALID_PARAMETER = "invalid_parameter"
    FILE_NOT_FOUND = "file_not_found"
    OUTSIDE_WORKSPACE = "outside_workspace"
    INTERNAL_ERROR = "internal_error"


@dataclass
class ToolError(Exception):
    """Base exception for expected tool failures.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        suggestion: Guidance for the model on how to recover.
    """

    error_code: str
    message: str
    suggestion: str = ""

    def __str__(self) -> str:
        if self.suggestion:
            return f"{self.message} ({self.suggestion})"
        return self.message


class MissingParameterError(ToolError):
    def __init__(self, tool_name: str, parameter: str) -> None:
        super().__init__(
            error_code=ErrorCode.MISSING_PARAMETER,
            message=f"{tool_name} requires a '{parameter}' argument",
        )


class WorkspaceEscapeError(ToolError):
    def __init__(self, path: str) -> None:
        super().__init__(
            error_code=ErrorCode.OUTSIDE_WORKSPACE,
            message=f"Path '{path}' resolves outside the working directory",
            suggestion="use a path relative to the project root",
        )
