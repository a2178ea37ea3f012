"""File read/write tools scoped to the working directory."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from ..orchestration.tools import ToolCategory
from .base import WorkspaceTool
from .errors import ErrorCode, ToolError

__all__ = ["ReadFileTool", "WriteFileTool"]

LOGGER = logging.getLogger(__name__)

_MAX_READ_BYTES = 256_000


class ReadFileTool(WorkspaceTool):
    name = "read_file"
    description = "Read a text file relative to the project directory"
    usage = "src/main.py"
    category = ToolCategory.READ
    required = ("path",)

    def parse_plain(self, raw: str) -> dict[str, str]:
        return {"path": raw.strip()}

    async def run(self, params: dict[str, str]) -> str:
        relative = params["path"].strip()
        target = self.resolve_path(relative)
        if not target.is_file():
            raise ToolError(
                error_code=ErrorCode.FILE_NOT_FOUND,
                message=f"File not found: {relative}",
                suggestion="list the directory with shell_command first",
            )
        content = await asyncio.to_thread(_read_text, target)
        LOGGER.info("Read file: %s", target)
        return f"File content of {relative}:\n{content}"


class WriteFileTool(WorkspaceTool):
    """Create or overwrite a file.

    Plain-text arguments put the path on the first line and the content on
    the remaining lines.
    """

    name = "write_file"
    description = "Write a file (first line: path, remaining lines: full content)"
    usage = "notes/todo.md\n# TODO\n- ship it"
    category = ToolCategory.WRITE
    is_write = True
    required = ("path", "content")

    def parse_plain(self, raw: str) -> dict[str, str]:
        text = raw.lstrip("\r\n")
        path, newline, content = text.partition("\n")
        return {"path": path.strip(), "content": content if newline else ""}

    async def run(self, params: dict[str, str]) -> str:
        relative = params["path"].strip()
        if not relative:
            raise ToolError(error_code=ErrorCode.MISSING_PARAMETER, message="write_file requires a path")
        target = self.resolve_path(relative)
        content = params["content"]
        await asyncio.to_thread(_write_text, target, content)
        LOGGER.info("Wrote file: %s", target)
        return f"Successfully wrote {len(content.encode('utf-8'))} bytes to {relative}"


def _read_text(path: Path) -> str:
    with path.open("rb") as handle:
        data = handle.read(_MAX_READ_BYTES + 1)
    text = data[:_MAX_READ_BYTES].decode("utf-8", errors="replace")
    if len(data) > _MAX_READ_BYTES:
        text += f"\n... [truncated after {_MAX_READ_BYTES} bytes]"
    return text


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
