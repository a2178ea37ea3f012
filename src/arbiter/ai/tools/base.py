"""Base class for the built-in workspace tools.

Tool arguments arrive as raw text. A JSON object carrying every required key
is used as-is; anything else goes through the tool's plain-text convention
(for example the whole text is the command for ``shell_command``).
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, ClassVar

from ..orchestration.tools import ToolCategory, ToolSpec
from .errors import MissingParameterError, WorkspaceEscapeError

__all__ = ["WorkspaceTool"]

LOGGER = logging.getLogger(__name__)


class WorkspaceTool(ABC):
    """A tool that operates inside a working directory.

    Subclasses set the class-level metadata and implement :meth:`run`.

    Example:
        class EchoTool(WorkspaceTool):
            name = "echo"
            description = "Echo the text back"
            required = ("text",)

            def parse_plain(self, raw):
                return {"text": raw}

            async def run(self, params):
                return params["text"]
    """

    name: ClassVar[str] = ""
    description: ClassVar[str] = ""
    usage: ClassVar[str] = ""
    category: ClassVar[str] = ToolCategory.UTILITY
    is_write: ClassVar[bool] = False
    required: ClassVar[tuple[str, ...]] = ()

    def __init__(self, working_directory: Path | str | None = None) -> None:
        self._working_directory = Path(working_directory or Path.cwd()).resolve()

    @property
    def working_directory(self) -> Path:
        return self._working_directory

    @property
    def spec(self) -> ToolSpec:
        return ToolSpec(
            name=self.name,
            description=self.description,
            usage=self.usage,
            category=self.category,
            is_write=self.is_write,
        )

    async def execute(self, arguments: str) -> str:
        params = self.parse_arguments(arguments)
        for key in self.required:
            if key not in params:
                raise MissingParameterError(self.name, key)
        return await self.run(params)

    def parse_arguments(self, raw: str) -> dict[str, str]:
        """Return the tool parameters encoded in ``raw``."""
        stripped = raw.strip()
        if stripped.startswith("{"):
            try:
                payload = json.loads(stripped)
            except json.JSONDecodeError:
                LOGGER.debug("%s arguments look like JSON but do not parse", self.name)
            else:
                if isinstance(payload, dict) and all(key in payload for key in self.required):
                    return {key: _as_text(value) for key, value in payload.items()}
        return self.parse_plain(raw)

    @abstractmethod
    def parse_plain(self, raw: str) -> dict[str, str]:
        """Interpret non-JSON argument text."""

    @abstractmethod
    async def run(self, params: dict[str, str]) -> str:
        """Perform the tool's effect and return text for the model."""

    def resolve_path(self, relative: str) -> Path:
        """Resolve ``relative`` against the working directory, refusing escapes."""
        candidate = (self._working_directory / relative.strip()).resolve()
        if candidate != self._working_directory and self._working_directory not in candidate.parents:
            raise WorkspaceEscapeError(relative)
        return candidate


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)
