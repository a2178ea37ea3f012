"""Name-keyed registry of the tools the model may call."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .errors import DuplicateToolError, ToolNotFoundError
from .types import AsyncToolHandler, SimpleTool, Tool, ToolHandler, ToolSpec

__all__ = [
    "ToolRegistry",
    "ToolRegistration",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolRegistration:
    """Record of a registered tool.

    Attributes:
        tool: The tool implementation.
        enabled: Whether the model may currently call the tool.
    """

    tool: Tool
    enabled: bool = True

    @property
    def name(self) -> str:
        return self.tool.name

    @property
    def spec(self) -> ToolSpec:
        return self.tool.spec


class ToolRegistry:
    """Registry mapping tool names to implementations.

    Registration order is preserved and is the order tools are listed in the
    system prompt. Lookups of unknown or disabled names are an explicit
    outcome (``None`` or :class:`ToolNotFoundError`), never a silent default.

    Example:
        registry = ToolRegistry()
        registry.register_function(
            ToolSpec(name="echo", description="Echo the arguments"),
            lambda args: args,
        )
        tool = registry.get_required("echo")
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolRegistration] = {}

    def register(
        self,
        tool: Tool,
        *,
        enabled: bool = True,
        allow_override: bool = False,
    ) -> ToolRegistration:
        """Register a tool implementation.

        Raises:
            DuplicateToolError: If the name is taken and ``allow_override`` is False.
        """
        name = tool.name
        if name in self._tools and not allow_override:
            raise DuplicateToolError(name)
        registration = ToolRegistration(tool=tool, enabled=enabled)
        self._tools[name] = registration
        LOGGER.debug("Registered tool: %s", name)
        return registration

    def register_function(
        self,
        spec: ToolSpec,
        handler: ToolHandler | AsyncToolHandler,
        *,
        enabled: bool = True,
        allow_override: bool = False,
    ) -> ToolRegistration:
        """Register a sync or async callable taking the raw argument text."""
        return self.register(
            SimpleTool(spec=spec, handler=handler),
            enabled=enabled,
            allow_override=allow_override,
        )

    def unregister(self, name: str) -> bool:
        if self._tools.pop(name, None) is None:
            return False
        LOGGER.debug("Unregistered tool: %s", name)
        return True

    def get(self, name: str) -> Tool | None:
        """Return the tool if registered and enabled, otherwise None."""
        registration = self._tools.get(name)
        if registration is None or not registration.enabled:
            return None
        return registration.tool

    def get_required(self, name: str) -> Tool:
        """Return the tool or raise :class:`ToolNotFoundError`."""
        tool = self.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def has(self, name: str) -> bool:
        return self.get(name) is not None

    def enable(self, name: str) -> bool:
        return self._set_enabled(name, True)

    def disable(self, name: str) -> bool:
        return self._set_enabled(name, False)

    def list_tools(self, *, include_disabled: bool = False) -> list[ToolSpec]:
        return [
            registration.spec
            for registration in self._tools.values()
            if registration.enabled or include_disabled
        ]

    def list_names(self, *, include_disabled: bool = False) -> list[str]:
        return [spec.name for spec in self.list_tools(include_disabled=include_disabled)]

    def render_catalogue(self) -> str:
        """Render enabled tools as the bullet list embedded in the system prompt."""
        return "\n".join(spec.render() for spec in self.list_tools())

    def clear(self) -> None:
        self._tools.clear()

    def _set_enabled(self, name: str, enabled: bool) -> bool:
        registration = self._tools.get(name)
        if registration is None:
            return False
        registration.enabled = enabled
        return True

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools
