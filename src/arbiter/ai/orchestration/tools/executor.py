"""Tool executor used by the orchestrator.

Looks tools up in a :class:`ToolRegistry`, applies a timeout and converts
every failure into :class:`ToolExecutionError` so the orchestrator has a
single error type to turn into feedback for the model.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from .errors import ToolExecutionError, ToolNotFoundError
from .registry import ToolRegistry

__all__ = [
    "ToolExecutor",
    "ExecutorConfig",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ExecutorConfig:
    """Configuration for the tool executor.

    Attributes:
        default_timeout: Per-call timeout in seconds; None or 0 disables it.
        log_arguments: Whether to log raw tool arguments.
        log_results: Whether to log tool output.
    """

    default_timeout: float | None = 120.0
    log_arguments: bool = False
    log_results: bool = False


class ToolExecutor:
    """Run registered tools by name.

    Example:
        executor = ToolExecutor(registry)
        output = await executor.execute("read_file", "src/main.py")
    """

    def __init__(
        self,
        registry: ToolRegistry,
        config: ExecutorConfig | None = None,
    ) -> None:
        self._registry = registry
        self._config = config or ExecutorConfig()

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    async def execute(
        self,
        name: str,
        arguments: str,
        *,
        timeout: float | None = None,
    ) -> str:
        """Execute a tool and return its output as text.

        Args:
            name: Tool name from the tool call.
            arguments: Raw argument text from the tool call.
            timeout: Optional override of ``default_timeout``.

        Returns:
            The tool output.

        Raises:
            ToolNotFoundError: If the tool is unknown or disabled.
            ToolExecutionError: If the tool fails or times out.
        """
        if self._config.log_arguments:
            LOGGER.debug("Executing tool %s with arguments: %r", name, arguments)
        else:
            LOGGER.debug("Executing tool %s", name)

        tool = self._registry.get(name)
        if tool is None:
            LOGGER.warning("Tool '%s' not found or disabled", name)
            raise ToolNotFoundError(name)

        effective_timeout = timeout if timeout is not None else self._config.default_timeout
        start_time = time.perf_counter()
        try:
            if effective_timeout:
                result = await asyncio.wait_for(tool.execute(arguments), timeout=effective_timeout)
            else:
                result = await tool.execute(arguments)
        except asyncio.TimeoutError as exc:
            LOGGER.warning("Tool %s timed out after %.1fs", name, effective_timeout)
            raise ToolExecutionError(
                f"Tool '{name}' timed out after {effective_timeout:g}s",
                tool_name=name,
                cause=exc,
            ) from exc
        except ToolExecutionError:
            raise
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            LOGGER.warning("Tool %s failed after %.1fms: %s", name, duration_ms, exc)
            raise ToolExecutionError(str(exc) or type(exc).__name__, tool_name=name, cause=exc) from exc

        duration_ms = (time.perf_counter() - start_time) * 1000
        output = _stringify(result)
        if self._config.log_results:
            LOGGER.debug("Tool %s completed in %.1fms with result: %s", name, duration_ms, output)
        else:
            LOGGER.debug("Tool %s completed in %.1fms", name, duration_ms)
        return output

    def has_tool(self, name: str) -> bool:
        return self._registry.has(name)

    def list_tools(self) -> list[str]:
        return self._registry.list_names()


def _stringify(result: Any) -> str:
    if result is None:
        return ""
    if isinstance(result, str):
        return result
    if isinstance(result, (dict, list)):
        return json.dumps(result, ensure_ascii=False, indent=2)
    return str(result)
