"""Tool registry, executor and related types.

Example:
    from arbiter.ai.orchestration.tools import ToolExecutor, ToolRegistry, ToolSpec

    registry = ToolRegistry()
    registry.register_function(
        ToolSpec(name="echo", description="Echo the arguments"),
        lambda args: args,
    )
    output = await ToolExecutor(registry).execute("echo", "hi")
"""

from .types import (
    AsyncToolHandler,
    SimpleTool,
    Tool,
    ToolCategory,
    ToolHandler,
    ToolRunner,
    ToolSpec,
)

from .errors import (
    DuplicateToolError,
    ToolExecutionError,
    ToolNotFoundError,
)

from .registry import (
    ToolRegistration,
    ToolRegistry,
)

from .executor import (
    ExecutorConfig,
    ToolExecutor,
)

__all__ = [
    # types.py
    "Tool",
    "ToolSpec",
    "ToolHandler",
    "AsyncToolHandler",
    "ToolRunner",
    "SimpleTool",
    "ToolCategory",
    # errors.py
    "ToolExecutionError",
    "ToolNotFoundError",
    "DuplicateToolError",
    # registry.py
    "ToolRegistry",
    "ToolRegistration",
    # executor.py
    "ToolExecutor",
    "ExecutorConfig",
]
