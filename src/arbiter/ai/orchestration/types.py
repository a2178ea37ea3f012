"""Core type definitions for the agent loop.

Messages, stream events and the task bookkeeping that flows between the
conversation manager and the orchestrator. Value types are frozen so they can
be shared between the producer task and its consumer without copying.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Literal, Union

__all__ = [
    # Messages
    "MessageRole",
    "Message",
    # Stream events
    "TextEvent",
    "ThinkStartEvent",
    "ThinkPartialEvent",
    "ThinkEndEvent",
    "ToolCallEvent",
    "ErrorEvent",
    "DoneEvent",
    "StreamEvent",
    # Task bookkeeping
    "TaskPhase",
    "TaskState",
    "RecentCommandLog",
    "ToolCallRecord",
    "InteractionStatus",
    "InteractionResult",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Message Type
# -----------------------------------------------------------------------------

MessageRole = Literal["system", "user", "assistant"]


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable chat message.

    Attributes:
        role: The role of the message sender.
        content: The text content of the message.
    """

    role: MessageRole
    content: str

    def to_chat_param(self) -> dict[str, str]:
        """Convert to the ``{"role", "content"}`` shape both backends accept."""
        return {"role": self.role, "content": self.content}

    @classmethod
    def system(cls, content: str) -> Message:
        """Create a system message."""
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        """Create a user message."""
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> Message:
        """Create an assistant message."""
        return cls(role="assistant", content=content)


# -----------------------------------------------------------------------------
# Stream Events
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TextEvent:
    """Plain narration text destined for the user."""

    kind: ClassVar[str] = "text"
    text: str


@dataclass(slots=True, frozen=True)
class ThinkStartEvent:
    """A ``<think>`` block opened."""

    kind: ClassVar[str] = "think_start"


@dataclass(slots=True, frozen=True)
class ThinkPartialEvent:
    """A fragment of thinking text, delivered as soon as it is unambiguous."""

    kind: ClassVar[str] = "think_partial"
    text: str


@dataclass(slots=True, frozen=True)
class ThinkEndEvent:
    """The open ``<think>`` block closed (or the stream ended inside it)."""

    kind: ClassVar[str] = "think_end"


@dataclass(slots=True, frozen=True)
class ToolCallEvent:
    """A complete tool invocation.

    Attributes:
        name: Tool name taken from the ``name`` attribute of the opening tag.
        args: Raw text between the opening and closing tags, untrimmed.
    """

    kind: ClassVar[str] = "tool_call"
    name: str
    args: str

    def to_markup(self) -> str:
        """Render the call back into the tag form the model emitted."""
        return f'<tool_call name="{self.name}">{self.args}</tool_call>'


@dataclass(slots=True, frozen=True)
class ErrorEvent:
    """Generation failed; no further events follow except the stream ending."""

    kind: ClassVar[str] = "error"
    message: str


@dataclass(slots=True, frozen=True)
class DoneEvent:
    """Generation finished normally."""

    kind: ClassVar[str] = "done"


StreamEvent = Union[
    TextEvent,
    ThinkStartEvent,
    ThinkPartialEvent,
    ThinkEndEvent,
    ToolCallEvent,
    ErrorEvent,
    DoneEvent,
]


# -----------------------------------------------------------------------------
# Task Phase and State
# -----------------------------------------------------------------------------


class TaskPhase(str, Enum):
    """Coarse stage of an orchestrated task."""

    PLANNING = "planning"
    EXECUTION = "execution"
    EVALUATION = "evaluation"
    COMPLETION = "completion"

    @property
    def is_terminal(self) -> bool:
        return self is TaskPhase.COMPLETION


@dataclass(slots=True)
class TaskState:
    """Mutable bookkeeping for one orchestrated interaction.

    Only the orchestrator mutates this, and only between iterations.

    Attributes:
        phase: Current phase.
        iteration_count: Iterations started so far.
        max_iterations: Hard iteration cap.
        tools_executed_this_iteration: Tools run in the current iteration.
        total_tools_executed: Tools run across the whole interaction.
        last_phase_change_time: Monotonic timestamp of the last phase change.
        task_summary: The user's original request.
    """

    phase: TaskPhase = TaskPhase.PLANNING
    iteration_count: int = 0
    max_iterations: int = 10
    tools_executed_this_iteration: int = 0
    total_tools_executed: int = 0
    last_phase_change_time: float = field(default_factory=time.monotonic)
    task_summary: str = ""

    def should_continue(self) -> bool:
        """Return True while another iteration fits under the cap."""
        return self.iteration_count < self.max_iterations

    def advance_iteration(self) -> None:
        self.iteration_count += 1
        self.tools_executed_this_iteration = 0

    def change_phase(self, new_phase: TaskPhase) -> bool:
        """Move to ``new_phase``; returns True when the phase actually changed."""
        if new_phase is self.phase:
            return False
        LOGGER.info(
            "Phase transition: %s -> %s (iteration %d)",
            self.phase.value,
            new_phase.value,
            self.iteration_count,
        )
        self.phase = new_phase
        self.last_phase_change_time = time.monotonic()
        return True

    def record_tool_execution(self) -> None:
        self.tools_executed_this_iteration += 1
        self.total_tools_executed += 1


class RecentCommandLog:
    """Bounded memory of the most recent ``(tool_name, args)`` pairs.

    Used to spot a model that keeps issuing the same call. Args are compared
    exactly, whitespace included.
    """

    DEFAULT_CAPACITY: ClassVar[int] = 5

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._entries: deque[tuple[str, str]] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def contains(self, name: str, args: str) -> bool:
        return (name, args) in self._entries

    def record(self, name: str, args: str) -> None:
        self._entries.append((name, args))

    def clear(self) -> None:
        self._entries.clear()

    def entries(self) -> list[tuple[str, str]]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolCallRecord:
    """Record of a tool call made during an interaction.

    Attributes:
        name: Tool name.
        arguments: Raw argument text as the model emitted it.
        result: Tool output, or the failure description.
        success: Whether the tool completed without error.
        duration_ms: Execution time in milliseconds.
        repeated: Whether the call matched a recent identical call.
        iteration: Iteration number the call belongs to.
    """

    name: str
    arguments: str
    result: str
    success: bool = True
    duration_ms: float = 0.0
    repeated: bool = False
    iteration: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "name": self.name,
            "arguments": self.arguments,
            "result": self.result,
            "success": self.success,
            "duration_ms": self.duration_ms,
            "repeated": self.repeated,
            "iteration": self.iteration,
        }


class InteractionStatus(str, Enum):
    """How an orchestrated interaction ended."""

    COMPLETED = "completed"
    EXHAUSTED = "exhausted"
    ITERATION_LIMIT = "iteration_limit"
    TRANSPORT_ERROR = "transport_error"


@dataclass(slots=True, frozen=True)
class InteractionResult:
    """Final outcome of :meth:`TaskOrchestrator.process_prompt`.

    Attributes:
        status: Why the loop stopped.
        iterations: Iterations executed.
        total_tools_executed: Successful tool executions.
        final_phase: Phase the task ended in.
        response: Narration text from the last generation.
        tool_calls: Every tool call made, in order.
        error: Transport error message when ``status`` is ``TRANSPORT_ERROR``.
    """

    status: InteractionStatus
    iterations: int
    total_tools_executed: int
    final_phase: TaskPhase
    response: str = ""
    tool_calls: tuple[ToolCallRecord, ...] = ()
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status in (InteractionStatus.COMPLETED, InteractionStatus.EXHAUSTED)
