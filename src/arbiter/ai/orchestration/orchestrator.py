"""Task orchestrator: the bounded plan/execute/evaluate loop.

Each iteration asks the model for one response, executes every tool call the
response contains (in emission order), feeds the results back into the
conversation and then moves the task to its next phase. The loop ends when
the task is confirmed complete, when the model stops calling tools, when the
iteration cap is hit, or when the backend fails.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Union

from .conversation import ConversationManager
from .phases import ModelRouter, classify_request_complexity, determine_next_phase
from .tools import ToolExecutionError, ToolRunner
from .types import (
    DoneEvent,
    ErrorEvent,
    InteractionResult,
    InteractionStatus,
    RecentCommandLog,
    StreamEvent,
    TaskPhase,
    TaskState,
    TextEvent,
    ToolCallEvent,
    ToolCallRecord,
)

__all__ = [
    "TaskOrchestrator",
    "OrchestratorConfig",
    "EventCallback",
    "ToolResultCallback",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Callback Types
# -----------------------------------------------------------------------------

EventCallback = Callable[[StreamEvent], Union[Awaitable[None], None]]
"""Called with every stream event, for rendering."""

ToolResultCallback = Callable[[ToolCallRecord], Union[Awaitable[None], None]]
"""Called after each tool execution with its record."""


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class OrchestratorConfig:
    """Configuration for the task orchestrator.

    Attributes:
        max_iterations: Hard cap on generations per interaction.
        iteration_timeout: Deadline in seconds for one iteration (generation
            plus its tool calls); None disables it.
        repetition_window: Number of recent tool calls remembered for
            repetition detection.
        classify_initial_phase: Start simple lookups directly in Execution
            instead of Planning.
    """

    max_iterations: int = 10
    iteration_timeout: float | None = None
    repetition_window: int = RecentCommandLog.DEFAULT_CAPACITY
    classify_initial_phase: bool = True


@dataclass(slots=True)
class _IterationOutcome:
    text: list[str] = field(default_factory=list)
    had_tool_calls: bool = False
    had_errors: bool = False
    error: str | None = None


# -----------------------------------------------------------------------------
# Orchestrator
# -----------------------------------------------------------------------------


class TaskOrchestrator:
    """Drive one user request to completion.

    Example:
        orchestrator = TaskOrchestrator(manager, ToolExecutor(registry), router=router)
        result = await orchestrator.process_prompt("list the python files")
    """

    def __init__(
        self,
        conversation: ConversationManager,
        tools: ToolRunner,
        *,
        config: OrchestratorConfig | None = None,
        router: ModelRouter | None = None,
        event_callback: EventCallback | None = None,
        tool_callback: ToolResultCallback | None = None,
    ) -> None:
        self._conversation = conversation
        self._tools = tools
        self._config = config or OrchestratorConfig()
        self._router = router
        self._event_callback = event_callback
        self._tool_callback = tool_callback
        self._recent = RecentCommandLog(self._config.repetition_window)
        self._state: TaskState | None = None

    @property
    def conversation(self) -> ConversationManager:
        return self._conversation

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    @property
    def state(self) -> TaskState | None:
        """State of the current or most recent interaction."""
        return self._state

    @property
    def recent_commands(self) -> RecentCommandLog:
        return self._recent

    async def process_prompt(self, prompt: str) -> InteractionResult:
        """Run the loop for ``prompt`` and report how it ended.

        Transport failures and the iteration cap are reported through the
        result's status rather than raised.
        """
        initial_phase = TaskPhase.PLANNING
        if self._config.classify_initial_phase:
            initial_phase = classify_request_complexity(prompt)
        state = TaskState(
            phase=initial_phase,
            max_iterations=self._config.max_iterations,
            task_summary=prompt,
        )
        self._state = state
        LOGGER.info("Starting task in %s phase: %.80s", state.phase.value, prompt)

        records: list[ToolCallRecord] = []
        pending_input = prompt
        response = ""
        status: InteractionStatus | None = None
        error: str | None = None

        while state.should_continue():
            state.advance_iteration()
            LOGGER.debug("Iteration %d/%d (%s)", state.iteration_count, state.max_iterations, state.phase.value)
            # No-op when the phase model is active; retries a failed load.
            await self._switch_model(state.phase)
            try:
                outcome = await self._run_with_deadline(state, pending_input, records)
            except asyncio.TimeoutError:
                error = f"Iteration {state.iteration_count} timed out after {self._config.iteration_timeout:g}s"
                LOGGER.warning("%s", error)
                status = InteractionStatus.TRANSPORT_ERROR
                break
            pending_input = ""

            if outcome.error is not None:
                error = outcome.error
                status = InteractionStatus.TRANSPORT_ERROR
                break

            response = "".join(outcome.text)
            next_phase = determine_next_phase(
                state.phase,
                had_tool_calls=outcome.had_tool_calls,
                had_errors=outcome.had_errors,
            )
            if state.phase is TaskPhase.COMPLETION and next_phase is TaskPhase.COMPLETION:
                status = InteractionStatus.COMPLETED
                break
            if state.change_phase(next_phase):
                await self._switch_model(next_phase)
            if not outcome.had_tool_calls and not outcome.had_errors:
                status = InteractionStatus.EXHAUSTED
                break

        if status is None:
            LOGGER.warning("Task reached max iterations (%d)", state.max_iterations)
            status = InteractionStatus.ITERATION_LIMIT

        LOGGER.info(
            "Task finished: %s after %d iteration(s), %d tool(s)",
            status.value,
            state.iteration_count,
            state.total_tools_executed,
        )
        return InteractionResult(
            status=status,
            iterations=state.iteration_count,
            total_tools_executed=state.total_tools_executed,
            final_phase=state.phase,
            response=response,
            tool_calls=tuple(records),
            error=error,
        )

    # ------------------------------------------------------------------
    # Iteration
    # ------------------------------------------------------------------

    async def _run_with_deadline(
        self,
        state: TaskState,
        user_input: str,
        records: list[ToolCallRecord],
    ) -> _IterationOutcome:
        timeout = self._config.iteration_timeout
        if timeout is not None and timeout > 0:
            return await asyncio.wait_for(self._run_iteration(state, user_input, records), timeout=timeout)
        return await self._run_iteration(state, user_input, records)

    async def _run_iteration(
        self,
        state: TaskState,
        user_input: str,
        records: list[ToolCallRecord],
    ) -> _IterationOutcome:
        outcome = _IterationOutcome()
        narration: list[str] = []

        async with self._conversation.generate_stream(user_input) as events:
            async for event in events:
                await self._notify_event(event)
                if isinstance(event, TextEvent):
                    narration.append(event.text)
                    outcome.text.append(event.text)
                elif isinstance(event, ToolCallEvent):
                    outcome.had_tool_calls = True
                    # The model sees its own turn before the tool feedback.
                    self._conversation.add_assistant_message("".join(narration) + event.to_markup())
                    narration.clear()
                    record = await self._handle_tool_call(event, state)
                    records.append(record)
                    if not record.success:
                        outcome.had_errors = True
                elif isinstance(event, ErrorEvent):
                    outcome.error = event.message
                    break
                elif isinstance(event, DoneEvent):
                    break

        remaining = "".join(narration)
        if outcome.error is None and remaining.strip():
            self._conversation.add_assistant_message(remaining)
        return outcome

    async def _handle_tool_call(self, call: ToolCallEvent, state: TaskState) -> ToolCallRecord:
        repeated = self._recent.contains(call.name, call.args)
        if repeated:
            LOGGER.warning("Repeated tool call detected: %s %r", call.name, call.args[:80])
            self._conversation.add_repetition_warning(call.name, call.args)

        start = time.perf_counter()
        try:
            result = await self._tools.execute(call.name, call.args)
        except ToolExecutionError as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            message = str(exc) or type(exc).__name__
            LOGGER.info("Tool %s failed: %s", call.name, message)
            self._conversation.add_tool_failure(call.name, message)
            record = ToolCallRecord(
                name=call.name,
                arguments=call.args,
                result=message,
                success=False,
                duration_ms=duration_ms,
                repeated=repeated,
                iteration=state.iteration_count,
            )
        else:
            duration_ms = (time.perf_counter() - start) * 1000
            self._conversation.add_tool_result(call.name, result)
            self._recent.record(call.name, call.args)
            state.record_tool_execution()
            record = ToolCallRecord(
                name=call.name,
                arguments=call.args,
                result=result,
                success=True,
                duration_ms=duration_ms,
                repeated=repeated,
                iteration=state.iteration_count,
            )

        await self._notify_tool(record)
        return record

    async def _switch_model(self, phase: TaskPhase) -> None:
        if self._router is None:
            return
        await self._router.switch_for_phase(phase, self._conversation)

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    async def _notify_event(self, event: StreamEvent) -> None:
        if self._event_callback is None:
            return
        try:
            result = self._event_callback(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            LOGGER.debug("Event callback raised exception", exc_info=True)

    async def _notify_tool(self, record: ToolCallRecord) -> None:
        if self._tool_callback is None:
            return
        try:
            result = self._tool_callback(record)
            if inspect.isawaitable(result):
                await result
        except Exception:
            LOGGER.debug("Tool callback raised exception", exc_info=True)
