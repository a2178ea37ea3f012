"""Phase transitions and per-phase model routing."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from enum import Enum
from typing import Awaitable, Callable, Mapping

from ...services.settings import ModelProfile
from ..client import ModelLoadError
from .conversation import ConversationManager
from .types import TaskPhase

__all__ = [
    "ModelRole",
    "ModelRouter",
    "classify_request_complexity",
    "determine_next_phase",
    "preferred_role",
]

LOGGER = logging.getLogger(__name__)

_DIRECT_EXECUTION_PATTERNS = (
    "ls", "pwd", "cat", "echo", "git status", "git log",
    "read file", "show me", "what is in", "list",
)
_PLANNING_PATTERNS = (
    "create", "build", "implement", "design", "refactor", "optimize",
    "how do i", "help me", "i need to", "can you", "debug", "fix",
    "analyze", "review", "improve", "add feature", "modify",
)


def _compile(patterns: tuple[str, ...]) -> re.Pattern[str]:
    return re.compile(r"\b(?:" + "|".join(re.escape(item) for item in patterns) + r")\b")


_DIRECT_EXECUTION_RE = _compile(_DIRECT_EXECUTION_PATTERNS)
_PLANNING_RE = _compile(_PLANNING_PATTERNS)


def determine_next_phase(
    phase: TaskPhase,
    *,
    had_tool_calls: bool,
    had_errors: bool,
) -> TaskPhase:
    """Return the phase that follows an iteration.

    Total over every phase and flag combination; Completion maps to itself.
    """
    if phase is TaskPhase.PLANNING:
        return TaskPhase.EXECUTION if had_tool_calls else TaskPhase.COMPLETION
    if phase is TaskPhase.EXECUTION:
        if had_errors or had_tool_calls:
            return TaskPhase.EVALUATION
        return TaskPhase.COMPLETION
    if phase is TaskPhase.EVALUATION:
        return TaskPhase.PLANNING if had_errors else TaskPhase.COMPLETION
    return TaskPhase.COMPLETION


def classify_request_complexity(prompt: str) -> TaskPhase:
    """Pick the starting phase for a request.

    Short lookups ("list the files", "git status") go straight to Execution;
    everything else starts in Planning.
    """
    text = prompt.lower()
    if _DIRECT_EXECUTION_RE.search(text):
        return TaskPhase.EXECUTION
    if _PLANNING_RE.search(text):
        return TaskPhase.PLANNING
    return TaskPhase.PLANNING


class ModelRole(str, Enum):
    REASONING = "reasoning"
    EXECUTION = "execution"


def preferred_role(phase: TaskPhase) -> ModelRole:
    if phase is TaskPhase.EXECUTION:
        return ModelRole.EXECUTION
    return ModelRole.REASONING


class ModelRouter:
    """Switch the conversation's model to match the current phase.

    Switching is skipped when the target is already active or disabled. A
    switch requested while the last one is younger than ``cooldown`` seconds
    waits out the rest of the cooldown first.

    Example:
        router = ModelRouter({ModelRole.REASONING: reasoning, ModelRole.EXECUTION: execution})
        await router.switch_for_phase(TaskPhase.EXECUTION, manager)
    """

    def __init__(
        self,
        profiles: Mapping[ModelRole, ModelProfile],
        *,
        cooldown: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        missing = [role.value for role in ModelRole if role not in profiles]
        if missing:
            raise ValueError(f"Missing model profile(s): {', '.join(missing)}")
        self._profiles = dict(profiles)
        self._cooldown = max(0.0, cooldown)
        self._clock = clock
        self._sleep = sleep
        self._current: ModelProfile | None = None
        self._last_switch: float | None = None
        self._switch_count = 0

    @property
    def current(self) -> ModelProfile | None:
        return self._current

    @property
    def switch_count(self) -> int:
        return self._switch_count

    def profile_for(self, phase: TaskPhase) -> ModelProfile:
        return self._profiles[preferred_role(phase)]

    async def switch_for_phase(self, phase: TaskPhase, manager: ConversationManager) -> bool:
        """Make ``manager`` use the model for ``phase``.

        Returns:
            True if the active model changed.
        """
        target = self.profile_for(phase)
        if self._current is None and (manager.model, manager.server) == _endpoint_of(target):
            self._current = target
            manager.use_profile(target)
            return False
        if self._current is not None and _endpoint_of(self._current) == _endpoint_of(target):
            return False
        if not target.enabled:
            LOGGER.warning("Model %s is disabled; staying with %s", target.name, manager.model)
            return False

        if self._last_switch is not None:
            remaining = self._cooldown - (self._clock() - self._last_switch)
            if remaining > 0:
                LOGGER.debug("Model switch to %s deferred %.2fs (cooldown)", target.name, remaining)
                await self._sleep(remaining)

        try:
            await manager.backend.load_model(target.name, server=target.server)
        except ModelLoadError as exc:
            LOGGER.warning("%s; staying with %s", exc, manager.model)
            return False

        LOGGER.info(
            "Switching model %s (%s) -> %s (%s) for %s phase",
            manager.model,
            manager.server or "default server",
            target.name,
            target.server or "default server",
            phase.value,
        )
        manager.use_profile(target)
        self._current = target
        self._last_switch = self._clock()
        self._switch_count += 1
        return True


def _endpoint_of(profile: ModelProfile) -> tuple[str, str | None]:
    return profile.name, profile.server
