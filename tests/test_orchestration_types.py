"""Tests for orchestration/types.py."""

from __future__ import annotations

import dataclasses

import pytest

from arbiter.ai.orchestration.types import (
    InteractionResult,
    InteractionStatus,
    Message,
    RecentCommandLog,
    TaskPhase,
    TaskState,
    ToolCallEvent,
    ToolCallRecord,
)


class TestMessage:
    def test_factories_and_chat_param(self):
        assert Message.system("s").to_chat_param() == {"role": "system", "content": "s"}
        assert Message.user("u").role == "user"
        assert Message.assistant("a").role == "assistant"

    def test_is_immutable(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            Message.user("x").content = "y"  # type: ignore[misc]


class TestTaskState:
    def test_defaults(self):
        state = TaskState()

        assert state.phase is TaskPhase.PLANNING
        assert state.iteration_count == 0
        assert state.max_iterations == 10
        assert state.should_continue()

    def test_iteration_cap(self):
        state = TaskState(max_iterations=2)
        state.advance_iteration()
        assert state.should_continue()
        state.advance_iteration()
        assert not state.should_continue()

    def test_change_phase_reports_changes(self):
        state = TaskState()
        before = state.last_phase_change_time

        assert state.change_phase(TaskPhase.EXECUTION) is True
        assert state.change_phase(TaskPhase.EXECUTION) is False
        assert state.phase is TaskPhase.EXECUTION
        assert state.last_phase_change_time >= before

    def test_tool_counters(self):
        state = TaskState()
        state.advance_iteration()
        state.record_tool_execution()
        state.record_tool_execution()
        state.advance_iteration()
        state.record_tool_execution()

        assert state.tools_executed_this_iteration == 1
        assert state.total_tools_executed == 3

    def test_only_completion_is_terminal(self):
        assert [phase for phase in TaskPhase if phase.is_terminal] == [TaskPhase.COMPLETION]


class TestRecentCommandLog:
    def test_exact_match_only(self):
        log = RecentCommandLog()
        log.record("shell_command", "ls")

        assert log.contains("shell_command", "ls")
        assert not log.contains("shell_command", "ls ")
        assert not log.contains("git_command", "ls")

    def test_oldest_entries_are_evicted(self):
        log = RecentCommandLog(capacity=2)
        for args in ("a", "b", "c"):
            log.record("t", args)

        assert log.entries() == [("t", "b"), ("t", "c")]
        assert len(log) == 2
        assert log.capacity == 2

    def test_clear(self):
        log = RecentCommandLog()
        log.record("t", "a")
        log.clear()

        assert len(log) == 0

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            RecentCommandLog(capacity=0)


def test_tool_call_markup_roundtrips_tag_form():
    assert ToolCallEvent(name="ls", args=" -la").to_markup() == '<tool_call name="ls"> -la</tool_call>'


def test_tool_call_record_to_dict():
    record = ToolCallRecord(name="read_file", arguments="a.py", result="x", success=False, iteration=2)

    assert record.to_dict() == {
        "name": "read_file",
        "arguments": "a.py",
        "result": "x",
        "success": False,
        "duration_ms": 0.0,
        "repeated": False,
        "iteration": 2,
    }


@pytest.mark.parametrize(
    ("status", "success"),
    [
        (InteractionStatus.COMPLETED, True),
        (InteractionStatus.EXHAUSTED, True),
        (InteractionStatus.ITERATION_LIMIT, False),
        (InteractionStatus.TRANSPORT_ERROR, False),
    ],
)
def test_interaction_result_success(status, success):
    assert InteractionResult(status, 1, 0, TaskPhase.COMPLETION).success is success
