"""Tests for the prompt templates."""

from __future__ import annotations

from arbiter.ai import prompts
from arbiter.ai.orchestration.stream_parser import parse_response
from arbiter.ai.orchestration.types import ToolCallEvent


def test_system_prompt_uses_default_identity():
    text = prompts.system_prompt()

    assert text.startswith(prompts.DEFAULT_IDENTITY)
    assert "(no tools are available; answer directly)" in text


def test_system_prompt_embeds_catalogue():
    text = prompts.system_prompt("Custom identity.", tool_catalogue="- read_file: Read a file")

    assert text.startswith("Custom identity.")
    assert "## AVAILABLE TOOLS" in text
    assert text.endswith("- read_file: Read a file")


def test_tag_protocol_example_matches_parser_grammar():
    parsed = parse_response(prompts.tag_protocol_section())

    assert parsed.tool_calls == (ToolCallEvent(name="tool_name", args="arguments"),)


def test_feedback_templates_format():
    completed = prompts.TOOL_RESULT_TEMPLATE.format(name="shell_command", result="ok")
    failed = prompts.TOOL_FAILURE_TEMPLATE.format(name="read_file", error="missing")

    assert completed.startswith("TOOL EXECUTION COMPLETED:\nTool: shell_command\nResult:\n```\nok\n```")
    assert failed.startswith("TOOL EXECUTION FAILED:\nTool: read_file\nError: missing")
    assert prompts.CONTEXT_COMPRESSED_TEMPLATE.format(count=4) == (
        "[Context compressed: 4 previous messages summarized for efficiency]"
    )
