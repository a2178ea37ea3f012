"""Prompt templates for the agent loop.

The tag protocol described here is the grammar the stream parser understands;
keep the two in step.
"""

from __future__ import annotations

DEFAULT_IDENTITY = (
    "You are Arbiter, a pragmatic software engineering agent working inside the "
    "user's project directory. You inspect files, run commands and make focused "
    "changes, then explain what you did."
)

TOOL_RESULT_TEMPLATE = (
    "TOOL EXECUTION COMPLETED:\n"
    "Tool: {name}\n"
    "Result:\n"
    "```\n"
    "{result}\n"
    "```\n"
    "\n"
    "IMPORTANT: Do not repeat this same command. Analyze the result above and "
    "determine the next logical step. If the task is complete, give the final "
    "answer without calling another tool."
)

TOOL_FAILURE_TEMPLATE = (
    "TOOL EXECUTION FAILED:\n"
    "Tool: {name}\n"
    "Error: {error}\n"
    "\n"
    "Work out why the call failed and try a different approach."
)

REPETITION_WARNING_TEMPLATE = (
    "WARNING: You already ran {name} with these exact arguments a moment ago:\n"
    "{args}\n"
    "Repeating it will not produce new information. Use the earlier result, "
    "try a different command, or finish the task."
)

CONTEXT_COMPRESSED_TEMPLATE = "[Context compressed: {count} previous messages summarized for efficiency]"


def tag_protocol_section() -> str:
    return """IMPORTANT: Structure your responses with these tags:
- Wrap your reasoning in <think></think> tags
- Use <tool_call name="tool_name">arguments</tool_call> to use a tool
- Regular text for the user goes outside any tags
- Make only ONE tool call per response, then wait for its result
- Think before using a tool and analyze every result before the next step
- When the task is done, answer without a tool call"""


def tool_catalogue_section(catalogue: str) -> str:
    """Render the tool list; ``catalogue`` comes from ``ToolRegistry.render_catalogue``."""
    if not catalogue.strip():
        return "## AVAILABLE TOOLS\n\n(no tools are available; answer directly)"
    return (
        "## AVAILABLE TOOLS\n\n"
        "Arguments may be a JSON object or the plain-text form shown.\n\n"
        f"{catalogue}"
    )


def system_prompt(identity: str | None = None, *, tool_catalogue: str = "") -> str:
    """Compose the full system prompt from an identity blurb and the tool list."""
    head = (identity or DEFAULT_IDENTITY).strip()
    return f"{head}\n\n{tag_protocol_section()}\n\n{tool_catalogue_section(tool_catalogue)}"
