"""Shell and git command tools."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shlex
from pathlib import Path

from ..orchestration.tools import ToolCategory
from .base import WorkspaceTool
from .errors import ErrorCode, ToolError

__all__ = [
    "ShellCommandTool",
    "GitCommandTool",
    "CommandOutput",
    "detect_interactive_command",
]

LOGGER = logging.getLogger(__name__)

_INTERACTIVE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern)
    for pattern in (
        r"\b(vim|vi|nano|emacs)\b",
        r"^\s*(bash|zsh|fish|sh)\s*$",
        r"\b(top|htop|less|more|man)\b",
        r"\btail\s+.*-f\b",
        r"\bwatch\b",
        r"\bping\b(?!.*-c\s*\d+)",
        r"\bgit\s+(commit|rebase)\b(?!.*(-m|--message|--continue|--abort))",
        r"\bssh\b(?!.*\s-c\b)",
        r"\bdocker\s+run\b.*\s-i",
    )
)
_COMMAND_ENV = {"TERM": "dumb", "COLUMNS": "120", "LINES": "30", "GIT_PAGER": "cat", "PAGER": "cat"}


def detect_interactive_command(command: str) -> str | None:
    """Return a hint when ``command`` would block waiting on a terminal."""
    if not any(pattern.search(command) for pattern in _INTERACTIVE_PATTERNS):
        return None
    if "tail" in command and "-f" in command:
        return "use `tail -n 20 <file>` for static output instead"
    if "watch" in command:
        return "run the command once instead of watching it"
    if re.search(r"\b(vim|vi|nano|emacs)\b", command):
        return "use read_file to view a file and write_file to change it"
    if "git commit" in command:
        return 'use `git commit -m "message"` for a non-interactive commit'
    return "use a non-interactive alternative"


class CommandOutput:
    """Captured result of a finished subprocess."""

    __slots__ = ("exit_code", "stdout", "stderr")

    def __init__(self, exit_code: int, stdout: str, stderr: str) -> None:
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


async def _run_process(*argv: str, cwd: Path) -> CommandOutput:
    env = dict(os.environ)
    env.update(_COMMAND_ENV)
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd),
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise ToolError(
            error_code=ErrorCode.INVALID_PARAMETER,
            message=f"Executable not found: {argv[0]}",
        ) from exc
    try:
        stdout, stderr = await process.communicate()
    except asyncio.CancelledError:
        # Timeouts cancel us; do not leave the child running.
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise
    return CommandOutput(
        exit_code=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


class ShellCommandTool(WorkspaceTool):
    """Run a command line through the user's shell."""

    name = "shell_command"
    description = "Run a shell command in the project directory (pipes and redirects allowed)"
    usage = "ls -la src"
    category = ToolCategory.SYSTEM
    is_write = True
    required = ("command",)

    def __init__(self, working_directory: Path | str | None = None, *, shell: str | None = None) -> None:
        super().__init__(working_directory)
        self._shell = shell or os.environ.get("SHELL") or "/bin/sh"

    def parse_plain(self, raw: str) -> dict[str, str]:
        return {"command": raw.strip()}

    async def run(self, params: dict[str, str]) -> str:
        command = params["command"].strip()
        if not command:
            raise ToolError(error_code=ErrorCode.MISSING_PARAMETER, message="Empty shell command")
        hint = detect_interactive_command(command)
        if hint is not None:
            LOGGER.info("Refusing interactive command: %s", command)
            return f"Interactive command not supported: '{command[:100]}'\nHint: {hint}"

        LOGGER.info("Executing shell command: %s", command)
        output = await _run_process(self._shell, "-c", command, cwd=self.working_directory)
        return format_command_output("Command", output)


class GitCommandTool(WorkspaceTool):
    """Run ``git`` with the given arguments, without a shell."""

    name = "git_command"
    description = "Run a git subcommand in the project directory"
    usage = "status --short"
    category = ToolCategory.VCS
    is_write = True
    required = ("command",)

    def parse_plain(self, raw: str) -> dict[str, str]:
        return {"command": raw.strip()}

    async def run(self, params: dict[str, str]) -> str:
        command = params["command"].strip()
        if command.startswith("git "):
            command = command[4:]
        try:
            parts = shlex.split(command)
        except ValueError as exc:
            raise ToolError(
                error_code=ErrorCode.INVALID_PARAMETER,
                message=f"Cannot parse git arguments: {exc}",
            ) from exc
        if not parts:
            raise ToolError(error_code=ErrorCode.MISSING_PARAMETER, message="Empty git command")
        hint = detect_interactive_command("git " + command)
        if hint is not None:
            return f"Interactive command not supported: 'git {command[:100]}'\nHint: {hint}"

        LOGGER.info("Executing git command: git %s", command)
        output = await _run_process("git", *parts, cwd=self.working_directory)
        return format_command_output("Git command", output)


def format_command_output(label: str, output: CommandOutput) -> str:
    """Render a subprocess result the way the model is told to expect it."""
    stdout = output.stdout
    stderr = output.stderr
    if output.succeeded:
        if not stdout.strip() and not stderr.strip():
            return f"{label} executed successfully (no output)"
        if not stderr.strip():
            return f"{label} executed successfully:\n{stdout}"
        return f"{label} executed successfully:\nSTDOUT:\n{stdout}\nSTDERR:\n{stderr}"
    return f"{label} failed (exit code {output.exit_code}):\nSTDOUT:\n{stdout}\nSTDERR:\n{stderr}"
