"""Tests covering the application bootstrap helpers."""

from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Any, Iterator

import pytest

from arbiter import app
from arbiter.ai.client import TransportError
from arbiter.ai.orchestration import (
    DoneEvent,
    InteractionResult,
    InteractionStatus,
    TaskPhase,
    TextEvent,
    ThinkEndEvent,
    ThinkPartialEvent,
    ThinkStartEvent,
    ToolCallEvent,
    ToolCallRecord,
)
from arbiter.services.settings import ModelProfile, Settings, SettingsStore

from helpers import ScriptedBackend, reply


@pytest.fixture
def quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(app, "configure_logging", lambda debug=False, *, force=False: None)


# -----------------------------------------------------------------------------
# CLI overrides
# -----------------------------------------------------------------------------


def test_coerce_cli_overrides_casts_types() -> None:
    overrides = app._coerce_cli_overrides(
        [
            "base_url=http://gpu-box:11434",
            "debug_logging=true",
            "max_iterations=12",
            "request_timeout=42.25",
            "iteration_timeout=none",
        ]
    )

    assert overrides["base_url"] == "http://gpu-box:11434"
    assert overrides["debug_logging"] is True
    assert overrides["max_iterations"] == 12
    assert overrides["request_timeout"] == pytest.approx(42.25)
    assert overrides["iteration_timeout"] is None


def test_coerce_cli_overrides_handles_model_profiles() -> None:
    overrides = app._coerce_cli_overrides(
        ["reasoning_model=qwen3:14b", 'execution_model={"name": "qwen3:4b", "temperature": 0.0}']
    )

    assert overrides["reasoning_model"] == "qwen3:14b"
    assert overrides["execution_model"] == {"name": "qwen3:4b", "temperature": 0.0}


@pytest.mark.parametrize(
    "entry",
    ["not_a_setting=value", "max_iterations=many", "debug_logging=maybe", "missing-equals", "=1"],
)
def test_coerce_cli_overrides_rejects_bad_entries(entry: str) -> None:
    with pytest.raises(ValueError):
        app._coerce_cli_overrides([entry])


def test_dump_settings_redacts_api_key(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ARBITER_API_KEY", "super-secret")
    settings = Settings(api_key="super-secret", base_url="https://example.com")
    store = SettingsStore(tmp_path / "settings.json")
    buffer = io.StringIO()

    app._dump_settings(settings, store, overrides={"base_url": "https://cli"}, stream=buffer)

    payload = json.loads(buffer.getvalue())
    assert "super-secret" not in buffer.getvalue()
    assert payload["settings"]["api_key"] == "su********et"
    assert payload["settings"]["reasoning_model"]["name"] == "arbiter"
    assert payload["meta"]["path"] == str(tmp_path / "settings.json")
    assert payload["meta"]["cli_overrides"] == ["base_url"]
    assert "ARBITER_API_KEY" in payload["meta"]["environment_variables"]


# -----------------------------------------------------------------------------
# Wiring
# -----------------------------------------------------------------------------


def test_build_orchestrator_uses_settings(tmp_path: Path) -> None:
    settings = Settings(
        max_iterations=4,
        iteration_timeout=30.0,
        system_prompt="You are a careful reviewer.",
        working_directory=str(tmp_path),
        reasoning_model=ModelProfile("planner", temperature=0.6),
    )

    orchestrator = app.build_orchestrator(settings, backend=ScriptedBackend())

    assert orchestrator.config.max_iterations == 4
    assert orchestrator.config.iteration_timeout == 30.0
    conversation = orchestrator.conversation
    assert conversation.model == "planner"
    assert conversation.options.temperature == 0.6
    assert conversation.options.context_size == settings.context_size
    system = conversation.history[0].content
    assert system.startswith("You are a careful reviewer.")
    for name in ("shell_command", "write_file", "read_file", "git_command"):
        assert f"- {name}:" in system


@pytest.mark.asyncio
async def test_built_orchestrator_runs_tools_in_working_directory(tmp_path: Path) -> None:
    backend = ScriptedBackend([
        reply('<tool_call name="write_file">notes.txt\nremember the milk</tool_call>'),
        reply("Saved your note."),
    ])
    orchestrator = app.build_orchestrator(Settings(working_directory=str(tmp_path)), backend=backend)

    result = await orchestrator.process_prompt("please create a note")

    assert result.status is InteractionStatus.EXHAUSTED
    assert (tmp_path / "notes.txt").read_text(encoding="utf-8") == "remember the milk"
    assert result.tool_calls[0].result == "Successfully wrote 17 bytes to notes.txt"


@pytest.mark.asyncio
async def test_build_orchestrator_routes_phases_to_profile_servers(tmp_path: Path) -> None:
    backend = ScriptedBackend([reply('<tool_call name="shell_command">ls</tool_call>'), reply("Done.")])
    settings = Settings(
        working_directory=str(tmp_path),
        model_switch_cooldown=0.0,
        reasoning_model=ModelProfile("arbiter", server="http://mini-1:11434"),
        execution_model=ModelProfile("winchester", server="http://mini-2:11434"),
    )
    orchestrator = app.build_orchestrator(settings, backend=backend)

    await orchestrator.process_prompt("please refactor the parser")

    assert [(call["options"].model, call["options"].server) for call in backend.calls] == [
        ("arbiter", "http://mini-1:11434"),
        ("winchester", "http://mini-2:11434"),
    ]
    assert backend.load_servers[0] == "http://mini-2:11434"


# -----------------------------------------------------------------------------
# Rendering
# -----------------------------------------------------------------------------


def _render(events: list[Any], **kwargs: Any) -> str:
    buffer = io.StringIO()
    renderer = app.ConsoleRenderer(buffer, color=False, **kwargs)
    for event in events:
        renderer.on_event(event)
    return buffer.getvalue()


EVENTS = [
    ThinkStartEvent(),
    ThinkPartialEvent("hm"),
    ThinkEndEvent(),
    TextEvent("Hi"),
    ToolCallEvent(name="read_file", args="a.py\nmore"),
    DoneEvent(),
]


def test_console_renderer_writes_events() -> None:
    assert _render(EVENTS) == "thinking: hm\nHi\n> read_file a.py\n\n"


def test_console_renderer_can_hide_thinking() -> None:
    assert _render(EVENTS, show_thinking=False) == "Hi\n> read_file a.py\n\n"


def test_console_renderer_previews_tool_output() -> None:
    buffer = io.StringIO()
    renderer = app.ConsoleRenderer(buffer, color=False)
    record = ToolCallRecord(name="shell_command", arguments="ls", result="a\nb\nc\nd\ne", duration_ms=12.4)

    renderer.on_tool_result(record)

    assert buffer.getvalue().splitlines() == [
        "  [shell_command ok, 12ms]",
        "  a",
        "  b",
        "  c",
        "  ... (2 more lines)",
    ]


def test_console_renderer_reports_abnormal_endings() -> None:
    buffer = io.StringIO()
    renderer = app.ConsoleRenderer(buffer, color=True)

    renderer.on_result(InteractionResult(InteractionStatus.ITERATION_LIMIT, 10, 3, TaskPhase.EVALUATION))
    renderer.on_result(
        InteractionResult(InteractionStatus.TRANSPORT_ERROR, 1, 0, TaskPhase.PLANNING, error="refused")
    )
    renderer.on_result(InteractionResult(InteractionStatus.EXHAUSTED, 1, 0, TaskPhase.COMPLETION))

    output = buffer.getvalue()
    assert "Stopped after 10 iterations" in output
    assert "Model backend error: refused" in output
    assert "\x1b[31m" in output
    assert output.count("\n") == 2


# -----------------------------------------------------------------------------
# Sessions and main()
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_run_session_interactive_loop(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    lines: Iterator[str] = iter(["", "hello", "quit", "never reached"])
    monkeypatch.setattr("builtins.input", lambda prompt="": next(lines))
    backend = ScriptedBackend([reply("Hi."), reply("Hello again.")])
    orchestrator = app.build_orchestrator(Settings(working_directory=str(tmp_path)), backend=backend)
    renderer = app.ConsoleRenderer(io.StringIO(), color=False)

    code = await app.run_session(orchestrator, ["first"], renderer, interactive=True)

    assert code == 0
    assert len(backend.calls) == 2
    assert backend.calls[1]["messages"][-1] == {"role": "user", "content": "hello"}


@pytest.mark.asyncio
async def test_run_session_stops_on_eof_and_reports_failure(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    def _eof(prompt: str = "") -> str:
        raise EOFError

    monkeypatch.setattr("builtins.input", _eof)
    backend = ScriptedBackend([[TransportError("down")]])
    orchestrator = app.build_orchestrator(Settings(working_directory=str(tmp_path)), backend=backend)
    renderer = app.ConsoleRenderer(io.StringIO(), color=False)

    assert await app.run_session(orchestrator, ["first"], renderer, interactive=True) == 1


def test_main_dump_settings(quiet_logging: None, settings_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = app.main(["--settings-path", str(settings_path), "--set", "max_iterations=6", "--dump-settings"])

    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert payload["settings"]["max_iterations"] == 6
    assert payload["meta"]["cli_overrides"] == ["max_iterations"]


def test_main_rejects_bad_override(quiet_logging: None, settings_path: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        app.main(["--settings-path", str(settings_path), "--set", "max_iterations=lots", "--dump-settings"])

    assert excinfo.value.code == 2


def test_main_runs_single_prompt(
    quiet_logging: None,
    monkeypatch: pytest.MonkeyPatch,
    settings_path: Path,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    backend = ScriptedBackend([reply("All set.")])
    monkeypatch.setattr(app, "create_backend", lambda provider, settings: backend)

    code = app.main(
        ["--settings", str(settings_path), "--set", f"working_directory={tmp_path}", "hello", "there"]
    )

    assert code == 0
    assert "All set." in capsys.readouterr().out
    assert backend.calls[0]["messages"][-1] == {"role": "user", "content": "hello there"}
    assert backend.closed is True


@pytest.mark.asyncio
async def test_list_models_prints_each_configured_server() -> None:
    backend = ScriptedBackend()
    backend.models = {None: ["arbiter:latest"], "http://mini-2:11434": ["winchester:latest"]}
    settings = Settings(execution_model=ModelProfile("winchester", server="http://mini-2:11434"))
    out = io.StringIO()

    code = await app.list_models(settings, backend=backend, stream=out)

    assert code == 0
    assert out.getvalue() == (
        "http://localhost:11434:\n  arbiter:latest\nhttp://mini-2:11434:\n  winchester:latest\n"
    )
    assert backend.closed is True


@pytest.mark.asyncio
async def test_list_models_reports_unreachable_servers(capsys: pytest.CaptureFixture[str]) -> None:
    backend = ScriptedBackend()
    out = io.StringIO()

    code = await app.list_models(Settings(), backend=backend, stream=out)

    assert code == 1
    assert out.getvalue() == ""
    assert "unavailable" in capsys.readouterr().err


def test_main_list_models(
    quiet_logging: None,
    monkeypatch: pytest.MonkeyPatch,
    settings_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    backend = ScriptedBackend()
    backend.models = {None: ["arbiter:latest", "dragoon:latest"]}
    monkeypatch.setattr(app, "create_backend", lambda provider, settings: backend)

    code = app.main(["--settings", str(settings_path), "--list-models"])

    assert code == 0
    assert "  dragoon:latest" in capsys.readouterr().out
    assert backend.calls == []
