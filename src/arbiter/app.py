"""Command-line entry point for the Arbiter agent."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.client import ClientSettings, GenerationOptions, ModelBackend, TransportError, create_backend
from .ai.orchestration import (
    ConversationConfig,
    ConversationManager,
    DoneEvent,
    ErrorEvent,
    InteractionResult,
    InteractionStatus,
    ModelRole,
    ModelRouter,
    OrchestratorConfig,
    StreamEvent,
    TaskOrchestrator,
    TextEvent,
    ThinkEndEvent,
    ThinkPartialEvent,
    ThinkStartEvent,
    ToolCallEvent,
    ToolCallRecord,
)
from .ai.orchestration.tools import ExecutorConfig, ToolExecutor, ToolRegistry
from .ai.tools import register_builtin_tools
from .services.settings import Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)
_EXIT_COMMANDS = {"exit", "quit", ":q"}
_DIM = "\x1b[2m"
_BOLD = "\x1b[1m"
_RED = "\x1b[31m"
_RESET = "\x1b[0m"
_TOOL_PREVIEW_LINES = 3


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure logging for the CLI."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except OSError as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def build_client_settings(settings: Settings) -> ClientSettings:
    return ClientSettings(
        base_url=settings.base_url,
        api_key=settings.api_key,
        request_timeout=settings.request_timeout,
        max_retries=settings.max_retries,
        retry_min_seconds=settings.retry_min_seconds,
        retry_max_seconds=settings.retry_max_seconds,
        debug_logging=settings.debug_logging,
    )


def build_orchestrator(
    settings: Settings,
    *,
    backend: ModelBackend | None = None,
    registry: ToolRegistry | None = None,
    event_callback: Any = None,
    tool_callback: Any = None,
) -> TaskOrchestrator:
    """Wire backend, conversation, tools and router from ``settings``."""

    active_backend = backend or create_backend(settings.provider, build_client_settings(settings))
    tool_registry = registry
    if tool_registry is None:
        tool_registry = ToolRegistry()
        register_builtin_tools(tool_registry, settings.working_directory)

    options = GenerationOptions(
        model=settings.reasoning_model.name,
        temperature=settings.reasoning_model.temperature,
        context_size=settings.context_size,
        max_tokens=settings.max_tokens,
        server=settings.reasoning_model.server,
    )
    conversation = ConversationManager(
        active_backend,
        options,
        config=ConversationConfig(
            channel_capacity=settings.channel_capacity,
            compression_threshold=settings.context_compression_threshold,
        ),
    )
    conversation.add_system_message(
        settings.system_prompt or "",
        tool_catalogue=tool_registry.render_catalogue(),
    )
    router = ModelRouter(
        {
            ModelRole.REASONING: settings.reasoning_model,
            ModelRole.EXECUTION: settings.execution_model,
        },
        cooldown=settings.model_switch_cooldown,
    )
    executor = ToolExecutor(
        tool_registry,
        ExecutorConfig(default_timeout=settings.tool_timeout, log_arguments=settings.debug_logging),
    )
    return TaskOrchestrator(
        conversation,
        executor,
        config=OrchestratorConfig(
            max_iterations=settings.max_iterations,
            iteration_timeout=settings.iteration_timeout,
        ),
        router=router,
        event_callback=event_callback,
        tool_callback=tool_callback,
    )


class ConsoleRenderer:
    """Render stream events and tool results to a terminal."""

    def __init__(self, stream: TextIO | None = None, *, show_thinking: bool = True, color: bool | None = None) -> None:
        self._stream = stream or sys.stdout
        self._show_thinking = show_thinking
        self._color = self._stream.isatty() if color is None else color

    def on_event(self, event: StreamEvent) -> None:
        if isinstance(event, TextEvent):
            self._write(event.text)
        elif isinstance(event, ThinkStartEvent):
            if self._show_thinking:
                self._write(self._style("thinking: ", _DIM))
        elif isinstance(event, ThinkPartialEvent):
            if self._show_thinking:
                self._write(self._style(event.text, _DIM))
        elif isinstance(event, ThinkEndEvent):
            if self._show_thinking:
                self._write("\n")
        elif isinstance(event, ToolCallEvent):
            summary = event.args.strip().splitlines()[0][:80] if event.args.strip() else ""
            self._write("\n" + self._style(f"> {event.name} {summary}", _BOLD) + "\n")
        elif isinstance(event, ErrorEvent):
            self._write("\n" + self._style(f"error: {event.message}", _RED) + "\n")
        elif isinstance(event, DoneEvent):
            self._write("\n")
        self._stream.flush()

    def on_tool_result(self, record: ToolCallRecord) -> None:
        lines = record.result.splitlines()
        preview = lines[:_TOOL_PREVIEW_LINES]
        if len(lines) > _TOOL_PREVIEW_LINES:
            preview.append(f"... ({len(lines) - _TOOL_PREVIEW_LINES} more lines)")
        marker = "ok" if record.success else "failed"
        self._write(self._style(f"  [{record.name} {marker}, {record.duration_ms:.0f}ms]", _DIM) + "\n")
        for line in preview:
            self._write(self._style(f"  {line}", _DIM) + "\n")
        self._stream.flush()

    def on_result(self, result: InteractionResult) -> None:
        if result.status is InteractionStatus.ITERATION_LIMIT:
            self._write(self._style(f"Stopped after {result.iterations} iterations (limit reached).", _RED) + "\n")
        elif result.status is InteractionStatus.TRANSPORT_ERROR:
            self._write(self._style(f"Model backend error: {result.error}", _RED) + "\n")
        self._stream.flush()

    def _write(self, text: str) -> None:
        self._stream.write(text)

    def _style(self, text: str, code: str) -> str:
        if not self._color:
            return text
        return f"{code}{text}{_RESET}"


async def run_session(
    orchestrator: TaskOrchestrator,
    prompts: Sequence[str],
    renderer: ConsoleRenderer,
    *,
    interactive: bool = False,
) -> int:
    """Run the given prompts, then keep reading prompts when ``interactive``."""

    exit_code = 0
    for prompt in prompts:
        result = await orchestrator.process_prompt(prompt)
        renderer.on_result(result)
        if not result.success:
            exit_code = 1

    while interactive:
        try:
            line = await asyncio.to_thread(input, "arbiter> ")
        except EOFError:
            break
        prompt = line.strip()
        if not prompt:
            continue
        if prompt.lower() in _EXIT_COMMANDS:
            break
        result = await orchestrator.process_prompt(prompt)
        renderer.on_result(result)
        exit_code = 0 if result.success else 1
    return exit_code


async def _run(settings: Settings, prompts: Sequence[str], *, interactive: bool, show_thinking: bool) -> int:
    renderer = ConsoleRenderer(show_thinking=show_thinking)
    orchestrator = build_orchestrator(
        settings,
        event_callback=renderer.on_event,
        tool_callback=renderer.on_tool_result,
    )
    try:
        return await run_session(orchestrator, prompts, renderer, interactive=interactive)
    finally:
        await orchestrator.conversation.backend.aclose()


async def list_models(settings: Settings, *, backend: ModelBackend | None = None, stream: TextIO | None = None) -> int:
    """Print the models available on every configured server."""

    destination = stream or sys.stdout
    active_backend = backend or create_backend(settings.provider, build_client_settings(settings))
    servers: list[str | None] = []
    for profile in (settings.reasoning_model, settings.execution_model):
        if profile.server not in servers:
            servers.append(profile.server)
    exit_code = 0
    try:
        for server in servers:
            label = server or settings.base_url
            try:
                names = await active_backend.list_models(server=server)
            except TransportError as exc:
                print(f"{label}: unavailable ({exc})", file=sys.stderr)
                exit_code = 1
                continue
            destination.write(f"{label}:\n")
            for name in names:
                destination.write(f"  {name}\n")
    finally:
        await active_backend.aclose()
    return exit_code


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `arbiter` console script."""

    args = _parse_cli_args(argv)
    debug = args.debug or _env_flag("ARBITER_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("ARBITER_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return 0

    if args.list_models:
        return asyncio.run(list_models(settings))

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    prompt = " ".join(args.prompt).strip()
    prompts = [prompt] if prompt else []
    interactive = not prompts or args.interactive
    try:
        return asyncio.run(
            _run(settings, prompts, interactive=interactive, show_thinking=not args.hide_thinking)
        )
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")
        return 130


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="arbiter",
        description="Run the Arbiter coding agent against a local or OpenAI-compatible model server.",
    )
    parser.add_argument(
        "prompt",
        nargs="*",
        help="Request to run; omit to start an interactive session.",
    )
    parser.add_argument(
        "-i",
        "--interactive",
        action="store_true",
        help="Keep prompting after the initial request completes.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings",
        "--settings-path",
        dest="settings_path",
        metavar="PATH",
        help="Override the default ~/.arbiter/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument(
        "--list-models",
        action="store_true",
        help="List the models available on the configured servers and exit.",
    )
    parser.add_argument(
        "--hide-thinking",
        action="store_true",
        help="Do not print the model's <think> output.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    normalized = raw_value.strip()
    if normalized.lower() in {"none", "null"} and type(None) in get_args(annotation):
        return None
    target = _resolve_annotation(annotation)

    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if is_dataclass(target):
        if not normalized.startswith("{"):
            # A bare model name updates just the profile's name.
            return normalized
        try:
            return json.loads(normalized)
        except json.JSONDecodeError as exc:
            raise ValueError("Profile overrides must be a model name or a JSON object") from exc
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_key"] = redact_secret(settings.api_key)
    metadata = {
        "path": str(store.path),
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("ARBITER_"))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
