"""Shared test helpers and stub classes.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Iterable, Mapping, Sequence

from arbiter.ai.client import BackendChunk, GenerationOptions, ModelLoadError, TransportError
from arbiter.ai.orchestration.stream_parser import StreamEventParser
from arbiter.ai.orchestration.tools import ToolExecutionError
from arbiter.ai.orchestration.types import StreamEvent, TextEvent, ThinkPartialEvent, ToolCallEvent

ScriptItem = BackendChunk | BaseException


def reply(*chunks: str) -> list[ScriptItem]:
    """Backend script emitting ``chunks`` followed by the completion marker."""
    return [BackendChunk(chunk) for chunk in chunks] + [BackendChunk("", done=True)]


class ScriptedBackend:
    """Model backend stub that plays back one script per request.

    A script item that is an exception is raised at that point in the stream.
    When the scripts run out, every request answers ``default``.
    """

    def __init__(
        self,
        scripts: Sequence[Sequence[ScriptItem]] | None = None,
        *,
        default: str = "Done.",
        fail_loads: Iterable[str] = (),
    ) -> None:
        self.scripts = [list(script) for script in scripts or []]
        self.default = default
        self.fail_loads = set(fail_loads)
        self.calls: list[dict[str, Any]] = []
        self.loaded: list[str] = []
        self.load_servers: list[str | None] = []
        self.models: dict[str | None, list[str]] = {}
        self.closed = False

    async def stream_chat(
        self,
        messages: Sequence[Mapping[str, str]],
        options: GenerationOptions,
    ) -> AsyncIterator[BackendChunk]:
        self.calls.append({"messages": [dict(message) for message in messages], "options": options})
        script = self.scripts.pop(0) if self.scripts else reply(self.default)
        for item in script:
            if isinstance(item, BaseException):
                raise item
            await asyncio.sleep(0)
            yield item

    async def load_model(self, model: str, *, server: str | None = None) -> None:
        if model in self.fail_loads:
            raise ModelLoadError(model, "pull failed")
        self.loaded.append(model)
        self.load_servers.append(server)

    async def list_models(self, *, server: str | None = None) -> list[str]:
        if server not in self.models:
            raise TransportError(f"{server} unreachable")
        return self.models[server]

    async def aclose(self) -> None:
        self.closed = True


class HangingBackend:
    """Backend that emits one chunk and then never finishes."""

    def __init__(self, first: str = "Working ") -> None:
        self.first = first
        self.cancelled = False
        self.produced = 0

    async def stream_chat(
        self,
        messages: Sequence[Mapping[str, str]],
        options: GenerationOptions,
    ) -> AsyncIterator[BackendChunk]:
        try:
            self.produced += 1
            yield BackendChunk(self.first)
            while True:
                await asyncio.sleep(3600)
        finally:
            self.cancelled = True

    async def load_model(self, model: str, *, server: str | None = None) -> None:
        return None

    async def list_models(self, *, server: str | None = None) -> list[str]:
        return []

    async def aclose(self) -> None:
        return None


class StubToolRunner:
    """Tool runner stub recording calls; ``failures`` maps tool names to error text."""

    def __init__(
        self,
        results: Mapping[str, str] | None = None,
        failures: Mapping[str, str] | None = None,
    ) -> None:
        self.results = dict(results or {})
        self.failures = dict(failures or {})
        self.calls: list[tuple[str, str]] = []

    async def execute(self, name: str, arguments: str) -> str:
        self.calls.append((name, arguments))
        if name in self.failures:
            raise ToolExecutionError(self.failures[name], tool_name=name)
        return self.results.get(name, f"Result for {name}")


def feed(chunks: Iterable[str], parser: StreamEventParser | None = None) -> list[StreamEvent]:
    """Run ``chunks`` through a parser, including ``finalize()``."""
    active = parser or StreamEventParser()
    events: list[StreamEvent] = []
    for chunk in chunks:
        events.extend(active.process_chunk(chunk))
    events.extend(active.finalize())
    return events


def text_of(events: Iterable[StreamEvent]) -> str:
    return "".join(event.text for event in events if isinstance(event, TextEvent))


def thinking_of(events: Iterable[StreamEvent]) -> str:
    return "".join(event.text for event in events if isinstance(event, ThinkPartialEvent))


def tool_calls_of(events: Iterable[StreamEvent]) -> list[ToolCallEvent]:
    return [event for event in events if isinstance(event, ToolCallEvent)]


class FakeClock:
    """Monotonic clock stand-in whose ``sleep`` advances time instantly."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
