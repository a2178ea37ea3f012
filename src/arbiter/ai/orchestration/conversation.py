"""Conversation history and streamed generation.

:class:`ConversationManager` owns the ordered message history. Each call to
:meth:`ConversationManager.generate_stream` starts a producer task that reads
the model backend, runs every fragment through a fresh
:class:`StreamEventParser` and publishes the resulting events on a bounded
:class:`EventStream`. Closing the stream cancels the producer, which in turn
closes the backend request.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, replace
from typing import Any, AsyncIterator, Sequence

from ...services.settings import ModelProfile
from ..client import ApproxByteCounter, GenerationOptions, ModelBackend, TransportError
from ..prompts import (
    CONTEXT_COMPRESSED_TEMPLATE,
    REPETITION_WARNING_TEMPLATE,
    TOOL_FAILURE_TEMPLATE,
    TOOL_RESULT_TEMPLATE,
    system_prompt,
)
from .stream_parser import StreamEventParser
from .types import DoneEvent, ErrorEvent, Message, StreamEvent

__all__ = [
    "ConversationConfig",
    "ConversationManager",
    "EventStream",
]

LOGGER = logging.getLogger(__name__)

_END = object()


@dataclass(slots=True, frozen=True)
class ConversationConfig:
    """Tuning knobs for the conversation manager.

    Attributes:
        channel_capacity: Maximum number of undelivered events per stream.
        compression_threshold: Estimated token count above which history is
            compressed before a request; None disables compression.
        keep_recent: Non-system messages kept verbatim by compression.
    """

    channel_capacity: int = 100
    compression_threshold: int | None = 6_000
    keep_recent: int = 3


# -----------------------------------------------------------------------------
# Event stream
# -----------------------------------------------------------------------------


class EventStream:
    """Bounded async stream of :data:`StreamEvent` values.

    Iterate it with ``async for``. Leaving an ``async with`` block, calling
    :meth:`aclose` or abandoning an ``async for`` loop early (``break``)
    stops the producer even if events are still pending. An abandoned loop is
    closed by the event loop's async-generator finalizer, so the producer
    stops on the next loop tick rather than immediately.
    """

    def __init__(self, capacity: int = 100) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max(1, capacity))
        self._closed = False
        self._exhausted = False
        self._task: asyncio.Task[None] | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def _attach(self, task: asyncio.Task[None]) -> None:
        self._task = task

    async def send(self, event: StreamEvent) -> bool:
        """Queue ``event``; returns False once the consumer has closed the stream."""
        if self._closed:
            return False
        await self._queue.put(event)
        return True

    async def _finish(self) -> None:
        if not self._closed:
            await self._queue.put(_END)

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamEvent]:
        try:
            while True:
                try:
                    event = await self.__anext__()
                except StopAsyncIteration:
                    return
                yield event
        finally:
            await self.aclose()

    async def __anext__(self) -> StreamEvent:
        if self._exhausted or (self._closed and self._queue.empty()):
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END:
            self._exhausted = True
            raise StopAsyncIteration
        return item

    async def aclose(self) -> None:
        """Stop the producer and discard undelivered events."""
        self._closed = True
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def __aenter__(self) -> EventStream:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


# -----------------------------------------------------------------------------
# Conversation manager
# -----------------------------------------------------------------------------


class ConversationManager:
    """Owns message history and turns backend output into events.

    Example:
        manager = ConversationManager(backend, GenerationOptions(model="qwen3:8b"))
        manager.add_system_message("You are helpful.")
        async with manager.generate_stream("list the files") as events:
            async for event in events:
                ...
    """

    def __init__(
        self,
        backend: ModelBackend,
        options: GenerationOptions,
        *,
        config: ConversationConfig | None = None,
    ) -> None:
        self._backend = backend
        self._options = options
        self._config = config or ConversationConfig()
        self._history: list[Message] = []
        self._counter = ApproxByteCounter()

    @property
    def backend(self) -> ModelBackend:
        return self._backend

    @property
    def options(self) -> GenerationOptions:
        return self._options

    @property
    def config(self) -> ConversationConfig:
        return self._config

    @property
    def history(self) -> tuple[Message, ...]:
        return tuple(self._history)

    @property
    def model(self) -> str:
        return self._options.model

    @property
    def server(self) -> str | None:
        return self._options.server

    def use_model(self, model: str, *, temperature: float | None = None) -> None:
        """Route subsequent requests to ``model``."""
        updates: dict[str, Any] = {"model": model}
        if temperature is not None:
            updates["temperature"] = temperature
        self._options = replace(self._options, **updates)

    def use_profile(self, profile: ModelProfile) -> None:
        """Route subsequent requests to the profile's model, server and temperature."""
        self._options = replace(
            self._options,
            model=profile.name,
            temperature=profile.temperature,
            server=profile.server,
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def add_system_message(self, content: str, *, tool_catalogue: str = "") -> None:
        """Append the system prompt, wrapped with the tag protocol instructions."""
        self._history.append(Message.system(system_prompt(content, tool_catalogue=tool_catalogue)))

    def add_user_message(self, content: str) -> None:
        self._history.append(Message.user(content))

    def add_assistant_message(self, content: str) -> None:
        self._history.append(Message.assistant(content))

    def add_tool_result(self, tool_name: str, result: str) -> None:
        """Feed a tool's output back to the model (as a user turn)."""
        self._history.append(Message.user(TOOL_RESULT_TEMPLATE.format(name=tool_name, result=result)))

    def add_tool_failure(self, tool_name: str, error: str) -> None:
        self._history.append(Message.user(TOOL_FAILURE_TEMPLATE.format(name=tool_name, error=error)))

    def add_repetition_warning(self, tool_name: str, args: str) -> None:
        self._history.append(Message.user(REPETITION_WARNING_TEMPLATE.format(name=tool_name, args=args)))

    def clear(self, *, keep_system: bool = True) -> None:
        if keep_system:
            self._history = [message for message in self._history if message.role == "system"][:1]
        else:
            self._history = []

    def estimate_tokens(self) -> int:
        return sum(self._counter.count(message.content) for message in self._history)

    def compress_context(self) -> bool:
        """Replace older history with a marker, keeping the system prompt and recent turns.

        Returns:
            True if the history was compressed.
        """
        if len(self._history) <= 4:
            return False
        system = next((message for message in self._history if message.role == "system"), None)
        others = [message for message in self._history if message.role != "system"]
        keep = others[-self._config.keep_recent:] if self._config.keep_recent > 0 else []
        dropped = len(self._history) - len(keep) - (1 if system is not None else 0)
        if dropped <= 0:
            return False

        compressed: list[Message] = [system] if system is not None else []
        compressed.append(Message.system(CONTEXT_COMPRESSED_TEMPLATE.format(count=dropped)))
        compressed.extend(keep)
        self._history = compressed
        LOGGER.info("Compressed conversation context: %d message(s) summarized", dropped)
        return True

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate_stream(self, user_input: str = "") -> EventStream:
        """Start a generation and return its event stream.

        Args:
            user_input: Appended as a user message first, unless empty.

        Returns:
            A stream yielding parser events, terminated by exactly one
            :class:`DoneEvent` or :class:`ErrorEvent`.
        """
        if user_input.strip():
            self.add_user_message(user_input)

        threshold = self._config.compression_threshold
        if threshold is not None and self.estimate_tokens() > threshold:
            self.compress_context()

        messages = [message.to_chat_param() for message in self._history]
        stream = EventStream(self._config.channel_capacity)
        task = asyncio.create_task(self._produce(stream, messages, self._options))
        stream._attach(task)
        return stream

    async def _produce(
        self,
        stream: EventStream,
        messages: Sequence[dict[str, str]],
        options: GenerationOptions,
    ) -> None:
        parser = StreamEventParser()
        received = False
        try:
            async with contextlib.aclosing(self._backend.stream_chat(messages, options)) as chunks:
                async for chunk in chunks:
                    if stream.closed:
                        return
                    received = True
                    for event in parser.process_chunk(chunk.content):
                        if not await stream.send(event):
                            return
                    if chunk.done:
                        for event in parser.finalize():
                            if not await stream.send(event):
                                return
                        await stream.send(DoneEvent())
                        return
            LOGGER.warning("Backend stream for %s ended without a completion marker", options.model)
            await stream.send(ErrorEvent("Model stream ended before completion"))
        except TransportError as exc:
            LOGGER.warning(
                "Generation via %s failed %s: %s",
                options.model,
                "mid-stream" if received else "before any data",
                exc,
            )
            await stream.send(ErrorEvent(str(exc)))
        except asyncio.CancelledError:
            LOGGER.debug("Generation via %s cancelled by consumer", options.model)
            raise
        except Exception as exc:
            LOGGER.exception("Unexpected failure while streaming from %s", options.model)
            await stream.send(ErrorEvent(f"Unexpected error: {exc}"))
        finally:
            if not stream.closed:
                await stream._finish()
