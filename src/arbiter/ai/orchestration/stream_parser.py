"""Incremental parser for tagged model output.

Models are prompted to wrap reasoning in ``<think>...</think>`` and tool
invocations in ``<tool_call name="...">...</tool_call>``. Responses arrive as
arbitrarily split fragments, so the parser is a single-pass state machine over
code points: feeding the same text in any chunking yields the same sequence of
text/thinking characters and the same tool calls.

Anything that does not form a recognised tag is passed through as literal
text. Carriage returns inside ``<think>`` blocks are dropped. The parser never
raises on model output.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from .types import (
    StreamEvent,
    TextEvent,
    ThinkEndEvent,
    ThinkPartialEvent,
    ThinkStartEvent,
    ToolCallEvent,
)

__all__ = [
    "ParserState",
    "StreamEventParser",
    "ParsedResponse",
    "collect_events",
    "parse_response",
    "MAX_TAG_LENGTH",
]

LOGGER = logging.getLogger(__name__)

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"
TOOL_CALL_OPEN = "<tool_call"
TOOL_CALL_CLOSE = "</tool_call>"
MAX_TAG_LENGTH = 50

_TOOL_NAME_PATTERN = re.compile(r'name="([^"]+)"')
_FLUSH_TRIGGERS = frozenset(" \t\n.!?,;:")
_MIN_FLUSH_LENGTH = 3


class ParserState(str, Enum):
    TEXT = "text"
    LOOKING_FOR_TAG = "looking_for_tag"
    IN_THINK = "in_think"
    IN_TOOL_CALL = "in_tool_call"


class StreamEventParser:
    """Turn streamed model text into :data:`StreamEvent` values.

    Call :meth:`process_chunk` for every fragment and :meth:`finalize` once
    when the backend reports completion.

    Example:
        parser = StreamEventParser()
        events = parser.process_chunk('<think>hmm</think>Hi')
        events += parser.finalize()
    """

    def __init__(self) -> None:
        self._state = ParserState.TEXT
        self._text: list[str] = []
        self._tag = ""
        self._close_match = ""
        self._tool_name = ""
        self._tool_args = ""
        self._finalized = False

    @property
    def state(self) -> ParserState:
        return self._state

    @property
    def finalized(self) -> bool:
        return self._finalized

    def reset(self) -> None:
        """Discard all buffered content and return to the initial state."""
        self.__init__()

    def process_chunk(self, chunk: str) -> list[StreamEvent]:
        """Consume one fragment of model output.

        Args:
            chunk: Decoded text of any length, including empty.

        Returns:
            Events completed by this fragment, in order.

        Raises:
            RuntimeError: If called after :meth:`finalize`.
        """
        if self._finalized:
            raise RuntimeError("process_chunk() called after finalize()")

        events: list[StreamEvent] = []
        for char in chunk:
            if self._state is ParserState.TEXT:
                self._consume_text(char, events)
            elif self._state is ParserState.LOOKING_FOR_TAG:
                self._consume_tag(char, events)
            elif self._state is ParserState.IN_THINK:
                self._consume_think(char, events)
            else:
                self._consume_tool_call(char, events)

        if self._state is ParserState.TEXT and self._should_flush_text():
            self._flush_text(events)
        return events

    def finalize(self) -> list[StreamEvent]:
        """Flush whatever is buffered as the best available events.

        Only the first call has an effect; later calls return an empty list.
        """
        if self._finalized:
            return []
        self._finalized = True

        events: list[StreamEvent] = []
        if self._state is ParserState.IN_THINK:
            if self._close_match:
                events.append(ThinkPartialEvent(self._close_match))
            events.append(ThinkEndEvent())
        elif self._state is ParserState.IN_TOOL_CALL:
            LOGGER.debug("Stream ended inside tool call %r; emitting as text", self._tool_name)
            if self._tool_args:
                events.append(TextEvent(self._tool_args))
        elif self._state is ParserState.LOOKING_FOR_TAG:
            self._text.append(self._tag)
            self._flush_text(events)
        else:
            self._flush_text(events)

        self._state = ParserState.TEXT
        self._text = []
        self._tag = ""
        self._close_match = ""
        self._tool_name = ""
        self._tool_args = ""
        return events

    # ------------------------------------------------------------------
    # State handlers
    # ------------------------------------------------------------------

    def _consume_text(self, char: str, events: list[StreamEvent]) -> None:
        if char == "<":
            self._flush_text(events)
            self._tag = char
            self._state = ParserState.LOOKING_FOR_TAG
        else:
            self._text.append(char)

    def _consume_tag(self, char: str, events: list[StreamEvent]) -> None:
        if char == "<":
            # The pending fragment was not a tag; restart from this bracket.
            events.append(TextEvent(self._tag))
            self._tag = char
            return

        self._tag += char
        if char == ">":
            self._resolve_tag(events)
        elif len(self._tag) > MAX_TAG_LENGTH:
            self._demote_tag()

    def _resolve_tag(self, events: list[StreamEvent]) -> None:
        tag = self._tag
        if tag == THINK_OPEN:
            self._tag = ""
            self._close_match = ""
            self._state = ParserState.IN_THINK
            events.append(ThinkStartEvent())
            return

        name = _tool_name_from_tag(tag)
        if name is not None:
            self._tag = ""
            self._tool_name = name
            self._tool_args = ""
            self._state = ParserState.IN_TOOL_CALL
            return

        self._demote_tag()

    def _demote_tag(self) -> None:
        self._text.append(self._tag)
        self._tag = ""
        self._state = ParserState.TEXT

    def _consume_think(self, char: str, events: list[StreamEvent]) -> None:
        if char == "\r":
            return
        candidate = self._close_match + char
        if candidate == THINK_CLOSE:
            self._close_match = ""
            self._state = ParserState.TEXT
            events.append(ThinkEndEvent())
            return
        if THINK_CLOSE.startswith(candidate):
            self._close_match = candidate
            return

        # Release everything that can no longer begin the closing tag.
        keep = _longest_close_prefix(candidate)
        released = candidate[: len(candidate) - keep] if keep else candidate
        self._close_match = candidate[len(released):]
        for piece in released:
            events.append(ThinkPartialEvent(piece))

    def _consume_tool_call(self, char: str, events: list[StreamEvent]) -> None:
        self._tool_args += char
        if self._tool_args.endswith(TOOL_CALL_CLOSE):
            args = self._tool_args[: -len(TOOL_CALL_CLOSE)]
            events.append(ToolCallEvent(name=self._tool_name, args=args))
            LOGGER.debug("Parsed tool call %s (%d chars of args)", self._tool_name, len(args))
            self._tool_name = ""
            self._tool_args = ""
            self._state = ParserState.TEXT

    # ------------------------------------------------------------------
    # Text accumulator
    # ------------------------------------------------------------------

    def _should_flush_text(self) -> bool:
        if not self._text:
            return False
        if self._text[-1][-1:] in _FLUSH_TRIGGERS:
            return True
        return sum(len(part) for part in self._text) >= _MIN_FLUSH_LENGTH

    def _flush_text(self, events: list[StreamEvent]) -> None:
        if not self._text:
            return
        text = "".join(self._text)
        self._text = []
        if text:
            events.append(TextEvent(text))


def _tool_name_from_tag(tag: str) -> str | None:
    if not tag.startswith(TOOL_CALL_OPEN):
        return None
    boundary = tag[len(TOOL_CALL_OPEN): len(TOOL_CALL_OPEN) + 1]
    if boundary not in (" ", "\t", "\n"):
        return None
    match = _TOOL_NAME_PATTERN.search(tag)
    if match is None:
        LOGGER.debug("Tool call tag without a usable name: %r", tag)
        return None
    return match.group(1)


def _longest_close_prefix(text: str) -> int:
    """Length of the longest suffix of ``text`` that is a proper prefix of ``</think>``."""
    for size in range(min(len(text), len(THINK_CLOSE) - 1), 0, -1):
        if THINK_CLOSE.startswith(text[-size:]):
            return size
    return 0


# -----------------------------------------------------------------------------
# Whole-response helper
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ParsedResponse:
    """A complete response split into its parts.

    Attributes:
        text: Concatenated narration.
        thinking: Concatenated thinking text.
        tool_calls: Tool calls in emission order.
    """

    text: str
    thinking: str
    tool_calls: tuple[ToolCallEvent, ...]


def collect_events(events: Iterable[StreamEvent]) -> ParsedResponse:
    """Fold a sequence of events into a :class:`ParsedResponse`."""
    text_parts: list[str] = []
    thinking_parts: list[str] = []
    tool_calls: list[ToolCallEvent] = []
    for event in events:
        if isinstance(event, TextEvent):
            text_parts.append(event.text)
        elif isinstance(event, ThinkPartialEvent):
            thinking_parts.append(event.text)
        elif isinstance(event, ToolCallEvent):
            tool_calls.append(event)
    return ParsedResponse(
        text="".join(text_parts),
        thinking="".join(thinking_parts),
        tool_calls=tuple(tool_calls),
    )


def parse_response(text: str) -> ParsedResponse:
    """Parse a complete, non-streamed response with the streaming grammar."""
    parser = StreamEventParser()
    events = parser.process_chunk(text)
    events.extend(parser.finalize())
    return collect_events(events)
