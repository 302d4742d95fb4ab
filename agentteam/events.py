"""Child session event protocol (newline-delimited JSON on stdout)."""

from __future__ import annotations

import codecs
import logging
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)


class Usage(BaseModel):
    """Token usage reported for one assistant message."""

    input: int = 0
    output: int = 0


class Message(BaseModel):
    role: str | None = None
    usage: Usage | None = None


class AssistantMessageEvent(BaseModel):
    type: str
    delta: str = ""


class MessageUpdateEvent(BaseModel):
    """Incremental assistant output."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["message_update"]
    assistant_message_event: AssistantMessageEvent | None = Field(default=None, alias="assistantMessageEvent")

    @property
    def text_delta(self) -> str | None:
        event = self.assistant_message_event
        if event is not None and event.type == "text_delta":
            return event.delta
        return None


class ToolExecutionStartEvent(BaseModel):
    type: Literal["tool_execution_start"]


class MessageEndEvent(BaseModel):
    """A completed message, carrying per-update usage."""

    type: Literal["message_end"]
    message: Message | None = None

    @property
    def usage(self) -> Usage | None:
        return self.message.usage if self.message else None


class AgentEndEvent(BaseModel):
    """Terminal event with the whole conversation; usage comes from the last assistant turn."""

    type: Literal["agent_end"]
    messages: list[Message] = Field(default_factory=list)

    @property
    def usage(self) -> Usage | None:
        for message in reversed(self.messages):
            if message.role == "assistant":
                return message.usage
        return None


SessionEvent = Annotated[
    Union[MessageUpdateEvent, ToolExecutionStartEvent, MessageEndEvent, AgentEndEvent],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter[SessionEvent] = TypeAdapter(SessionEvent)


def decode_event(line: str) -> SessionEvent | None:
    """Decode one line into a recognized event, or None."""
    line = line.strip()
    if not line:
        return None
    try:
        return _event_adapter.validate_json(line)
    except ValidationError:
        return None


class EventLineDecoder:
    """Accumulates raw output, splits it into lines and decodes events.

    Partial lines are held until their newline arrives. Lines that are not
    a well-formed recognized event are dropped.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.skipped = 0

    def feed(self, data: bytes | str) -> list[SessionEvent]:
        """Add a chunk of output and return the events it completed."""
        if isinstance(data, bytes):
            data = self._decoder.decode(data)
        self._buffer += data

        *lines, self._buffer = self._buffer.split("\n")
        return self._decode_lines(lines)

    def flush(self) -> list[SessionEvent]:
        """Decode whatever remains once the stream has ended."""
        remainder = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return self._decode_lines([remainder])

    def _decode_lines(self, lines: list[str]) -> list[SessionEvent]:
        events = []
        for line in lines:
            if not line.strip():
                continue
            event = decode_event(line)
            if event is None:
                self.skipped += 1
                logger.debug(f"Skipping unrecognized event line: {line[:80]!r}")
                continue
            events.append(event)
        return events
