"""
Server-Sent Events (SSE) wire format.
Build frames with format_message() / ping_message(); read them back with parse_lines().
"""

from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

SSE_MIMETYPE = "text/event-stream"


@dataclass
class EventMessage:
    """One SSE message. Ping frames only ever set `data`."""

    data: str
    event: Optional[str] = None
    id: Optional[str] = None


def format_message(message: EventMessage) -> str:
    """
    Encode a message as UTF-8 text terminated by a blank line.
    Multi-line data is split across several `data:` lines so the payload
    can never end the frame early.
    """
    lines = []
    if message.id is not None:
        lines.append(f"id: {message.id}")
    if message.event is not None:
        lines.append(f"event: {message.event}")
    for line in message.data.splitlines() or [""]:
        lines.append(f"data: {line}")
    return "\n".join(lines) + "\n\n"


def ping_message(epoch_ms: int) -> str:
    """The only frame the ping stream emits: `data: ping <epoch-millis>\\n\\n`."""
    return format_message(EventMessage(data=f"ping {epoch_ms}"))


def _field(line: str) -> tuple[str, str]:
    name, sep, value = line.partition(":")
    if not sep:
        return line, ""
    # A single space after the colon is part of the syntax, not the value
    if value.startswith(" "):
        value = value[1:]
    return name, value


def parse_lines(lines: Iterable[str]) -> Iterator[EventMessage]:
    """
    Turn decoded stream lines (no trailing newlines) into messages.
    Comment lines (": keepalive") and unknown fields are skipped; a blank line
    dispatches whatever has been collected so far.
    """
    data: list[str] = []
    event = None
    event_id = None

    for line in lines:
        if line == "":
            if data:
                yield EventMessage(data="\n".join(data), event=event, id=event_id)
            data, event, event_id = [], None, None
            continue
        if line.startswith(":"):
            continue

        name, value = _field(line)
        if name == "data":
            data.append(value)
        elif name == "event":
            event = value
        elif name == "id":
            event_id = value
