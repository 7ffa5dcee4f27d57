"""Server-sent event framing and chat-completion delta decoding."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Iterable, Iterator, Union

from gptchat.chat.transcript import Role

DONE_SENTINEL = "[DONE]"


# ==================== 异常 ====================

class StreamError(Exception):
    """Fatal to the stream it was raised from."""


class StreamReadFailed(StreamError):
    pass


class InvalidJson(StreamError):
    pass


class InvalidEvent(StreamError):
    pass


# ==================== SSE 记录 ====================

@dataclass(frozen=True)
class StreamOpened:
    """The connection is up; no payload yet."""


@dataclass(frozen=True)
class SSEEvent:
    data: str
    event: str = "message"
    id: str | None = None


SSERecord = Union[StreamOpened, SSEEvent]

STREAM_OPENED = StreamOpened()


def iter_sse_events(lines: Iterable[str]) -> Iterator[SSEEvent]:
    """Group raw body lines into events, one event held at a time.

    Follows the event-stream framing rules: ``field: value`` lines, one
    leading space after the colon dropped, multi-line data joined with
    ``\\n``, comment lines (``:``) ignored, blank line dispatches.
    """
    data: list[str] = []
    event = ""
    last_id: str | None = None

    for line in lines:
        if line is None:
            continue
        line = line.rstrip("\r")
        if not line:
            if data:
                yield SSEEvent(data="\n".join(data), event=event or "message", id=last_id)
            data = []
            event = ""
            continue
        if line.startswith(":"):
            continue

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "data":
            data.append(value)
        elif field == "event":
            event = value
        elif field == "id":
            last_id = value

    if data:
        yield SSEEvent(data="\n".join(data), event=event or "message", id=last_id)


# ==================== Delta ====================

@dataclass(frozen=True)
class ContentDelta:
    text: str


@dataclass(frozen=True)
class RoleAnnounce:
    role: Role


@dataclass(frozen=True)
class NoData:
    pass


@dataclass(frozen=True)
class Done:
    pass


MessageDelta = Union[ContentDelta, RoleAnnounce, NoData, Done]


def decode_event(record: SSERecord) -> MessageDelta:
    """Decode one SSE record into exactly one delta.

    Raises InvalidJson / InvalidEvent for payloads that do not look like a
    chat-completion chunk.
    """
    if isinstance(record, StreamOpened):
        return NoData()

    payload = record.data
    if payload.strip() == DONE_SENTINEL:
        return Done()

    try:
        chunk = json.loads(payload)
    except json.JSONDecodeError as e:
        raise InvalidJson(f"Invalid response from chat API: {e}") from e

    if not isinstance(chunk, dict) or not isinstance(chunk.get("choices"), list):
        raise InvalidJson("Invalid response from chat API: missing 'choices'")

    choices = chunk["choices"]
    if not choices:
        raise InvalidEvent("Invalid response from chat API: empty 'choices'")

    first = choices[0]
    delta = first.get("delta") if isinstance(first, dict) else None
    if not isinstance(delta, dict):
        raise InvalidJson("Invalid response from chat API: missing 'delta'")

    # role 优先于 content：首个 chunk 通常同时带 role 和空 content
    if "role" in delta:
        try:
            return RoleAnnounce(Role(delta["role"]))
        except ValueError as e:
            raise InvalidEvent(f"Unknown role in delta: {delta['role']!r}") from e
    content = delta.get("content")
    if isinstance(content, str):
        return ContentDelta(content)
    return NoData()
