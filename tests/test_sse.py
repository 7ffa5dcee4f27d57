"""单元测试：SSE 分帧与 delta 解码"""

import json

import pytest

from gptchat.chat.transcript import Role
from gptchat.llm.sse import (
    STREAM_OPENED,
    ContentDelta,
    Done,
    InvalidEvent,
    InvalidJson,
    NoData,
    RoleAnnounce,
    SSEEvent,
    decode_event,
    iter_sse_events,
)


def _chunk(delta: dict) -> SSEEvent:
    return SSEEvent(data=json.dumps({
        "object": "chat.completion.chunk",
        "created": 1700000000,
        "model": "gpt-4",
        "choices": [{"index": 0, "finish_reason": None, "delta": delta}],
    }))


# ==================== 分帧 ====================

def test_iter_events_basic():
    lines = ['data: {"a": 1}', "", "data: [DONE]", ""]
    events = list(iter_sse_events(lines))
    assert [e.data for e in events] == ['{"a": 1}', "[DONE]"]
    assert all(e.event == "message" for e in events)


def test_iter_events_multiline_data_and_fields():
    lines = ["event: update", "id: 7", "data: first", "data:second", "", ""]
    events = list(iter_sse_events(lines))
    assert len(events) == 1
    assert events[0].event == "update"
    assert events[0].id == "7"
    assert events[0].data == "first\nsecond"


def test_iter_events_ignores_comments_and_empty_records():
    lines = [": keep-alive", "", "event: ping", "", "data: x", ""]
    events = list(iter_sse_events(lines))
    assert [e.data for e in events] == ["x"]


def test_iter_events_flushes_trailing_record():
    events = list(iter_sse_events(["data: tail"]))
    assert events == [SSEEvent(data="tail")]


def test_iter_events_strips_carriage_return():
    events = list(iter_sse_events(["data: hi\r", "\r"]))
    assert events[0].data == "hi"


def test_iter_events_is_lazy():
    """Frames are produced one at a time, before later lines are read."""
    consumed = []

    def lines():
        for line in ["data: one", "", "data: two", ""]:
            consumed.append(line)
            yield line

    it = iter_sse_events(lines())
    assert next(it).data == "one"
    assert consumed == ["data: one", ""]


# ==================== 解码 ====================

def test_open_yields_no_data():
    assert decode_event(STREAM_OPENED) == NoData()


def test_done_sentinel():
    assert decode_event(SSEEvent(data="[DONE]")) == Done()


def test_role_announce():
    assert decode_event(_chunk({"role": "assistant"})) == RoleAnnounce(Role.ASSISTANT)


def test_role_takes_priority_over_content():
    delta = decode_event(_chunk({"role": "assistant", "content": ""}))
    assert delta == RoleAnnounce(Role.ASSISTANT)


def test_content_delta():
    assert decode_event(_chunk({"content": "Hello"})) == ContentDelta("Hello")


def test_empty_delta_is_no_data():
    assert decode_event(_chunk({})) == NoData()


def test_null_content_is_no_data():
    assert decode_event(_chunk({"content": None})) == NoData()


def test_empty_choices_is_invalid_event():
    with pytest.raises(InvalidEvent):
        decode_event(SSEEvent(data=json.dumps({"choices": []})))


def test_unknown_role_is_invalid_event():
    with pytest.raises(InvalidEvent):
        decode_event(_chunk({"role": "tool"}))


@pytest.mark.parametrize("payload", [
    "not json",
    "[1, 2]",
    '{"object": "chat.completion.chunk"}',
    '{"choices": "nope"}',
    '{"choices": [{"index": 0}]}',
])
def test_malformed_payload_is_invalid_json(payload):
    with pytest.raises(InvalidJson):
        decode_event(SSEEvent(data=payload))


def test_no_done_without_sentinel():
    records = [STREAM_OPENED, _chunk({"role": "assistant"}), _chunk({"content": "a"}),
               _chunk({"content": "DONE"}), _chunk({})]
    deltas = [decode_event(r) for r in records]
    assert Done() not in deltas
