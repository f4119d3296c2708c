from __future__ import annotations

import pytest

from billbot.models.events import EndStatus, EventType
from billbot.models.session import ToolCallRecord
from billbot.services import streaming
from billbot.services.stream_session import StreamSession


async def collect(stream: StreamSession) -> list:
    return [event async for event in stream.events()]


@pytest.mark.asyncio
async def test_events_are_delivered_in_emit_order_with_increasing_timestamps():
    stream = StreamSession("conn-1")
    stream.emit(streaming.start("s1", "m1"))
    for text in ("a", "b", "c"):
        stream.emit(streaming.content(text, "m1"))
    stream.emit(streaming.end("m1", EndStatus.COMPLETED, 5))

    events = await collect(stream)

    assert [e.event for e in events] == [
        EventType.START,
        EventType.CONTENT,
        EventType.CONTENT,
        EventType.CONTENT,
        EventType.END,
    ]
    assert [e.data["content"] for e in events[1:4]] == ["a", "b", "c"]
    timestamps = [e.timestamp for e in events]
    assert timestamps == sorted(set(timestamps))


@pytest.mark.asyncio
async def test_nothing_is_accepted_after_end():
    stream = StreamSession("conn-1")
    stream.emit(streaming.end("m1", EndStatus.STOPPED, 1))

    assert stream.emit(streaming.content("late", "m1")) is False
    assert stream.dropped_count == 1
    events = await collect(stream)
    assert [e.event for e in events] == [EventType.END]


@pytest.mark.asyncio
async def test_emit_after_close_is_dropped_without_raising():
    stream = StreamSession("conn-1")
    stream.close()
    stream.close()

    assert stream.is_open() is False
    assert stream.emit(streaming.content("x", "m1")) is False
    assert await collect(stream) == []


@pytest.mark.asyncio
async def test_overflow_marks_consumer_gone():
    stream = StreamSession("conn-1", buffer_size=2)
    assert stream.emit(streaming.content("1", "m"))
    assert stream.emit(streaming.content("2", "m"))
    assert stream.emit(streaming.content("3", "m")) is False

    assert stream.disconnected is True
    assert stream.is_open() is False


def test_sse_format_contains_type_and_json_payload():
    event = streaming.content("hello", "m1")
    text = event.format()

    assert text.startswith("event: content\n")
    assert '"content": "hello"' in text
    assert text.endswith("\n\n")


@pytest.mark.asyncio
async def test_emitted_event_payload_cannot_change():
    arguments = {"query": "tax"}
    record = ToolCallRecord(id="c1", name="search_bills", arguments=arguments)
    stream = StreamSession("conn-1")
    stream.emit(streaming.tool_call(record))
    arguments["query"] = "changed"

    stream.close()
    [event] = await collect(stream)

    assert event.data["arguments"] == {"query": "tax"}
    with pytest.raises(TypeError):
        event.data["status"] = "completed"
    assert event.to_dict()["data"]["status"] == "started"
