"""Tests for baton_llm.stream."""

import json
import random

import pytest

from baton_llm.stream import (
    StreamAccumulator,
    StreamDecoder,
    decode_all,
    decode_stream,
)
from baton_llm.types import FunctionCallItem, MessageItem, StreamEventType


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


MESSAGE_ITEM = {
    "type": "message",
    "id": "msg_1",
    "role": "assistant",
    "content": [{"type": "output_text", "text": "Hello"}],
}
CALL_ITEM = {
    "type": "function_call",
    "id": "fc_1",
    "call_id": "call_1",
    "name": "lookup",
    "arguments": '{"q":"x"}',
}
FINAL = {
    "id": "resp_1",
    "model": "gpt-4o",
    "status": "completed",
    "output": [MESSAGE_ITEM, CALL_ITEM],
    "usage": {"input_tokens": 4, "output_tokens": 6, "total_tokens": 10},
}

STREAM = (
    ": keep-alive\n\n"
    + "event: response.created\n"
    + _sse({"type": "response.created", "response": {"id": "resp_1", "model": "gpt-4o"}, "sequence_number": 0})
    + _sse({"type": "response.output_item.added", "item": MESSAGE_ITEM, "output_index": 0, "sequence_number": 1})
    + _sse({"type": "response.output_text.delta", "delta": "Hel", "sequence_number": 2})
    + _sse({"type": "response.output_item.done", "item": MESSAGE_ITEM, "output_index": 0, "sequence_number": 3})
    + _sse({"type": "response.output_item.done", "item": CALL_ITEM, "output_index": 1, "sequence_number": 4})
    + _sse({"type": "response.completed", "response": FINAL, "sequence_number": 5})
    + "data: [DONE]\n\n"
).encode()


def _signature(events):
    return [(e.type, e.output_index, e.sequence_number, e.raw) for e in events]


class TestStreamDecoder:
    def test_event_sequence(self):
        events = decode_all([STREAM])
        assert [e.type for e in events] == [
            StreamEventType.CREATED,
            StreamEventType.OUTPUT_ITEM_ADDED,
            StreamEventType.UNKNOWN,
            StreamEventType.OUTPUT_ITEM_DONE,
            StreamEventType.OUTPUT_ITEM_DONE,
            StreamEventType.COMPLETED,
        ]

    def test_created_carries_response(self):
        created = decode_all([STREAM])[0]
        assert created.response == {"id": "resp_1", "model": "gpt-4o"}
        assert created.sequence_number == 0

    def test_output_items_typed(self):
        events = decode_all([STREAM])
        assert events[1].output_item == MessageItem(content="Hello")
        assert events[4].output_item == FunctionCallItem(
            id="call_1", name="lookup", arguments='{"q":"x"}', item_id="fc_1"
        )
        assert events[4].output_index == 1

    def test_unknown_passes_through_raw(self):
        unknown = decode_all([STREAM])[2]
        assert unknown.raw == {"type": "response.output_text.delta", "delta": "Hel", "sequence_number": 2}

    def test_completed_has_final_response(self):
        completed = decode_all([STREAM])[-1]
        assert completed.final_response is not None
        assert completed.final_response.id == "resp_1"
        assert completed.final_response.text == "Hello"
        assert completed.final_response.usage.total_tokens == 10

    def test_done_alias_is_completed(self):
        events = decode_all([_sse({"type": "done", "response": FINAL})])
        assert events[0].type == StreamEventType.COMPLETED

    def test_done_sentinel_stops(self):
        decoder = StreamDecoder()
        decoder.feed(b"data: [DONE]\n")
        assert decoder.done
        assert decoder.feed(_sse({"type": "response.created"})) == []

    def test_malformed_json_skipped(self, caplog):
        data = "data: {not json}\n" + _sse({"type": "response.created", "response": {"id": "r"}})
        with caplog.at_level("WARNING", logger="baton_llm.stream"):
            events = decode_all([data])
        assert [e.type for e in events] == [StreamEventType.CREATED]
        assert "malformed" in caplog.text

    def test_non_object_payload_is_unknown(self):
        events = decode_all(["data: [1, 2]\n"])
        assert events[0].type == StreamEventType.UNKNOWN
        assert events[0].raw == [1, 2]

    def test_crlf_lines(self):
        data = _sse({"type": "response.created", "response": {"id": "r"}}).replace("\n", "\r\n")
        assert [e.type for e in decode_all([data])] == [StreamEventType.CREATED]

    def test_flush_unterminated_line(self):
        decoder = StreamDecoder()
        assert decoder.feed('data: {"type": "response.created"}') == []
        events = decoder.flush()
        assert [e.type for e in events] == [StreamEventType.CREATED]

    def test_multibyte_split(self):
        payload = _sse({"type": "weird", "text": "café ☃"}).encode()
        split = payload.index("☃".encode()) + 1
        events = decode_all([payload[:split], payload[split:]])
        assert events[0].raw["text"] == "café ☃"


class TestChunkBoundaries:
    def test_byte_at_a_time_matches_whole(self):
        whole = _signature(decode_all([STREAM]))
        one_byte = _signature(decode_all([STREAM[i:i + 1] for i in range(len(STREAM))]))
        assert one_byte == whole

    def test_random_splits_match_whole(self):
        whole = _signature(decode_all([STREAM]))
        rng = random.Random(1234)
        for _ in range(25):
            cuts = sorted(rng.sample(range(1, len(STREAM)), 12))
            bounds = [0, *cuts, len(STREAM)]
            chunks = [STREAM[a:b] for a, b in zip(bounds, bounds[1:])]
            assert _signature(decode_all(chunks)) == whole


@pytest.mark.asyncio
class TestDecodeStream:
    async def test_async_iteration(self):
        async def chunks():
            for i in range(0, len(STREAM), 17):
                yield STREAM[i:i + 17]

        events = [e async for e in decode_stream(chunks())]
        assert _signature(events) == _signature(decode_all([STREAM]))

    async def test_stops_at_done(self):
        consumed = []

        async def chunks():
            for chunk in (b"data: [DONE]\n", _sse({"type": "response.created"}).encode()):
                consumed.append(chunk)
                yield chunk

        events = [e async for e in decode_stream(chunks())]
        assert events == []
        assert len(consumed) == 1


class TestStreamAccumulator:
    def test_uses_final_response(self):
        acc = StreamAccumulator()
        for event in decode_all([STREAM]):
            acc.process(event)
        assert acc.completed
        resp = acc.response()
        assert resp.id == "resp_1"
        assert [type(item) for item in resp.output] == [MessageItem, FunctionCallItem]

    def test_builds_from_items_without_completion(self):
        data = (
            _sse({"type": "response.created", "response": {"id": "resp_2", "model": "m"}})
            + _sse({"type": "response.output_item.done", "item": CALL_ITEM, "output_index": 1})
            + _sse({"type": "response.output_item.done", "item": MESSAGE_ITEM, "output_index": 0})
        )
        acc = StreamAccumulator()
        for event in decode_all([data]):
            acc.process(event)
        assert not acc.completed
        resp = acc.response()
        assert resp.id == "resp_2"
        assert resp.model == "m"
        assert [type(item) for item in resp.output] == [MessageItem, FunctionCallItem]
