"""SSE decoding into typed stream events, and StreamAccumulator."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Iterable

from baton_llm.normalize import FormatNormalizer
from baton_llm.types import (
    NormalizedResponse,
    OutputItem,
    StreamEvent,
    StreamEventType,
    Usage,
)

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"

_EVENT_TYPES: dict[str, StreamEventType] = {
    "created": StreamEventType.CREATED,
    "output_item.added": StreamEventType.OUTPUT_ITEM_ADDED,
    "output_item.done": StreamEventType.OUTPUT_ITEM_DONE,
    "done": StreamEventType.COMPLETED,
    "completed": StreamEventType.COMPLETED,
}


class StreamDecoder:
    """Incremental SSE decoder. Not reentrant: use one per stream."""

    def __init__(self, normalizer: FormatNormalizer | None = None) -> None:
        self._normalizer = normalizer or FormatNormalizer()
        self._buffer = bytearray()
        self._done = False

    @property
    def done(self) -> bool:
        """True once the ``[DONE]`` sentinel has been seen."""
        return self._done

    def feed(self, chunk: bytes | str) -> list[StreamEvent]:
        """Append a chunk and return events for every completed line."""
        if self._done:
            return []
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        self._buffer.extend(chunk)

        events: list[StreamEvent] = []
        while not self._done:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            raw_line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            event = self.decode_line(raw_line.decode("utf-8", errors="replace"))
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[StreamEvent]:
        """Process a trailing line that was never newline-terminated."""
        if self._done or not self._buffer:
            self._buffer.clear()
            return []
        raw_line = bytes(self._buffer)
        self._buffer.clear()
        event = self.decode_line(raw_line.decode("utf-8", errors="replace"))
        return [event] if event is not None else []

    def decode_line(self, line: str) -> StreamEvent | None:
        line = line.strip()
        if not line or line.startswith(":"):
            return None
        if not line.startswith("data:"):
            # event:, id: and retry: fields carry nothing we dispatch on
            return None

        data = line[5:].strip()
        if data == DONE_SENTINEL:
            self._done = True
            return None

        try:
            payload = json.loads(data)
        except json.JSONDecodeError as err:
            logger.warning("Skipping malformed SSE data line (%s): %.200s", err, data)
            return None

        if not isinstance(payload, dict):
            return StreamEvent(type=StreamEventType.UNKNOWN, raw=payload)
        return self._to_event(payload)

    def _to_event(self, payload: dict[str, Any]) -> StreamEvent:
        event_type = str(payload.get("type", ""))
        kind = _EVENT_TYPES.get(event_type.removeprefix("response."))
        if kind is None:
            return StreamEvent(type=StreamEventType.UNKNOWN, raw=payload)

        event = StreamEvent(
            type=kind,
            output_index=payload.get("output_index"),
            sequence_number=payload.get("sequence_number"),
            raw=payload,
        )
        response = payload.get("response")
        if isinstance(response, dict):
            event.response = response
        item = payload.get("item")
        if isinstance(item, dict):
            event.item = item
            event.output_item = self._normalizer.output_item(item)
        if kind == StreamEventType.COMPLETED and event.response is not None:
            event.final_response = self._normalizer.from_responses(event.response)
        return event


async def decode_stream(
    chunks: AsyncIterable[bytes | str],
    decoder: StreamDecoder | None = None,
) -> AsyncIterator[StreamEvent]:
    """Decode an async byte stream, stopping at ``[DONE]``."""
    decoder = decoder or StreamDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
        if decoder.done:
            return
    for event in decoder.flush():
        yield event


def decode_all(
    chunks: Iterable[bytes | str],
    decoder: StreamDecoder | None = None,
) -> list[StreamEvent]:
    decoder = decoder or StreamDecoder()
    events: list[StreamEvent] = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
        if decoder.done:
            return events
    events.extend(decoder.flush())
    return events


class StreamAccumulator:
    """Collects stream events into a complete NormalizedResponse."""

    def __init__(self) -> None:
        self._items: dict[int, OutputItem] = {}
        self._next_index = 0
        self._created: dict[str, Any] | None = None
        self._final: NormalizedResponse | None = None

    def process(self, event: StreamEvent) -> None:
        """Process a single stream event."""
        if event.type == StreamEventType.CREATED:
            self._created = event.response
        elif event.type == StreamEventType.OUTPUT_ITEM_DONE and event.output_item:
            index = event.output_index
            if index is None:
                index = self._next_index
            self._items[index] = event.output_item
            self._next_index = max(self._next_index, index + 1)
        elif event.type == StreamEventType.COMPLETED and event.final_response:
            self._final = event.final_response

    @property
    def completed(self) -> bool:
        return self._final is not None

    def response(self) -> NormalizedResponse:
        """Build the accumulated response."""
        if self._final:
            return self._final

        created = self._created or {}
        return NormalizedResponse(
            output=[self._items[i] for i in sorted(self._items)],
            usage=Usage(),
            model=created.get("model", ""),
            id=created.get("id", ""),
            finish_reason="stop" if self._items else None,
        )
