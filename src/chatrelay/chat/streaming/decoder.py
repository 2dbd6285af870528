"""Incremental decoder for the Anthropic Messages streaming format."""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, AsyncGenerator, AsyncIterable

from .events import DeltaEvent, DoneEvent, ErrorEvent, StreamEvent


logger = logging.getLogger(__name__)

_DATA_FIELD = "data"
_DONE_SENTINEL = "[DONE]"


class StreamDecoder:
    """Turn raw upstream bytes into normalized stream events.

    Provider frames are not aligned with network reads, so the decoder keeps
    the trailing partial line between calls to :meth:`feed`. Bytes are decoded
    incrementally which keeps multi-byte characters intact when a read splits
    them. Once a terminal event has been produced every further line is
    ignored.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._fragments: list[str] = []
        self._terminated = False

    @property
    def full_text(self) -> str:
        """Concatenation of every delta emitted so far."""

        return "".join(self._fragments)

    @property
    def terminated(self) -> bool:
        return self._terminated

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        """Consume one network read and return the events it completed."""

        self._buffer += self._utf8.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()

        events: list[StreamEvent] = []
        for line in lines:
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def finish(self) -> list[StreamEvent]:
        """Flush buffered input and guarantee a terminal event."""

        self._buffer += self._utf8.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""

        events: list[StreamEvent] = []
        if remainder:
            event = self._process_line(remainder)
            if event is not None:
                events.append(event)

        if not self._terminated:
            # Upstream closed without a stop signal.
            logger.debug("Upstream stream ended without message_stop")
            self._terminated = True
            events.append(DoneEvent(self.full_text))
        return events

    def _process_line(self, raw_line: str) -> StreamEvent | None:
        if self._terminated:
            return None

        line = raw_line.rstrip("\r")
        if not line or line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if field != _DATA_FIELD:
            return None
        if value.startswith(" "):
            value = value[1:]
        if value == _DONE_SENTINEL:
            return None

        try:
            payload = json.loads(value)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed upstream frame: %.200s", value)
            return None
        if not isinstance(payload, dict):
            return None

        return self._map_payload(payload)

    def _map_payload(self, payload: dict[str, Any]) -> StreamEvent | None:
        event_type = payload.get("type")

        if event_type == "content_block_delta":
            delta = payload.get("delta")
            if not isinstance(delta, dict):
                return None
            text = delta.get("text")
            if not isinstance(text, str) or not text:
                return None
            self._fragments.append(text)
            return DeltaEvent(text)

        if event_type == "message_stop":
            self._terminated = True
            return DoneEvent(self.full_text)

        if event_type == "error":
            self._terminated = True
            return ErrorEvent(_describe_stream_error(payload.get("error")))

        return None


def _describe_stream_error(error: Any) -> str:
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
        return json.dumps(error)
    if isinstance(error, str) and error:
        return error
    return "Upstream stream reported an error."


async def decode_stream(
    chunks: AsyncIterable[bytes],
) -> AsyncGenerator[StreamEvent, None]:
    """Decode an async byte stream, yielding events as soon as they complete.

    Exactly one terminal event is always produced, and it is the last one.
    """

    decoder = StreamDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
        if decoder.terminated:
            return
    for event in decoder.finish():
        yield event


__all__ = ["StreamDecoder", "decode_stream"]
