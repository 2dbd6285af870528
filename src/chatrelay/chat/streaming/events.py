"""Normalized stream events shared by the decoder, relay, and sinks."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Protocol, Union


SseEvent = dict[str, str]


@dataclass(frozen=True)
class DeltaEvent:
    """Incremental fragment of the in-progress reply."""

    text: str

    terminal = False

    def to_payload(self) -> dict[str, Any]:
        return {"type": "delta", "text": self.text}


@dataclass(frozen=True)
class DoneEvent:
    """Terminal event carrying the fully accumulated reply."""

    full_text: str

    terminal = True

    def to_payload(self) -> dict[str, Any]:
        return {"type": "done", "fullText": self.full_text}


@dataclass(frozen=True)
class ErrorEvent:
    """Terminal event signalling that the turn failed."""

    message: str

    terminal = True

    def to_payload(self) -> dict[str, Any]:
        return {"type": "error", "error": self.message}


StreamEvent = Union[DeltaEvent, DoneEvent, ErrorEvent]


class StreamSink(Protocol):
    """Consumer fed every normalized event in emission order."""

    async def consume(self, event: StreamEvent) -> None:
        ...


def encode_event(event: StreamEvent) -> SseEvent:
    """Return the SSE payload dictionary for ``event``.

    Only the ``data`` field is set so each frame serializes as a single
    ``data: {...}`` line followed by a blank line.
    """

    return {
        "data": json.dumps(
            event.to_payload(), ensure_ascii=False, separators=(",", ":")
        )
    }


__all__ = [
    "DeltaEvent",
    "DoneEvent",
    "ErrorEvent",
    "SseEvent",
    "StreamEvent",
    "StreamSink",
    "encode_event",
]
