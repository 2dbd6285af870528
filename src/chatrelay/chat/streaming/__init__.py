"""Chat streaming package."""

from .decoder import StreamDecoder, decode_stream
from .events import DeltaEvent, DoneEvent, ErrorEvent, SseEvent, StreamEvent, StreamSink
from .persistence import AssistantReplyRecorder
from .relay import StreamRelay

__all__ = [
    "AssistantReplyRecorder",
    "DeltaEvent",
    "DoneEvent",
    "ErrorEvent",
    "SseEvent",
    "StreamDecoder",
    "StreamEvent",
    "StreamRelay",
    "StreamSink",
    "decode_stream",
]
