"""Fan-out stage forwarding normalized events to the client and to sinks."""

from __future__ import annotations

import logging
from contextlib import aclosing
from typing import AsyncGenerator, Sequence

from ..turn import ChatTurn, TurnState
from .events import (
    DeltaEvent,
    DoneEvent,
    ErrorEvent,
    SseEvent,
    StreamEvent,
    StreamSink,
    encode_event,
)


logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An internal error occurred"


class StreamRelay:
    """Drive one decoded event sequence into the network and every sink.

    Each event is yielded as an SSE payload first and then handed to the
    sinks in registration order; the next upstream read only happens after
    all sinks have finished. Exactly one terminal frame is produced: the
    relay stops after the first one, synthesizes ``done`` if the source ends
    without a terminal event, and turns unexpected failures into a single
    generic ``error`` frame.
    """

    def __init__(
        self,
        sinks: Sequence[StreamSink] = (),
        *,
        turn: ChatTurn | None = None,
    ) -> None:
        self._sinks = list(sinks)
        self._turn = turn
        self._fragments: list[str] = []
        self.terminal_event: StreamEvent | None = None

    async def relay(
        self, events: AsyncGenerator[StreamEvent, None]
    ) -> AsyncGenerator[SseEvent, None]:
        try:
            async with aclosing(events):
                async for event in events:
                    yield encode_event(event)
                    await self._dispatch(event)
                    if event.terminal:
                        return

            if self.terminal_event is None:
                fallback = DoneEvent("".join(self._fragments))
                yield encode_event(fallback)
                await self._dispatch(fallback)
        except Exception:
            logger.exception("Chat stream relay failed")
            if self.terminal_event is None:
                failure = ErrorEvent(GENERIC_ERROR_MESSAGE)
                self._record(failure)
                yield encode_event(failure)
        finally:
            self._advance(TurnState.CLOSED)

    async def _dispatch(self, event: StreamEvent) -> None:
        self._record(event)
        for sink in self._sinks:
            await sink.consume(event)

    def _record(self, event: StreamEvent) -> None:
        if isinstance(event, DeltaEvent):
            self._fragments.append(event.text)
            self._advance(TurnState.STREAM_RELAY)
        elif isinstance(event, DoneEvent):
            self.terminal_event = event
            self._advance(TurnState.STREAM_RELAY)
            self._advance(TurnState.FINALIZE_PERSISTENCE)
        else:
            self.terminal_event = event
            self._advance(TurnState.FAIL)

    def _advance(self, state: TurnState) -> None:
        if self._turn is None or self._turn.state >= state:
            return
        if self._turn.state is TurnState.FAIL and state is not TurnState.CLOSED:
            return
        self._turn.advance(state)


__all__ = ["GENERIC_ERROR_MESSAGE", "StreamRelay"]
