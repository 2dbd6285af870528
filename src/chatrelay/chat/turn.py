"""Lifecycle tracking for a single chat request."""

from __future__ import annotations

import logging
from enum import IntEnum


logger = logging.getLogger(__name__)


class TurnState(IntEnum):
    """Request lifecycle states, declared in the order they are visited."""

    INIT = 0
    PERSIST_USER_MSG = 1
    FETCH_HISTORY = 2
    BUILD_REQUEST = 3
    AWAIT_UPSTREAM = 4
    STREAM_RELAY = 5
    FAIL = 6
    FINALIZE_PERSISTENCE = 7
    CLOSED = 8


class InvalidTransition(RuntimeError):
    """Raised when a turn would revisit a state or continue after failing."""


class ChatTurn:
    """Forward-only state holder for one request."""

    def __init__(self, conversation_id: int | None = None) -> None:
        self.conversation_id = conversation_id
        self._state = TurnState.INIT
        self._history: list[TurnState] = [TurnState.INIT]

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def history(self) -> tuple[TurnState, ...]:
        return tuple(self._history)

    @property
    def closed(self) -> bool:
        return self._state is TurnState.CLOSED

    def advance(self, state: TurnState) -> None:
        if state <= self._state:
            raise InvalidTransition(f"{self._state.name} -> {state.name}")
        if self._state is TurnState.FAIL and state is not TurnState.CLOSED:
            raise InvalidTransition(f"{self._state.name} -> {state.name}")
        logger.debug(
            "Turn conversation=%s: %s -> %s",
            self.conversation_id,
            self._state.name,
            state.name,
        )
        self._state = state
        self._history.append(state)


__all__ = ["ChatTurn", "InvalidTransition", "TurnState"]
