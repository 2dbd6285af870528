"""Assemble the bounded model context for a new user turn."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from ..repository import ChatRepository
from ..schemas.chat import ImageAttachment
from .turn import ChatTurn, TurnState


logger = logging.getLogger(__name__)


@dataclass
class PreparedContext:
    """Messages ready for the upstream request plus bookkeeping ids."""

    conversation_id: int
    user_message_id: int
    history_size: int
    messages: list[dict[str, Any]]


def build_user_turn(
    content: str, image: ImageAttachment | None = None
) -> dict[str, Any]:
    """Return the newest user turn, multi-part when an image is attached."""

    if image is None:
        return {"role": "user", "content": content}
    return {
        "role": "user",
        "content": [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image.media_type,
                    "data": image.base64,
                },
            },
            {"type": "text", "text": content},
        ],
    }


def build_messages(
    history: Iterable[Mapping[str, Any]],
    new_message: str,
    image: ImageAttachment | None = None,
) -> list[dict[str, Any]]:
    """Convert stored history into upstream messages and append the new turn.

    History is always replayed as plain text; images only ever ride along
    with the turn being sent.
    """

    messages: list[dict[str, Any]] = [
        {"role": str(item["role"]), "content": str(item["content"])}
        for item in history
    ]
    messages.append(build_user_turn(new_message, image))
    return messages


class ContextBuilder:
    """Persist the incoming turn and build the request context around it."""

    def __init__(self, repository: ChatRepository, *, max_history: int) -> None:
        self._repo = repository
        self._max_history = max_history

    async def persist_user_message(self, conversation_id: int, content: str) -> int:
        message_id, _ = await self._repo.add_message(conversation_id, "user", content)
        return message_id

    async def fetch_history(
        self, conversation_id: int, *, exclude_id: int | None = None
    ) -> list[dict[str, Any]]:
        history = await self._repo.get_messages(conversation_id, self._max_history)
        if exclude_id is None:
            return history
        return [item for item in history if item["id"] != exclude_id]

    async def prepare(
        self,
        conversation_id: int,
        content: str,
        image: ImageAttachment | None = None,
        *,
        turn: ChatTurn | None = None,
    ) -> PreparedContext:
        """Store the user message first, then build messages from fresh history."""

        turn = turn or ChatTurn(conversation_id)
        turn.advance(TurnState.PERSIST_USER_MSG)
        user_message_id = await self.persist_user_message(conversation_id, content)

        turn.advance(TurnState.FETCH_HISTORY)
        history = await self.fetch_history(conversation_id, exclude_id=user_message_id)
        logger.info(
            "History: %d messages for conversation=%s", len(history), conversation_id
        )

        turn.advance(TurnState.BUILD_REQUEST)
        return PreparedContext(
            conversation_id=conversation_id,
            user_message_id=user_message_id,
            history_size=len(history),
            messages=build_messages(history, content, image),
        )


__all__ = ["ContextBuilder", "PreparedContext", "build_messages", "build_user_turn"]
