"""Stream sink that stores the assistant reply once the stream completes."""

from __future__ import annotations

import logging

from ...repository import ChatRepository
from .events import DoneEvent, StreamEvent


logger = logging.getLogger(__name__)


class AssistantReplyRecorder:
    """Append exactly one assistant message per request.

    Only the first ``DoneEvent`` with non-empty text is stored. Errors,
    empty replies and duplicate terminal events are ignored. Storage
    failures are logged and never surface to the client stream, whose
    status and framing are already committed by the time this runs.
    """

    def __init__(self, repository: ChatRepository, conversation_id: int) -> None:
        self._repo = repository
        self._conversation_id = conversation_id
        self._captured = False
        self.message_id: int | None = None

    @property
    def recorded(self) -> bool:
        return self.message_id is not None

    async def consume(self, event: StreamEvent) -> None:
        if not isinstance(event, DoneEvent) or not event.full_text:
            return
        if self._captured:
            logger.debug(
                "Ignoring duplicate completion for conversation=%s",
                self._conversation_id,
            )
            return
        self._captured = True

        try:
            message_id, _ = await self._repo.add_message(
                self._conversation_id, "assistant", event.full_text
            )
        except Exception:
            logger.exception(
                "Failed to store assistant reply for conversation=%s",
                self._conversation_id,
            )
            return

        self.message_id = message_id
        logger.info(
            "Response stored: %d chars for conversation=%s",
            len(event.full_text),
            self._conversation_id,
        )


__all__ = ["AssistantReplyRecorder"]
