"""High-level coordination of chat turns."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncGenerator

from fastapi import status

from ..anthropic import AnthropicClient
from ..config import PROJECT_ROOT, Settings
from ..errors import ChatRequestError, bad_request
from ..repository import ChatRepository, MessageRecord
from ..schemas.chat import ChatMessageRequest, ImageAttachment
from ..session import SessionUser
from .context import ContextBuilder, PreparedContext
from .streaming import AssistantReplyRecorder, SseEvent, StreamRelay
from .turn import ChatTurn, TurnState


logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 100


def _preview(content: str) -> str:
    if len(content) <= _PREVIEW_CHARS:
        return content
    return f"{content[:_PREVIEW_CHARS]}..."


@dataclass
class PendingTurn:
    """Everything needed to stream one reply after the user turn is stored."""

    context: PreparedContext
    turn: ChatTurn
    recorder: AssistantReplyRecorder = field(repr=False)


class ChatOrchestrator:
    """Coordinate validation, context building, streaming, and persistence."""

    def __init__(
        self,
        settings: Settings,
        *,
        repository: ChatRepository | None = None,
        client: AnthropicClient | None = None,
    ):
        db_path = settings.chat_database_path
        if not db_path.is_absolute():
            db_path = PROJECT_ROOT / db_path

        self._settings = settings
        self._repo = repository or ChatRepository(Path(db_path))
        self._client = client or AnthropicClient(settings)
        self._context = ContextBuilder(self._repo, max_history=settings.max_history)
        self._init_lock = asyncio.Lock()
        self._ready = asyncio.Event()

    async def initialize(self) -> None:
        """Open the database once."""

        async with self._init_lock:
            if self._ready.is_set():
                return

            await self._repo.initialize()
            self._ready.set()
            logger.info(
                "Chat orchestrator ready: model=%s max_history=%d",
                self._settings.default_model,
                self._settings.max_history,
            )

    async def shutdown(self) -> None:
        """Clean up held resources."""

        try:
            await asyncio.wait_for(self._client.aclose(), timeout=2.0)
        except (asyncio.TimeoutError, Exception) as exc:
            logger.warning("Error closing Anthropic client: %s", exc)

        try:
            await asyncio.wait_for(self._repo.close(), timeout=2.0)
        except (asyncio.TimeoutError, Exception) as exc:
            logger.warning("Error closing repository: %s", exc)

        self._ready.clear()

    def validate_message(
        self, payload: ChatMessageRequest
    ) -> tuple[str, ImageAttachment | None]:
        """Return the trimmed content and image, or raise before any side effect."""

        content = payload.content
        if not isinstance(content, str) or not content.strip():
            logger.info("Message rejected: empty content")
            raise bad_request("Message content is required")

        limit = self._settings.max_message_length
        if len(content) > limit:
            logger.info("Message rejected: too long (%d chars)", len(content))
            raise bad_request(f"Message too long. Maximum {limit} characters.")

        image = payload.image_data
        if image is not None:
            if image.media_type not in self._settings.allowed_image_media_types:
                logger.info(
                    "Message rejected: unsupported image type %s", image.media_type
                )
                raise bad_request(f"Unsupported image type: {image.media_type}")
            if not image.base64.strip():
                logger.info("Message rejected: empty image data")
                raise bad_request("Image data is empty")

        if not self._settings.api_key_configured:
            logger.error("ANTHROPIC_API_KEY not configured")
            raise ChatRequestError(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "API key not configured"
            )

        return content.strip(), image

    async def prepare_turn(
        self, session: SessionUser, payload: ChatMessageRequest
    ) -> PendingTurn:
        """Validate, store the user message, and build the upstream context."""

        await self._ready.wait()

        content, image = self.validate_message(payload)
        logger.info(
            "Message from user=%s: %r (%d chars)%s",
            session.username,
            _preview(content),
            len(content),
            " +image" if image is not None else "",
        )

        conversation = await self._repo.get_or_create_active_conversation(
            session.user_id
        )
        conversation_id = conversation["id"]
        logger.info(
            "Conversation id=%s for user=%s", conversation_id, session.user_id
        )

        turn = ChatTurn(conversation_id)
        context = await self._context.prepare(
            conversation_id, content, image, turn=turn
        )
        recorder = AssistantReplyRecorder(self._repo, conversation_id)
        return PendingTurn(context=context, turn=turn, recorder=recorder)

    async def stream_turn(self, pending: PendingTurn) -> AsyncGenerator[SseEvent, None]:
        """Relay the upstream reply to the client while recording it once."""

        pending.turn.advance(TurnState.AWAIT_UPSTREAM)
        events = self._client.stream_message(
            system=self._settings.system_prompt,
            messages=pending.context.messages,
        )
        relay = StreamRelay([pending.recorder], turn=pending.turn)
        async for frame in relay.relay(events):
            yield frame

    async def get_history(self, session: SessionUser) -> list[MessageRecord]:
        conversation = await self._repo.get_or_create_active_conversation(
            session.user_id
        )
        messages = await self._repo.get_messages(
            conversation["id"], self._settings.max_history
        )
        logger.info(
            "History loaded: %d messages for user=%s conversation=%s",
            len(messages),
            session.username,
            conversation["id"],
        )
        return messages

    async def start_new_conversation(self, session: SessionUser) -> int:
        logger.info("New conversation for user=%s", session.username)
        conversation = await self._repo.start_new_conversation(session.user_id)
        return conversation["id"]

    async def clear_conversations(self, session: SessionUser) -> None:
        logger.info("Clearing all conversations for user=%s", session.username)
        await self._repo.clear_conversations(session.user_id)


__all__ = ["ChatOrchestrator", "PendingTurn"]
