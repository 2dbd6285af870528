"""Pydantic models for chat requests and responses."""

from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_MEDIA_TYPE_ALIASES = {"image/jpg": "image/jpeg"}


class ImageAttachment(BaseModel):
    """Base64 image attached to the newest user turn only."""

    base64: str
    media_type: str = Field(alias="mediaType")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("media_type")
    @classmethod
    def _normalize_media_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        return _MEDIA_TYPE_ALIASES.get(normalized, normalized)


class ChatMessageRequest(BaseModel):
    """Incoming chat message payload.

    Length and emptiness checks depend on runtime settings and are applied by
    the orchestrator, so ``content`` is accepted loosely here.
    """

    content: Any = None
    image_data: Optional[ImageAttachment] = Field(default=None, alias="imageData")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class StoredMessage(BaseModel):
    """A persisted conversation message as exposed to the browser."""

    role: Literal["user", "assistant"]
    content: str
    created_at: Optional[str] = None


class ChatHistoryResponse(BaseModel):
    messages: List[StoredMessage]


class OkResponse(BaseModel):
    ok: bool = True


__all__ = [
    "ChatHistoryResponse",
    "ChatMessageRequest",
    "ImageAttachment",
    "OkResponse",
    "StoredMessage",
]
