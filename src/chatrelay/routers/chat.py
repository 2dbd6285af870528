"""Chat streaming API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from ..chat.orchestrator import ChatOrchestrator
from ..schemas.chat import (
    ChatHistoryResponse,
    ChatMessageRequest,
    OkResponse,
    StoredMessage,
)
from ..session import SessionUser, require_session, verify_origin

router = APIRouter(
    prefix="/api/chat",
    tags=["chat"],
    dependencies=[Depends(verify_origin)],
)

# Proxies must not cache or buffer the stream.
_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def get_orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.chat_orchestrator


@router.post("/message", response_model=None, status_code=200)
async def post_chat_message(
    payload: ChatMessageRequest,
    session: SessionUser = Depends(require_session),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> EventSourceResponse:
    """Store the user turn and stream the assistant reply as SSE frames."""

    # Rejections raised here happen before any response framing starts.
    pending = await orchestrator.prepare_turn(session, payload)

    return EventSourceResponse(
        orchestrator.stream_turn(pending),
        headers=_STREAM_HEADERS,
        sep="\n",
    )


@router.get("/history", response_model=ChatHistoryResponse)
async def get_chat_history(
    session: SessionUser = Depends(require_session),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> ChatHistoryResponse:
    """Return the messages of the user's active conversation."""

    messages = await orchestrator.get_history(session)
    return ChatHistoryResponse(
        messages=[
            StoredMessage(
                role=item["role"],
                content=item["content"],
                created_at=item.get("created_at"),
            )
            for item in messages
        ]
    )


@router.post("/new", response_model=OkResponse)
async def start_new_conversation(
    session: SessionUser = Depends(require_session),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> OkResponse:
    """Deactivate the current conversation and start a fresh one."""

    await orchestrator.start_new_conversation(session)
    return OkResponse()


@router.post("/clear", response_model=OkResponse)
async def clear_conversations(
    session: SessionUser = Depends(require_session),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> OkResponse:
    """Permanently delete every conversation owned by the user."""

    await orchestrator.clear_conversations(session)
    return OkResponse()


__all__ = ["get_orchestrator", "router"]
