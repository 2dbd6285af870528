"""Tests for assembling the bounded upstream context."""

from __future__ import annotations

import pytest

from chatrelay.chat.context import ContextBuilder, build_messages, build_user_turn
from chatrelay.chat.turn import ChatTurn, InvalidTransition, TurnState
from chatrelay.repository import ChatRepository
from chatrelay.schemas.chat import ImageAttachment


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def repository(tmp_path):
    repo = ChatRepository(tmp_path / "chat.db")
    await repo.initialize()
    try:
        yield repo
    finally:
        await repo.close()


def test_build_messages_plain_text() -> None:
    history = [
        {"id": 1, "role": "user", "content": "2+2?", "created_at": None},
        {"id": 2, "role": "assistant", "content": "4", "created_at": None},
    ]

    messages = build_messages(history, "and 3+3?")

    assert messages == [
        {"role": "user", "content": "2+2?"},
        {"role": "assistant", "content": "4"},
        {"role": "user", "content": "and 3+3?"},
    ]


def test_build_user_turn_with_image() -> None:
    image = ImageAttachment(base64="aGVsbG8=", mediaType="image/jpg")

    turn = build_user_turn("What shape is this?", image)

    assert turn == {
        "role": "user",
        "content": [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": "image/jpeg",
                    "data": "aGVsbG8=",
                },
            },
            {"type": "text", "text": "What shape is this?"},
        ],
    }


@pytest.mark.anyio
async def test_prepare_persists_user_message_before_building(repository):
    conversation = await repository.get_or_create_active_conversation("user-1")
    await repository.add_message(conversation["id"], "user", "earlier question")
    await repository.add_message(conversation["id"], "assistant", "earlier answer")
    builder = ContextBuilder(repository, max_history=50)

    context = await builder.prepare(conversation["id"], "new question")

    stored = await repository.get_messages(conversation["id"], 50)
    assert stored[-1]["id"] == context.user_message_id
    assert stored[-1]["content"] == "new question"
    assert context.history_size == 2
    assert context.messages == [
        {"role": "user", "content": "earlier question"},
        {"role": "assistant", "content": "earlier answer"},
        {"role": "user", "content": "new question"},
    ]


@pytest.mark.anyio
async def test_prepare_respects_history_bound(repository):
    conversation = await repository.get_or_create_active_conversation("user-1")
    for index in range(10):
        role = "user" if index % 2 == 0 else "assistant"
        await repository.add_message(conversation["id"], role, f"m{index}")
    builder = ContextBuilder(repository, max_history=4)

    context = await builder.prepare(conversation["id"], "latest")

    # The window of four includes the just-stored turn, which is re-attached.
    assert [item["content"] for item in context.messages] == [
        "m7",
        "m8",
        "m9",
        "latest",
    ]


@pytest.mark.anyio
async def test_prepare_never_replays_images(repository):
    conversation = await repository.get_or_create_active_conversation("user-1")
    builder = ContextBuilder(repository, max_history=50)
    image = ImageAttachment(base64="aGVsbG8=", mediaType="image/png")

    first = await builder.prepare(conversation["id"], "look at this", image)
    await repository.add_message(conversation["id"], "assistant", "a triangle")
    second = await builder.prepare(conversation["id"], "how many sides?")

    assert isinstance(first.messages[-1]["content"], list)
    assert second.messages == [
        {"role": "user", "content": "look at this"},
        {"role": "assistant", "content": "a triangle"},
        {"role": "user", "content": "how many sides?"},
    ]


@pytest.mark.anyio
async def test_prepare_advances_turn(repository):
    conversation = await repository.get_or_create_active_conversation("user-1")
    builder = ContextBuilder(repository, max_history=50)
    turn = ChatTurn(conversation["id"])

    await builder.prepare(conversation["id"], "hi", turn=turn)

    assert turn.history == (
        TurnState.INIT,
        TurnState.PERSIST_USER_MSG,
        TurnState.FETCH_HISTORY,
        TurnState.BUILD_REQUEST,
    )


def test_turn_rejects_revisits_and_continuing_after_failure() -> None:
    turn = ChatTurn()
    turn.advance(TurnState.AWAIT_UPSTREAM)

    with pytest.raises(InvalidTransition):
        turn.advance(TurnState.BUILD_REQUEST)

    turn.advance(TurnState.FAIL)
    with pytest.raises(InvalidTransition):
        turn.advance(TurnState.FINALIZE_PERSISTENCE)

    turn.advance(TurnState.CLOSED)
    assert turn.closed
