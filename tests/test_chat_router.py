from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Iterator

import httpx
import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr

from chatrelay.anthropic import AnthropicClient
from chatrelay.app import create_app
from chatrelay.config import Settings

ORIGIN = "http://localhost:5173"
SESSION_HEADERS = {
    "X-User-Id": "user-1",
    "X-Username": "ada",
    "Origin": ORIGIN,
}

Handler = Callable[[httpx.Request], httpx.Response]


class UpstreamRecorder:
    """Mock transport handler that serves queued bodies and keeps requests."""

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self.responses: list[httpx.Response] = []

    def queue(self, response: httpx.Response) -> None:
        self.responses.append(response)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        return self.responses.pop(0)


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "anthropic_api_key": SecretStr("test-key"),
        "anthropic_base_url": "https://upstream.test/v1",
        "default_model": "claude-test",
        "system_prompt": "You are a tutor.",
        "chat_database_path": tmp_path / "chat.db",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def upstream() -> UpstreamRecorder:
    return UpstreamRecorder()


def build_client(settings: Settings, handler: Handler) -> TestClient:
    anthropic = AnthropicClient(settings, transport=httpx.MockTransport(handler))
    return TestClient(create_app(settings, client=anthropic))


@pytest.fixture
def client(tmp_path: Path, upstream: UpstreamRecorder) -> Iterator[TestClient]:
    with build_client(make_settings(tmp_path), upstream) as test_client:
        yield test_client


def parse_frames(body: str) -> list[dict[str, Any]]:
    frames: list[dict[str, Any]] = []
    for block in body.split("\n\n"):
        for line in block.splitlines():
            if line.startswith("data: "):
                frames.append(json.loads(line[len("data: ") :]))
    return frames


def history(client: TestClient) -> list[dict[str, Any]]:
    response = client.get("/api/chat/history", headers=SESSION_HEADERS)
    assert response.status_code == 200
    return response.json()["messages"]


def send(client: TestClient, content: Any, **extra: Any) -> httpx.Response:
    payload = {"content": content, **extra}
    return client.post("/api/chat/message", json=payload, headers=SESSION_HEADERS)


def test_streams_reply_and_stores_both_turns(client, upstream, anthropic_stream):
    upstream.queue(httpx.Response(200, content=anthropic_stream("4", " is the answer.")))

    response = send(client, "2+2?")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    assert parse_frames(response.text) == [
        {"type": "delta", "text": "4"},
        {"type": "delta", "text": " is the answer."},
        {"type": "done", "fullText": "4 is the answer."},
    ]
    assert [(m["role"], m["content"]) for m in history(client)] == [
        ("user", "2+2?"),
        ("assistant", "4 is the answer."),
    ]


def test_frames_use_exact_wire_format(client, upstream, anthropic_stream):
    upstream.queue(httpx.Response(200, content=anthropic_stream("héllo")))

    response = send(client, "say hello")

    frames = [
        block for block in response.text.split("\n\n") if block.startswith("data:")
    ]
    assert frames == [
        'data: {"type":"delta","text":"héllo"}',
        'data: {"type":"done","fullText":"héllo"}',
    ]


def test_upstream_error_status_becomes_error_frame(client, upstream):
    upstream.queue(httpx.Response(500, content=b"overloaded"))

    response = send(client, "2+2?")

    assert response.status_code == 200
    assert parse_frames(response.text) == [{"type": "error", "error": "overloaded"}]
    assert [(m["role"], m["content"]) for m in history(client)] == [
        ("user", "2+2?"),
    ]


def test_malformed_upstream_line_is_dropped(client, upstream):
    def delta(text: str) -> str:
        event = {
            "type": "content_block_delta",
            "index": 0,
            "delta": {"type": "text_delta", "text": text},
        }
        return f"event: content_block_delta\ndata: {json.dumps(event)}\n\n"

    body = (
        delta("first")
        + "event: content_block_delta\ndata: {not json\n\n"
        + delta(" second")
        + 'event: message_stop\ndata: {"type": "message_stop"}\n\n'
    )
    upstream.queue(httpx.Response(200, content=body.encode("utf-8")))

    response = send(client, "go")

    assert parse_frames(response.text) == [
        {"type": "delta", "text": "first"},
        {"type": "delta", "text": " second"},
        {"type": "done", "fullText": "first second"},
    ]
    assert history(client)[-1]["content"] == "first second"


def test_upstream_request_carries_history_and_system_prompt(
    client, upstream, anthropic_stream
):
    upstream.queue(httpx.Response(200, content=anthropic_stream("4")))
    upstream.queue(httpx.Response(200, content=anthropic_stream("6")))

    send(client, "2+2?")
    send(client, "  3+3?  ")

    second = upstream.requests[1]
    assert second["model"] == "claude-test"
    assert second["system"] == "You are a tutor."
    assert second["stream"] is True
    assert second["messages"] == [
        {"role": "user", "content": "2+2?"},
        {"role": "assistant", "content": "4"},
        {"role": "user", "content": "3+3?"},
    ]


def test_image_is_sent_with_newest_turn_only(client, upstream, anthropic_stream):
    upstream.queue(httpx.Response(200, content=anthropic_stream("a square")))

    send(
        client,
        "What shape?",
        imageData={"base64": "aGVsbG8=", "mediaType": "image/png"},
    )

    content = upstream.requests[0]["messages"][-1]["content"]
    assert content[0]["source"] == {
        "type": "base64",
        "media_type": "image/png",
        "data": "aGVsbG8=",
    }
    assert content[1] == {"type": "text", "text": "What shape?"}
    assert history(client)[0]["content"] == "What shape?"


def test_unsupported_image_type_is_rejected(client, upstream):
    response = send(
        client,
        "What shape?",
        imageData={"base64": "aGVsbG8=", "mediaType": "image/gif"},
    )

    assert response.status_code == 400
    assert upstream.requests == []
    assert history(client) == []


def test_overlong_message_is_rejected_without_side_effects(client, upstream):
    response = send(client, "x" * 5001)

    assert response.status_code == 400
    assert response.json() == {"error": "Message too long. Maximum 5000 characters."}
    assert upstream.requests == []
    assert history(client) == []


def test_message_at_limit_is_accepted(client, upstream, anthropic_stream):
    upstream.queue(httpx.Response(200, content=anthropic_stream("ok")))

    response = send(client, "x" * 5000)

    assert response.status_code == 200
    assert len(history(client)) == 2


@pytest.mark.parametrize("content", ["", "   ", None, 123, ["x"]])
def test_empty_message_is_rejected(client, upstream, content):
    response = send(client, content)

    assert response.status_code == 400
    assert response.json() == {"error": "Message content is required"}
    assert upstream.requests == []


def test_missing_api_key_is_rejected(tmp_path, upstream):
    settings = make_settings(tmp_path, anthropic_api_key=None)

    with build_client(settings, upstream) as test_client:
        response = send(test_client, "2+2?")
        assert history(test_client) == []

    assert response.status_code == 500
    assert response.json() == {"error": "API key not configured"}


def test_missing_session_is_unauthorized(client):
    response = client.post(
        "/api/chat/message", json={"content": "hi"}, headers={"Origin": ORIGIN}
    )

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}


def test_missing_session_wins_over_missing_origin(client, upstream):
    response = client.post("/api/chat/message", json={"content": "hi"})

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}
    assert upstream.requests == []


@pytest.mark.parametrize("origin", [None, "https://evil.example"])
def test_foreign_origin_is_forbidden(client, upstream, origin):
    headers = {k: v for k, v in SESSION_HEADERS.items() if k != "Origin"}
    if origin is not None:
        headers["Origin"] = origin

    response = client.post(
        "/api/chat/message", json={"content": "hi"}, headers=headers
    )

    assert response.status_code == 403
    assert response.json() == {"error": "Forbidden"}
    assert upstream.requests == []


def test_new_conversation_starts_with_empty_history(client, upstream, anthropic_stream):
    upstream.queue(httpx.Response(200, content=anthropic_stream("4")))
    upstream.queue(httpx.Response(200, content=anthropic_stream("hello")))
    send(client, "2+2?")

    response = client.post("/api/chat/new", headers=SESSION_HEADERS)
    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert history(client) == []

    send(client, "hi again")
    assert upstream.requests[1]["messages"] == [{"role": "user", "content": "hi again"}]


def test_clear_removes_all_conversations(client, upstream, anthropic_stream):
    upstream.queue(httpx.Response(200, content=anthropic_stream("4")))
    send(client, "2+2?")

    response = client.post("/api/chat/clear", headers=SESSION_HEADERS)

    assert response.status_code == 200
    assert history(client) == []


def test_history_is_scoped_to_user(client, upstream, anthropic_stream):
    upstream.queue(httpx.Response(200, content=anthropic_stream("4")))
    send(client, "2+2?")

    other = {"X-User-Id": "user-2", "X-Username": "grace"}
    response = client.get("/api/chat/history", headers=other)

    assert response.json() == {"messages": []}


def test_health_reports_configuration(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "model": "claude-test",
        "api_key_configured": True,
    }
