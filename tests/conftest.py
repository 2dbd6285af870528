import json
import pathlib
import sys
from typing import Any, Callable, Iterator

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


def build_anthropic_stream(*texts: str, stop: bool = True) -> bytes:
    """Encode text deltas the way the Messages API streams them."""

    frames: list[dict[str, Any]] = [
        {"type": "message_start", "message": {"id": "msg_1", "content": []}},
        {
            "type": "content_block_start",
            "index": 0,
            "content_block": {"type": "text", "text": ""},
        },
    ]
    for text in texts:
        frames.append(
            {
                "type": "content_block_delta",
                "index": 0,
                "delta": {"type": "text_delta", "text": text},
            }
        )
    frames.append({"type": "content_block_stop", "index": 0})
    frames.append(
        {
            "type": "message_delta",
            "delta": {"stop_reason": "end_turn"},
            "usage": {"output_tokens": 5},
        }
    )
    if stop:
        frames.append({"type": "message_stop"})

    body = "".join(
        f"event: {frame['type']}\ndata: {json.dumps(frame, ensure_ascii=False)}\n\n"
        for frame in frames
    )
    return body.encode("utf-8")


@pytest.fixture
def anthropic_stream() -> Callable[..., bytes]:
    return build_anthropic_stream


@pytest.fixture(autouse=True)
def reset_sse_app_status() -> Iterator[None]:
    """sse-starlette caches a shutdown event bound to the first event loop."""

    from sse_starlette import sse

    app_status = getattr(sse, "AppStatus", None)
    if app_status is not None and hasattr(app_status, "should_exit_event"):
        app_status.should_exit_event = None
    yield
    if app_status is not None and hasattr(app_status, "should_exit_event"):
        app_status.should_exit_event = None
