"""Exceptions mapped to JSON error responses."""

from __future__ import annotations

from fastapi import Request, status
from fastapi.responses import JSONResponse


class ChatRequestError(Exception):
    """A request rejected before any streaming or persistence happened."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def bad_request(message: str) -> ChatRequestError:
    return ChatRequestError(status.HTTP_400_BAD_REQUEST, message)


async def chat_request_error_handler(
    request: Request, exc: ChatRequestError
) -> JSONResponse:
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


__all__ = ["ChatRequestError", "bad_request", "chat_request_error_handler"]
