"""Session lookup and request guards for authenticated routes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from fastapi import Depends, Request, status

from .config import Settings, get_settings
from .errors import ChatRequestError

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"
USERNAME_HEADER = "X-Username"

_SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


@dataclass(frozen=True)
class SessionUser:
    """Identity handed to the chat core by the session layer."""

    user_id: str
    username: str


class SessionProvider(Protocol):
    async def get_session(self, request: Request) -> Optional[SessionUser]:
        ...


class TrustedHeaderSessionProvider:
    """Read an identity already validated by an authenticating front proxy."""

    def __init__(
        self,
        *,
        user_id_header: str = USER_ID_HEADER,
        username_header: str = USERNAME_HEADER,
    ) -> None:
        self._user_id_header = user_id_header
        self._username_header = username_header

    async def get_session(self, request: Request) -> Optional[SessionUser]:
        user_id = (request.headers.get(self._user_id_header) or "").strip()
        if not user_id:
            return None
        username = (request.headers.get(self._username_header) or "").strip()
        return SessionUser(user_id=user_id, username=username or user_id)


def get_session_provider(request: Request) -> SessionProvider:
    provider = getattr(request.app.state, "session_provider", None)
    if provider is None:
        provider = TrustedHeaderSessionProvider()
        request.app.state.session_provider = provider
    return provider


async def require_session(
    request: Request,
    provider: SessionProvider = Depends(get_session_provider),
) -> SessionUser:
    """Resolve the session or reject the request with 401."""

    session = await provider.get_session(request)
    if session is None:
        logger.info("%s %s -> 401 (no session)", request.method, request.url.path)
        raise ChatRequestError(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    return session


def get_request_settings(request: Request) -> Settings:
    """Return the settings the running app was built with."""

    settings = getattr(request.app.state, "settings", None)
    if isinstance(settings, Settings):
        return settings
    return get_settings()


def verify_origin(
    request: Request,
    session: SessionUser = Depends(require_session),
    settings: Settings = Depends(get_request_settings),
) -> SessionUser:
    """Reject state-changing requests whose Origin is missing or not allowed.

    Session credentials are only sent by browsers, and browsers always
    attach ``Origin`` to POST requests. The session is resolved first so an
    anonymous request is answered with 401 whatever its Origin.
    """

    if request.method in _SAFE_METHODS:
        return session
    origin = request.headers.get("Origin")
    if not origin or origin not in settings.allowed_origins:
        logger.info(
            "%s %s -> 403 (origin %s not allowed)",
            request.method,
            request.url.path,
            origin or "missing",
        )
        raise ChatRequestError(status.HTTP_403_FORBIDDEN, "Forbidden")
    return session


__all__ = [
    "SessionProvider",
    "SessionUser",
    "TrustedHeaderSessionProvider",
    "get_request_settings",
    "get_session_provider",
    "require_session",
    "verify_origin",
]
