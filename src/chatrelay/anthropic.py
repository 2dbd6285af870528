"""Anthropic Messages API streaming client."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncGenerator, Optional, Sequence

import httpx

from .chat.streaming.decoder import decode_stream
from .chat.streaming.events import ErrorEvent, StreamEvent
from .config import Settings

logger = logging.getLogger(__name__)

_EMPTY_ERROR_BODY = "Anthropic returned an empty error response."


class AnthropicClient:
    """Client responsible for streaming message completions from Anthropic."""

    _client_lock: asyncio.Lock = asyncio.Lock()
    _client_pool: dict[tuple[str, float], httpx.AsyncClient] = {}

    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings
        # An explicit transport gets a private client instead of a pooled one.
        self._transport = transport
        self._private_client: httpx.AsyncClient | None = None

    def _client_key(self) -> tuple[str, float]:
        return (self._base_url, float(self._settings.request_timeout))

    def _build_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self._settings.request_timeout, connect=10.0)

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._transport is not None:
            if self._private_client is None:
                self._private_client = httpx.AsyncClient(
                    transport=self._transport,
                    timeout=self._build_timeout(),
                )
            return self._private_client

        key = self._client_key()
        client = self.__class__._client_pool.get(key)
        if client is not None:
            return client

        async with self.__class__._client_lock:
            client = self.__class__._client_pool.get(key)
            if client is None:
                limits = httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=20,
                )
                client = httpx.AsyncClient(
                    timeout=self._build_timeout(),
                    limits=limits,
                    http2=True,
                )
                self.__class__._client_pool[key] = client
        return client

    @property
    def _headers(self) -> dict[str, str]:
        api_key = self._settings.anthropic_api_key
        return {
            "x-api-key": api_key.get_secret_value() if api_key else "",
            "anthropic-version": self._settings.anthropic_version,
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

    @property
    def _base_url(self) -> str:
        """Return the Anthropic API base URL without a trailing slash."""

        return str(self._settings.anthropic_base_url).rstrip("/")

    def build_payload(
        self,
        *,
        system: str,
        messages: Sequence[dict[str, Any]],
        model: str | None = None,
    ) -> dict[str, Any]:
        return {
            "model": model or self._settings.default_model,
            "max_tokens": self._settings.max_tokens,
            "system": system,
            "messages": list(messages),
            "stream": True,
        }

    async def stream_message(
        self,
        *,
        system: str,
        messages: Sequence[dict[str, Any]],
        model: str | None = None,
    ) -> AsyncGenerator[StreamEvent, None]:
        """Stream one completion as normalized events.

        Failures never escape this generator: a non-success status or a
        transport error is reported as a single terminal ``ErrorEvent``.
        """

        payload = self.build_payload(system=system, messages=messages, model=model)
        url = f"{self._base_url}/messages"

        terminated = False
        client = await self._get_http_client()
        try:
            async with client.stream(
                "POST",
                url,
                headers=self._headers,
                json=payload,
            ) as response:
                if not response.is_success:
                    body = await response.aread()
                    detail = self._extract_error_detail(body)
                    logger.warning(
                        "Anthropic request failed with status %s: %.500s",
                        response.status_code,
                        detail,
                    )
                    yield ErrorEvent(detail)
                    return

                logger.debug(
                    "Reading Anthropic SSE stream for model %s", payload["model"]
                )
                async for event in decode_stream(response.aiter_bytes()):
                    terminated = event.terminal
                    yield event
        except httpx.HTTPError as exc:
            logger.warning("Anthropic transport error: %s", exc)
            if terminated:
                return
            yield ErrorEvent(str(exc) or exc.__class__.__name__)

    async def aclose(self) -> None:
        if self._private_client is not None:
            await self._private_client.aclose()
            self._private_client = None
        await self.__class__.aclose_shared()

    @classmethod
    async def aclose_shared(cls) -> None:
        async with cls._client_lock:
            clients = list(cls._client_pool.values())
            cls._client_pool.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                pass

    @staticmethod
    def _extract_error_detail(raw: bytes) -> str:
        if not raw:
            return _EMPTY_ERROR_BODY
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            return raw.decode("utf-8", errors="ignore")


__all__ = ["AnthropicClient"]
