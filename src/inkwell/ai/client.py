"""Async client for streamed chat completions over raw HTTP."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, replace
from typing import Mapping, Set

import httpx

from .errors import SerializationError, ServiceError, TransportError
from .messages import ChatRequest
from .stream import EventChannel, StreamDecoder, StreamItem

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4"
COMPLETIONS_PATH = "/chat/completions"


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the AI client."""

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    request_timeout: float | None = 90.0
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False

    @property
    def completions_url(self) -> str:
        return self.base_url.rstrip("/") + COMPLETIONS_PATH


class AIClient:
    """Issues one streamed completion request per call.

    Without an injected ``http_client`` every request opens a fresh
    :class:`httpx.AsyncClient` that is closed once the stream has been fully
    read. An injected client is shared and never closed here.
    """

    def __init__(self, settings: ClientSettings, *, http_client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._http_client = http_client
        self._tasks: Set[asyncio.Task[None]] = set()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def stream_completion(self, request: ChatRequest) -> EventChannel[StreamItem]:
        """Send ``request`` and return a channel of decoded stream events.

        Returns as soon as the response status is known; the body is decoded
        by a background task. Non-200 responses are drained and raised as
        :class:`ServiceError`.
        """

        request = replace(request, stream=True)
        body = self._serialize(request)
        if self._settings.debug_logging:
            self._log_prompt_payload(request.to_payload())
        LOGGER.debug(
            "Starting streamed chat completion via %s with %s message(s)",
            request.model,
            len(request.messages),
        )

        client = self._http_client or self._build_client()
        owns_client = self._http_client is None
        try:
            http_request = client.build_request(
                "POST",
                self._settings.completions_url,
                content=body,
                headers=self._headers(),
            )
            response = await client.send(http_request, stream=True)
        except httpx.HTTPError as exc:
            if owns_client:
                await client.aclose()
            raise TransportError(f"Failed to send chat completion request: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            try:
                detail = await self._drain(response)
            finally:
                await response.aclose()
                if owns_client:
                    await client.aclose()
            raise ServiceError(response.status_code, detail)

        channel: EventChannel[StreamItem] = EventChannel()
        task = asyncio.create_task(self._pump(response, channel, client if owns_client else None))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return channel

    async def aclose(self) -> None:
        """Wait for any in-flight stream readers to finish."""

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._settings.request_timeout)

    def _headers(self) -> dict[str, str]:
        headers = dict(self._settings.default_headers or {})
        headers["Content-Type"] = "application/json"
        headers["Authorization"] = f"Bearer {self._settings.api_key}"
        return headers

    def _log_prompt_payload(self, payload: Mapping[str, object]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI request payload (unserializable): %s", payload)
        else:
            LOGGER.debug("AI request payload:\n%s", serialized)

    @staticmethod
    def _serialize(request: ChatRequest) -> bytes:
        try:
            return json.dumps(request.to_payload(), ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"Unable to encode chat request: {exc}") from exc

    @staticmethod
    async def _drain(response: httpx.Response) -> str:
        try:
            await response.aread()
        except httpx.HTTPError as exc:
            raise TransportError(f"Failed to read error response body: {exc}") from exc
        return response.text

    @staticmethod
    async def _pump(
        response: httpx.Response,
        channel: EventChannel[StreamItem],
        owned_client: httpx.AsyncClient | None,
    ) -> None:
        try:
            await StreamDecoder(channel).run(response.aiter_bytes())
        finally:
            await response.aclose()
            if owned_client is not None:
                await owned_client.aclose()


__all__ = ["AIClient", "ClientSettings", "COMPLETIONS_PATH", "DEFAULT_BASE_URL", "DEFAULT_MODEL"]
