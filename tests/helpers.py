"""Shared test helpers for building fake completion streams."""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Callable, Iterable, Mapping

import httpx


def chunk_payload(
    content: str | None = None,
    *,
    role: str | None = None,
    finish_reason: str | None = None,
    index: int = 0,
    choices: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Return a JSON-ready stream event with a single choice by default."""

    if choices is None:
        delta: dict[str, Any] = {}
        if role is not None:
            delta["role"] = role
        if content is not None:
            delta["content"] = content
        choices = [{"index": index, "delta": delta, "finish_reason": finish_reason}]
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion.chunk",
        "created": 1_700_000_000,
        "model": "gpt-4",
        "choices": choices,
    }


def frame(payload: Mapping[str, Any] | str) -> bytes:
    body = payload if isinstance(payload, str) else json.dumps(payload)
    return f"data: {body}\n".encode("utf-8")


def stream_body(*contents: str | None, finish: bool = True) -> bytes:
    """Wire body for a typical response: role delta, text deltas, finish delta."""

    parts = [frame(chunk_payload(role="assistant"))]
    parts.extend(frame(chunk_payload(text)) for text in contents)
    if finish:
        parts.append(frame(chunk_payload(finish_reason="stop")))
    parts.append(b"data: [DONE]\n\n")
    return b"".join(parts)


async def iter_chunks(chunks: Iterable[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


class RecordingTransport(httpx.MockTransport):
    """Mock transport that remembers every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: list[httpx.Request] = []

        def _handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(_handler)


def json_body(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content.decode("utf-8"))
