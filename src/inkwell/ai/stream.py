"""Incremental decoding of ``data:``-framed chat completion streams.

The response body is split into newline-terminated frames as bytes arrive.
Frames that start with ``data: `` carry one JSON encoded
:class:`~inkwell.ai.messages.ChatStreamEvent`; everything else (blank
keep-alives, ``:`` comments, ``event:`` lines) is ignored. Decoded events and
per-frame decode failures are published, in arrival order, on an unbounded
:class:`EventChannel` so the byte reader never waits on the consumer.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterable, AsyncIterator, Generic, TypeVar, Union

import httpx

from .errors import FrameDecodeError, TransportError
from .messages import ChatStreamEvent

LOGGER = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_MARKER = "[DONE]"
_DATA_PREFIX_BYTES = DATA_PREFIX.encode("ascii")

T = TypeVar("T")
StreamItem = Union[ChatStreamEvent, FrameDecodeError, TransportError]


class LineReader:
    """Split an async byte stream into complete lines.

    Lines are yielded without their terminator (``\\n`` or ``\\r\\n``). Bytes
    left over after the final terminator are dropped when the stream ends.
    """

    def __init__(self, chunks: AsyncIterable[bytes]) -> None:
        self._chunks = chunks

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._lines()

    async def _lines(self) -> AsyncIterator[bytes]:
        buffer = bytearray()
        async for chunk in self._chunks:
            if not chunk:
                continue
            search_from = len(buffer)
            buffer.extend(chunk)
            while True:
                newline = buffer.find(b"\n", search_from)
                if newline < 0:
                    break
                line = bytes(buffer[:newline])
                del buffer[: newline + 1]
                search_from = 0
                if line.endswith(b"\r"):
                    line = line[:-1]
                yield line
        if buffer:
            LOGGER.debug("Dropping %s byte(s) of unterminated trailing line", len(buffer))


def decode_frame(line: bytes | str, *, line_number: int | None = None) -> ChatStreamEvent | None:
    """Decode one frame, returning ``None`` for frames that carry no event.

    Raises :class:`FrameDecodeError` when a ``data:`` frame holds invalid
    UTF-8, invalid JSON or JSON that does not describe a stream event.
    """

    if isinstance(line, bytes):
        if not line.startswith(_DATA_PREFIX_BYTES):
            return None
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FrameDecodeError(
                f"Frame is not valid UTF-8: {exc}", payload=line.decode("utf-8", "replace"), line_number=line_number
            ) from exc
    if not line.startswith(DATA_PREFIX):
        return None

    data = line[len(DATA_PREFIX) :]
    if data.strip() == DONE_MARKER:
        return None
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as exc:
        raise FrameDecodeError(f"Frame is not valid JSON: {exc}", payload=data, line_number=line_number) from exc
    try:
        return ChatStreamEvent.from_payload(payload)
    except FrameDecodeError as exc:
        raise FrameDecodeError(
            f"Frame does not describe a stream event: {exc}", payload=data, line_number=line_number
        ) from exc


class _Closed:
    __slots__ = ()


_CLOSED = _Closed()


class EventChannel(Generic[T]):
    """Unbounded FIFO channel with a single producer and a single consumer.

    Iterating the channel yields items until :meth:`close` has been called
    and every item sent before it has been received.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[T | _Closed] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, item: T) -> None:
        if self._closed:
            raise RuntimeError("Cannot send on a closed channel")
        self._queue.put_nowait(item)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> EventChannel[T]:
        return self

    async def __anext__(self) -> T:
        item = await self._queue.get()
        if isinstance(item, _Closed):
            # Leave the marker in place so later reads also see end-of-stream.
            self._queue.put_nowait(item)
            raise StopAsyncIteration
        return item


class StreamDecoder:
    """Reads a response body and republishes decoded frames on a channel."""

    def __init__(self, channel: EventChannel[StreamItem]) -> None:
        self._channel = channel
        self.events = 0
        self.failures = 0

    async def run(self, chunks: AsyncIterable[bytes]) -> None:
        line_number = 0
        try:
            async for line in LineReader(chunks):
                line_number += 1
                try:
                    event = decode_frame(line, line_number=line_number)
                except FrameDecodeError as exc:
                    self.failures += 1
                    self._channel.send(exc)
                    continue
                if event is not None:
                    self.events += 1
                    self._channel.send(event)
        except httpx.HTTPError as exc:
            LOGGER.debug("Response body read failed after %s line(s): %s", line_number, exc)
            self._channel.send(TransportError(f"Stream interrupted: {exc}"))
        finally:
            self._channel.close()
            LOGGER.debug(
                "Stream decoder finished (lines=%s, events=%s, failures=%s)",
                line_number,
                self.events,
                self.failures,
            )


__all__ = [
    "DATA_PREFIX",
    "DONE_MARKER",
    "EventChannel",
    "LineReader",
    "StreamDecoder",
    "StreamItem",
    "decode_frame",
]
