"""End-to-end tests for the assist command and insertion sink."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

import httpx
import pytest

from inkwell.ai.assist import apply_stream, assist, build_request
from inkwell.ai.client import AIClient, ClientSettings
from inkwell.ai.errors import FrameDecodeError, ServiceError, TransportError
from inkwell.ai.framing import prepare_insertion
from inkwell.ai.messages import ChatStreamEvent, Role
from inkwell.ai.prompts import LEFT_MARKER
from inkwell.ai.stream import EventChannel
from inkwell.core.ranges import TextRange
from inkwell.editor.document_model import DocumentBuffer
from inkwell.services.settings import Settings

from tests.helpers import RecordingTransport, chunk_payload, frame, json_body, stream_body


def _event(content: str | None = None, **kwargs) -> ChatStreamEvent:
    return ChatStreamEvent.from_payload(chunk_payload(content, **kwargs))


def _closed_channel(*items) -> EventChannel:
    channel: EventChannel = EventChannel()
    for item in items:
        channel.send(item)
    channel.close()
    return channel


@pytest.mark.asyncio
async def test_apply_stream_inserts_deltas_in_order_at_anchor() -> None:
    buffer = DocumentBuffer("abc")
    framed = prepare_insertion(buffer, [])
    channel = _closed_channel(_event(role="assistant"), _event("Hel"), _event("lo"), _event(finish_reason="stop"))

    report = await apply_stream(buffer, framed.anchor, channel)

    assert buffer.text == "abc\n\nHello\n\n"
    assert (report.events, report.insertions, report.inserted_chars) == (4, 2, 5)
    assert report.finish_reason == "stop"


@pytest.mark.asyncio
async def test_apply_stream_ignores_null_content_without_mutation() -> None:
    buffer = DocumentBuffer("abc\n\n\n\n")
    anchor = buffer.anchor_after(5)
    null_delta = ChatStreamEvent.from_payload(
        chunk_payload(choices=[{"index": 0, "delta": {"content": None}, "finish_reason": None}])
    )

    report = await apply_stream(buffer, anchor, _closed_channel(null_delta, _event(choices=[])))

    assert buffer.version == 1
    assert report.events == 2
    assert report.insertions == 0


@pytest.mark.asyncio
async def test_apply_stream_applies_only_the_last_choice() -> None:
    buffer = DocumentBuffer("doc\n\n\n\n")
    anchor = buffer.anchor_after(5)
    event = ChatStreamEvent.from_payload(
        chunk_payload(
            choices=[
                {"index": 0, "delta": {"content": "first"}},
                {"index": 1, "delta": {"content": "X"}},
            ]
        )
    )

    await apply_stream(buffer, anchor, _closed_channel(event))

    assert buffer.text == "doc\n\nX\n\n"


@pytest.mark.asyncio
async def test_apply_stream_logs_and_skips_decode_failures(caplog: pytest.LogCaptureFixture) -> None:
    buffer = DocumentBuffer("doc\n\n\n\n")
    anchor = buffer.anchor_after(5)
    failure = FrameDecodeError("Frame is not valid JSON", payload="{malformed}", line_number=3)

    with caplog.at_level(logging.WARNING, logger="inkwell.ai.assist"):
        report = await apply_stream(buffer, anchor, _closed_channel(_event("a"), failure, _event("b")))

    assert buffer.text == "doc\n\nab\n\n"
    assert report.decode_failures == 1
    warnings = [record for record in caplog.records if record.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "line 3" in warnings[0].getMessage()


@pytest.mark.asyncio
async def test_apply_stream_raises_transport_errors_after_partial_text() -> None:
    buffer = DocumentBuffer("doc\n\n\n\n")
    anchor = buffer.anchor_after(5)

    with pytest.raises(TransportError):
        await apply_stream(buffer, anchor, _closed_channel(_event("par"), TransportError("reset"), _event("x")))

    assert buffer.text == "doc\n\npar\n\n"


@pytest.mark.asyncio
async def test_apply_stream_tolerates_concurrent_user_edits() -> None:
    buffer = DocumentBuffer("body")
    framed = prepare_insertion(buffer, [])
    channel: EventChannel = EventChannel()

    sink = asyncio.create_task(apply_stream(buffer, framed.anchor, channel))
    channel.send(_event("one "))
    await asyncio.sleep(0)
    buffer.edit([((0, 0), "# Title\n")])
    buffer.edit([((len(buffer.text), len(buffer.text)), "footer")])
    channel.send(_event("two"))
    channel.close()
    await sink

    assert buffer.text == "# Title\nbody\n\none two\n\nfooter"


def test_build_request_sends_system_then_user_prompt() -> None:
    request = build_request("framed", model="gpt-4")

    assert [message.role for message in request.messages] == [Role.SYSTEM, Role.USER]
    assert LEFT_MARKER in request.messages[0].content
    assert request.messages[1].content == "framed"


@pytest.mark.asyncio
async def test_assist_streams_reply_into_document(client_settings: ClientSettings) -> None:
    transport = RecordingTransport(lambda request: httpx.Response(200, content=stream_body("> Sure", "\n<")))
    buffer = DocumentBuffer("/explain this\nnotes")

    async with httpx.AsyncClient(transport=transport) as http_client:
        client = AIClient(client_settings, http_client=http_client)
        task = assist(buffer, [TextRange(0, 13)], client=client)
        assert task is not None
        assert buffer.text == "/explain this\nnotes\n\n\n\n"
        report = await task

    assert buffer.text == "/explain this\nnotes\n\n> Sure\n<\n\n"
    assert report.inserted_chars == len("> Sure\n<")
    payload = json_body(transport.requests[0])
    assert payload["stream"] is True
    assert payload["messages"][1] == {"role": "user", "content": "->->/explain this<-<-\nnotes"}


@pytest.mark.asyncio
async def test_assist_skips_malformed_frames_end_to_end(client_settings: ClientSettings, caplog) -> None:
    body = b"".join(
        [
            frame(chunk_payload("A")),
            b":\n",
            b"data: {malformed}\n",
            frame(chunk_payload("B")),
        ]
    )
    transport = RecordingTransport(lambda request: httpx.Response(200, content=body))
    buffer = DocumentBuffer("x")

    with caplog.at_level(logging.WARNING):
        async with httpx.AsyncClient(transport=transport) as http_client:
            report = await assist(buffer, [], client=AIClient(client_settings, http_client=http_client))

    assert buffer.text == "x\n\nAB\n\n"
    assert report.events == 2
    assert report.decode_failures == 1


@pytest.mark.asyncio
async def test_assist_service_error_leaves_only_padding(client_settings: ClientSettings, caplog) -> None:
    transport = RecordingTransport(lambda request: httpx.Response(429, content=b"rate limited"))
    buffer = DocumentBuffer("x")

    with caplog.at_level(logging.ERROR, logger="inkwell.ai.assist"):
        async with httpx.AsyncClient(transport=transport) as http_client:
            task = assist(buffer, [], client=AIClient(client_settings, http_client=http_client))
            with pytest.raises(ServiceError) as info:
                await task

    assert info.value.body == "rate limited"
    assert buffer.text == "x\n\n\n\n"
    assert buffer.version == 2
    assert len([record for record in caplog.records if record.levelno == logging.ERROR]) == 1


@pytest.mark.asyncio
async def test_assist_declines_without_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    buffer = DocumentBuffer("x")

    task = assist(buffer, [], settings=Settings())

    assert task is None
    assert buffer.text == "x"
    assert buffer.version == 1


@pytest.mark.asyncio
async def test_assist_builds_client_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INKWELL_TEST_KEY", "sk-env")
    captured: dict[str, ClientSettings] = {}

    async def _fake_stream(self: AIClient, request) -> EventChannel:
        captured["settings"] = self.settings
        return _closed_channel(_event("ok"))

    monkeypatch.setattr(AIClient, "stream_completion", _fake_stream)
    buffer = DocumentBuffer("x")

    report = await assist(buffer, [], settings=Settings(model="gpt-4o", api_key_env="INKWELL_TEST_KEY"))

    assert captured["settings"].api_key == "sk-env"
    assert captured["settings"].model == "gpt-4o"
    assert report.inserted_chars == 2
    assert buffer.text == "x\n\nok\n\n"
