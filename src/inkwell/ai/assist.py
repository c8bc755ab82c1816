"""The "Assist" command: stream a completion into the live document."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from ..editor.document_model import Anchor, DocumentBuffer
from ..services.settings import Settings
from .client import AIClient
from .errors import AssistError, ConfigurationError, FrameDecodeError, TransportError
from .framing import prepare_insertion
from .messages import ChatMessage, ChatRequest, Role
from .prompts import system_prompt
from .stream import EventChannel, StreamItem

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class InsertionReport:
    """Summary of one streaming session."""

    events: int = 0
    insertions: int = 0
    inserted_chars: int = 0
    decode_failures: int = 0
    finish_reason: Optional[str] = None


def build_request(prompt: str, *, model: str) -> ChatRequest:
    return ChatRequest(
        model=model,
        messages=(
            ChatMessage(Role.SYSTEM, system_prompt()),
            ChatMessage(Role.USER, prompt),
        ),
    )


async def apply_stream(
    buffer: DocumentBuffer,
    anchor: Anchor,
    channel: EventChannel[StreamItem],
) -> InsertionReport:
    """Insert each streamed delta at ``anchor`` until the channel closes.

    Only the last choice of every event is applied. Malformed frames are
    logged and skipped; a transport failure ends the session with an error.
    """

    report = InsertionReport()
    async for item in channel:
        if isinstance(item, FrameDecodeError):
            report.decode_failures += 1
            LOGGER.warning("Skipping malformed stream frame (line %s): %s", item.line_number, item)
            continue
        if isinstance(item, TransportError):
            raise item

        report.events += 1
        choice = item.last_choice()
        if choice is None:
            continue
        if choice.finish_reason is not None:
            report.finish_reason = choice.finish_reason
        text = choice.text
        if not text:
            continue
        buffer.edit([((anchor, anchor), text)])
        report.insertions += 1
        report.inserted_chars += len(text)
    return report


def assist(
    buffer: DocumentBuffer,
    selections: Iterable[Any],
    *,
    client: AIClient | None = None,
    settings: Settings | None = None,
) -> asyncio.Task[InsertionReport] | None:
    """Start an assist session for ``buffer`` and return its task.

    Framing and the trailing-newline padding happen before this returns.
    Returns ``None`` without touching the document when no API key is
    configured. Must be called from a running event loop.
    """

    if client is None:
        settings = settings or Settings()
        try:
            api_key = settings.resolve_api_key()
        except ConfigurationError as exc:
            LOGGER.warning("Assist unavailable: %s", exc)
            return None
        client = AIClient(settings.client_settings(api_key))

    framed = prepare_insertion(buffer, selections)
    request = build_request(framed.prompt, model=client.settings.model)
    return asyncio.create_task(_run(client, request, buffer, framed.anchor))


async def _run(client: AIClient, request: ChatRequest, buffer: DocumentBuffer, anchor: Anchor) -> InsertionReport:
    try:
        channel = await client.stream_completion(request)
        report = await apply_stream(buffer, anchor, channel)
    except AssistError:
        LOGGER.exception("Assist request for document %s failed", buffer.document_id)
        raise
    LOGGER.info(
        "Assist finished for document %s (events=%s, chars=%s, skipped frames=%s, finish=%s)",
        buffer.document_id,
        report.events,
        report.inserted_chars,
        report.decode_failures,
        report.finish_reason,
    )
    return report


__all__ = ["InsertionReport", "apply_stream", "assist", "build_request"]
