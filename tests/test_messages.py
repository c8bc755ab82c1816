"""Tests for chat request/response envelopes."""

from __future__ import annotations

import pytest

from inkwell.ai.errors import FrameDecodeError
from inkwell.ai.messages import ChatMessage, ChatRequest, ChatStreamEvent, Role, Usage

from tests.helpers import chunk_payload


def test_chat_request_payload_uses_lowercase_roles() -> None:
    request = ChatRequest(
        model="gpt-4",
        messages=[ChatMessage(Role.SYSTEM, "sys"), ChatMessage(Role.USER, "hi")],
    )

    assert request.to_payload() == {
        "model": "gpt-4",
        "messages": [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "hi"},
        ],
        "stream": False,
    }
    assert isinstance(request.messages, tuple)


def test_chat_message_is_immutable() -> None:
    message = ChatMessage(Role.USER, "hi")

    with pytest.raises(AttributeError):
        message.content = "changed"  # type: ignore[misc]


def test_stream_event_from_payload_builds_typed_choices() -> None:
    payload = chunk_payload("Hel", role="assistant")
    payload["usage"] = {"prompt_tokens": 3, "completion_tokens": 1, "total_tokens": 4}

    event = ChatStreamEvent.from_payload(payload)

    assert event.id == "chatcmpl-test"
    assert event.model == "gpt-4"
    assert event.usage == Usage(3, 1, 4)
    choice = event.last_choice()
    assert choice is not None
    assert choice.delta.role is Role.ASSISTANT
    assert choice.text == "Hel"


def test_missing_or_null_content_means_no_text() -> None:
    absent = ChatStreamEvent.from_payload(chunk_payload(finish_reason="stop"))
    null = ChatStreamEvent.from_payload(
        chunk_payload(choices=[{"index": 0, "delta": {"content": None}, "finish_reason": None}])
    )

    assert absent.last_choice().text is None
    assert absent.last_choice().finish_reason == "stop"
    assert null.last_choice().text is None


def test_last_choice_prefers_final_entry() -> None:
    event = ChatStreamEvent.from_payload(
        chunk_payload(
            choices=[
                {"index": 0, "delta": {"content": "ignored"}},
                {"index": 1, "delta": {"content": "X"}},
            ]
        )
    )

    assert event.last_choice().index == 1
    assert event.last_choice().text == "X"


def test_event_without_choices_has_no_last_choice() -> None:
    event = ChatStreamEvent.from_payload(chunk_payload(choices=[]))

    assert event.last_choice() is None


def test_unknown_fields_are_tolerated() -> None:
    payload = chunk_payload("x")
    payload["system_fingerprint"] = "fp_123"
    payload["choices"][0]["logprobs"] = None

    assert ChatStreamEvent.from_payload(payload).last_choice().text == "x"


@pytest.mark.parametrize(
    "mutate",
    [
        lambda payload: payload.pop("model"),
        lambda payload: payload.update(created="yesterday"),
        lambda payload: payload.update(choices={"index": 0}),
        lambda payload: payload["choices"][0].pop("delta"),
        lambda payload: payload["choices"][0]["delta"].update(role="robot"),
        lambda payload: payload["choices"][0]["delta"].update(content=42),
    ],
)
def test_schema_violations_raise_frame_decode_error(mutate) -> None:
    payload = chunk_payload("x")
    mutate(payload)

    with pytest.raises(FrameDecodeError):
        ChatStreamEvent.from_payload(payload)


def test_non_object_payload_is_rejected() -> None:
    with pytest.raises(FrameDecodeError):
        ChatStreamEvent.from_payload(["not", "an", "event"])
