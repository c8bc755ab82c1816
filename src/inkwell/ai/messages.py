"""Typed request/response envelopes for the chat completion endpoint."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator, ValidationError

from .errors import FrameDecodeError


class Role(str, Enum):
    """Author of a chat message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(slots=True, frozen=True)
class ChatMessage:
    role: Role
    content: str

    def to_payload(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(slots=True)
class ChatRequest:
    """Outbound request body.

    ``stream`` is left as the caller set it here; the client forces it on
    before anything is sent.
    """

    model: str
    messages: Tuple[ChatMessage, ...] = ()
    stream: bool = False

    def __post_init__(self) -> None:
        self.messages = tuple(self.messages)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [message.to_payload() for message in self.messages],
            "stream": self.stream,
        }


@dataclass(slots=True, frozen=True)
class Usage:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass(slots=True, frozen=True)
class ResponseDelta:
    """Incremental message fragment; ``content`` is ``None`` when absent."""

    role: Optional[Role] = None
    content: Optional[str] = None


@dataclass(slots=True, frozen=True)
class ChoiceDelta:
    index: int
    delta: ResponseDelta = field(default_factory=ResponseDelta)
    finish_reason: Optional[str] = None

    @property
    def text(self) -> Optional[str]:
        return self.delta.content


@dataclass(slots=True, frozen=True)
class ChatStreamEvent:
    """One decoded ``data:`` frame of a streamed completion."""

    object: str
    created: int
    model: str
    choices: Tuple[ChoiceDelta, ...] = ()
    id: Optional[str] = None
    usage: Optional[Usage] = None

    def last_choice(self) -> Optional[ChoiceDelta]:
        if not self.choices:
            return None
        return self.choices[-1]

    @classmethod
    def from_payload(cls, payload: Any) -> ChatStreamEvent:
        """Validate ``payload`` and build a typed event from it."""

        try:
            _EVENT_VALIDATOR.validate(payload)
        except ValidationError as error:
            raise FrameDecodeError(_format_validation_error(error)) from error

        choices = tuple(_choice_from_payload(item) for item in payload["choices"])
        usage_payload = payload.get("usage")
        usage = None
        if isinstance(usage_payload, Mapping):
            usage = Usage(
                prompt_tokens=usage_payload["prompt_tokens"],
                completion_tokens=usage_payload["completion_tokens"],
                total_tokens=usage_payload["total_tokens"],
            )
        return cls(
            id=payload.get("id"),
            object=payload["object"],
            created=payload["created"],
            model=payload["model"],
            choices=choices,
            usage=usage,
        )


def _choice_from_payload(payload: Mapping[str, Any]) -> ChoiceDelta:
    delta = payload["delta"]
    role = delta.get("role")
    return ChoiceDelta(
        index=payload["index"],
        delta=ResponseDelta(
            role=Role(role) if role is not None else None,
            content=delta.get("content"),
        ),
        finish_reason=payload.get("finish_reason"),
    )


def _format_validation_error(error: ValidationError) -> str:
    path = ".".join(str(part) for part in error.path)
    if path:
        return f"{path}: {error.message}"
    return error.message


_NON_NEGATIVE_INT: Dict[str, Any] = {"type": "integer", "minimum": 0}

_USAGE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "prompt_tokens": _NON_NEGATIVE_INT,
        "completion_tokens": _NON_NEGATIVE_INT,
        "total_tokens": _NON_NEGATIVE_INT,
    },
    "required": ["prompt_tokens", "completion_tokens", "total_tokens"],
}

_CHOICE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "index": _NON_NEGATIVE_INT,
        "delta": {
            "type": "object",
            "properties": {
                "role": {"enum": [item.value for item in Role] + [None]},
                "content": {"type": ["string", "null"]},
            },
        },
        "finish_reason": {"type": ["string", "null"]},
    },
    "required": ["index", "delta"],
}

STREAM_EVENT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {"type": ["string", "null"]},
        "object": {"type": "string"},
        "created": _NON_NEGATIVE_INT,
        "model": {"type": "string"},
        "choices": {"type": "array", "items": _CHOICE_SCHEMA},
        "usage": {"anyOf": [_USAGE_SCHEMA, {"type": "null"}]},
    },
    "required": ["object", "created", "model", "choices"],
    "additionalProperties": True,
}

_EVENT_VALIDATOR = Draft7Validator(STREAM_EVENT_SCHEMA)


__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ChatStreamEvent",
    "ChoiceDelta",
    "ResponseDelta",
    "Role",
    "STREAM_EVENT_SCHEMA",
    "Usage",
]
