"""Error hierarchy for the assist pipeline.

Errors raised while building or sending a request are fatal to the whole
command. :class:`FrameDecodeError` is the only one recovered locally: the
affected frame is logged and skipped.
"""

from __future__ import annotations

from typing import Any


class AssistError(RuntimeError):
    """Base for all assist errors."""

    def details(self) -> dict[str, Any]:
        return {"error": type(self).__name__, "message": str(self)}


class ConfigurationError(AssistError):
    """Raised when a required credential or setting is missing."""


class SerializationError(AssistError):
    """Raised when the outbound request body cannot be encoded."""


class TransportError(AssistError):
    """Raised for connection-level failures while sending or reading."""


class ServiceError(AssistError):
    """Raised when the completion endpoint answers with a non-200 status."""

    def __init__(self, status: int, body: str) -> None:
        self.status = status
        self.body = body
        super().__init__(f"Failed to connect to chat completion API: {status} {body}")

    def details(self) -> dict[str, Any]:
        payload = super().details()
        payload.update({"status": self.status, "body": self.body})
        return payload


class FrameDecodeError(AssistError):
    """Raised when a single ``data:`` frame cannot be decoded."""

    def __init__(self, message: str, *, payload: str | None = None, line_number: int | None = None) -> None:
        self.payload = payload
        self.line_number = line_number
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        payload = super().details()
        payload.update({"payload": self.payload, "line": self.line_number})
        return payload


__all__ = [
    "AssistError",
    "ConfigurationError",
    "FrameDecodeError",
    "SerializationError",
    "ServiceError",
    "TransportError",
]
