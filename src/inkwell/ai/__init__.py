"""Chat completion client, stream decoding and the assist command."""

from importlib import import_module
from typing import Any

from .client import AIClient, ClientSettings
from .errors import (
    AssistError,
    ConfigurationError,
    FrameDecodeError,
    SerializationError,
    ServiceError,
    TransportError,
)

__all__ = [
    "AIClient",
    "AssistError",
    "ClientSettings",
    "ConfigurationError",
    "FrameDecodeError",
    "SerializationError",
    "ServiceError",
    "TransportError",
    "assist",
]


def __getattr__(name: str) -> Any:
    # ``assist`` pulls in the settings layer, which itself imports this package.
    if name == "assist":
        module = import_module(f"{__name__}.assist")
        return module.assist
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
