"""Shared pytest fixtures."""

from __future__ import annotations

import logging
from typing import Iterator

import pytest

from inkwell.ai.client import ClientSettings


@pytest.fixture
def client_settings() -> ClientSettings:
    return ClientSettings(api_key="sk-test", base_url="http://llm.local/v1", model="gpt-4")


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "INKWELL_BASE_URL",
        "INKWELL_MODEL",
        "INKWELL_REQUEST_TIMEOUT",
        "INKWELL_DEBUG_LOGGING",
        "INKWELL_LOG_DIR",
        "INKWELL_DEBUG",
        "INKWELL_SETTINGS_PATH",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def restore_root_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
