"""Logging setup for the inkwell command line host."""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from ..services.settings import Settings

__all__ = ["LOG_FILE_NAME", "log_directory", "setup_logging"]

LOG_FILE_NAME = "inkwell.log"
_DEFAULT_LOG_DIR = Path.home() / ".inkwell" / "logs"
_MAX_BYTES = 1_000_000
_BACKUP_COUNT = 3
_QUIET_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore")


def log_directory(settings: Settings) -> Path:
    """Return the directory holding the rotating log file for ``settings``."""

    return Path(settings.log_dir or _DEFAULT_LOG_DIR).expanduser()


def setup_logging(settings: Settings, *, debug: bool = False, console: TextIO | None = None) -> Path:
    """Route root logging to a rotating file and a console stream.

    ``debug`` or ``settings.debug_logging`` lowers the level to DEBUG. Any
    handlers installed by an earlier call are replaced. Returns the log file
    path.
    """

    level = logging.DEBUG if debug or settings.debug_logging else logging.INFO
    directory = log_directory(settings)
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / LOG_FILE_NAME

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8"
    )
    console_handler = logging.StreamHandler(console)
    for handler in (file_handler, console_handler):
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=[file_handler, console_handler], force=True)
    logging.captureWarnings(True)

    quiet_level = max(level, logging.WARNING)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
    return log_path
