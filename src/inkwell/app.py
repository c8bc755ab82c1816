"""Command-line host that runs the Assist command against a file."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.assist import assist
from .ai.errors import AssistError
from .ai.framing import frame_selections
from .core.ranges import TextRange
from .editor.document_model import AppliedEdit, DocumentBuffer, DocumentMetadata, DocumentSnapshot
from .services.settings import Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_DECLINED = 2


def configure_logging(settings: Settings, *, debug: bool = False) -> Path:
    """Configure structured logging for the command line host."""

    log_path = logging_utils.setup_logging(settings, debug=debug)
    _LOGGER.debug("Logging to %s", log_path)
    return log_path


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except OSError as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the ``inkwell`` console script."""

    parser = _build_parser()
    args = parser.parse_args(argv)

    debug = args.debug or _env_flag("INKWELL_DEBUG")
    settings_path = args.settings_path or os.environ.get("INKWELL_SETTINGS_PATH")
    store = SettingsStore(Path(settings_path).expanduser() if settings_path else None)
    try:
        overrides = _coerce_cli_overrides(args.overrides or [])
        selections = [TextRange.from_value(value) for value in args.select]
    except ValueError as exc:
        parser.error(str(exc))

    settings = load_settings(store=store, overrides=overrides or None)
    configure_logging(settings, debug=debug)

    if args.save_settings:
        return _save_settings(store, overrides)

    if args.dump_settings:
        _dump_settings(settings, store, overrides=overrides)
        return EXIT_OK

    if args.path is None:
        parser.error("a document path is required")
    path = Path(args.path).expanduser()
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        _LOGGER.error("Unable to read %s: %s", path, exc)
        return EXIT_FAILURE
    buffer = DocumentBuffer(text, metadata=DocumentMetadata(path=path))

    if args.dry_run:
        sys.stdout.write(frame_selections(buffer.snapshot(), selections))
        sys.stdout.write("\n")
        return EXIT_OK

    return asyncio.run(run_assist(buffer, selections, settings))


async def run_assist(
    buffer: DocumentBuffer,
    selections: Sequence[TextRange],
    settings: Settings,
    *,
    stream: TextIO | None = None,
) -> int:
    """Run Assist on ``buffer``, echo streamed text and save the document."""

    destination = stream or sys.stdout
    task = assist(buffer, selections, settings=settings)
    if task is None:
        return EXIT_DECLINED

    def _echo(snapshot: DocumentSnapshot, edits: Sequence[AppliedEdit]) -> None:
        del snapshot
        for edit in edits:
            destination.write(edit.text)
        destination.flush()

    buffer.add_change_listener(_echo)
    try:
        await task
    except AssistError:
        # Already logged by the assist task; keep whatever text arrived.
        return_code = EXIT_FAILURE
    else:
        return_code = EXIT_OK
    finally:
        buffer.remove_change_listener(_echo)
        destination.write("\n")
        _write_document(buffer)
    return return_code


def _save_settings(store: SettingsStore, overrides: Mapping[str, Any]) -> int:
    try:
        path = store.save(store.load(overrides=overrides or None, environment=False))
    except OSError as exc:
        _LOGGER.error("Unable to save settings to %s: %s", store.path, exc)
        return EXIT_FAILURE
    _LOGGER.info("Saved settings to %s", path)
    return EXIT_OK


def _write_document(buffer: DocumentBuffer) -> None:
    path = buffer.metadata.path
    if path is None:
        return
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(buffer.text, encoding="utf-8")
    tmp_path.replace(path)
    _LOGGER.debug("Saved document %s (version %s) to %s", buffer.document_id, buffer.version, path)


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inkwell",
        description="Send a document and its selections to a chat model and stream the reply into it.",
    )
    parser.add_argument("path", nargs="?", default=None, help="Document to assist on; updated in place.")
    parser.add_argument(
        "--select",
        metavar="START:END",
        action="append",
        default=[],
        help="Character offsets of a selected span (repeatable).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the framed prompt and exit without contacting the service.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload and exit.",
    )
    parser.add_argument(
        "--save-settings",
        action="store_true",
        help="Persist the --set overrides to the settings file and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.inkwell/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    return parser


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        overrides[key] = _coerce_value(type_hints.get(key, fields[key].type), raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    if raw_value.lower() in {"none", "null"} and type(None) in get_args(annotation):
        return None
    target = _resolve_annotation(annotation)
    if target is bool:
        return _parse_bool(raw_value)
    if target is float:
        return float(raw_value)
    if target is dict:
        try:
            payload = json.loads(raw_value or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
        if not isinstance(payload, dict):
            raise ValueError("Dict overrides must be valid JSON objects")
        return payload
    return raw_value


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin is dict:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    metadata = {
        "path": str(store.path),
        "api_key": redact_secret(os.environ.get(settings.api_key_env, "")),
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": sorted(name for name in os.environ if name.startswith("INKWELL_")),
    }
    json.dump({"settings": asdict(settings), "meta": metadata}, destination, indent=2)
    destination.write("\n")


if __name__ == "__main__":  # pragma: no cover - manual invocation
    raise SystemExit(main())
