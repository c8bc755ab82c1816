"""Build the outbound prompt from the document and its selections."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List

from ..core.ranges import TextRange
from ..editor.document_model import Anchor, DocumentBuffer, DocumentSnapshot
from .prompts import LEFT_MARKER, RIGHT_MARKER

LOGGER = logging.getLogger(__name__)

TRAILING_NEWLINES = 4
# Streamed text lands this many characters before the end of the padded document.
ANCHOR_BACKOFF = 2


@dataclass(slots=True, frozen=True)
class FramedPrompt:
    """User prompt plus the anchor streamed text will be inserted at."""

    prompt: str
    anchor: Anchor


def normalize_selections(selections: Iterable[Any], length: int) -> List[TextRange]:
    """Coerce, clamp and order ``selections``; overlapping spans are rejected."""

    ranges = sorted(
        (TextRange.from_value(item).clamp(upper=length) for item in selections),
        key=lambda span: (span.start, span.end),
    )
    for previous, following in zip(ranges, ranges[1:]):
        if previous.overlaps(following):
            raise ValueError(f"Selections {previous.to_tuple()} and {following.to_tuple()} overlap")
    return ranges


def frame_selections(snapshot: DocumentSnapshot, selections: Iterable[Any]) -> str:
    """Return the document text with each selection wrapped in sentinel markers."""

    parts: List[str] = []
    cursor = 0
    for selection in normalize_selections(selections, len(snapshot)):
        parts.append(snapshot.text_for_range(cursor, selection.start))
        parts.append(LEFT_MARKER)
        parts.append(snapshot.text_for_range(selection.start, selection.end))
        parts.append(RIGHT_MARKER)
        cursor = selection.end
    if cursor < len(snapshot):
        parts.append(snapshot.text_for_range(cursor, len(snapshot)))
    return "".join(parts)


def count_trailing_newlines(snapshot: DocumentSnapshot, *, limit: int = TRAILING_NEWLINES) -> int:
    count = 0
    for char in snapshot.reversed_chars_at(len(snapshot)):
        if char != "\n" or count >= limit:
            break
        count += 1
    return count


def prepare_insertion(buffer: DocumentBuffer, selections: Iterable[Any]) -> FramedPrompt:
    """Frame the prompt, pad the document tail and anchor the insertion site.

    The padding edit only ever appends: a document already ending in more
    than four newlines keeps all of them.
    """

    snapshot = buffer.snapshot()
    prompt = frame_selections(snapshot, selections)

    missing = TRAILING_NEWLINES - count_trailing_newlines(snapshot)
    if missing:
        end = len(snapshot)
        buffer.edit([((end, end), "\n" * missing)])
        LOGGER.debug("Padded document %s with %s trailing newline(s)", buffer.document_id, missing)
        snapshot = buffer.snapshot()

    anchor = buffer.anchor_after(len(snapshot) - ANCHOR_BACKOFF)
    return FramedPrompt(prompt=prompt, anchor=anchor)


__all__ = [
    "ANCHOR_BACKOFF",
    "FramedPrompt",
    "TRAILING_NEWLINES",
    "count_trailing_newlines",
    "frame_selections",
    "normalize_selections",
    "prepare_insertion",
]
