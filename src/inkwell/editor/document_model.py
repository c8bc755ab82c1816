"""In-memory document buffer with versioned snapshots and stable anchors."""

from __future__ import annotations

import logging
import threading
import uuid
import weakref
from bisect import bisect_right
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, Optional, Protocol, Sequence, Tuple, Union

from ..core.ranges import TextRange

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


class Bias(str, Enum):
    """Which side of an insertion made exactly at an anchor the anchor sticks to."""

    LEFT = "left"
    RIGHT = "right"


@dataclass(frozen=True)
class Anchor:
    """Position captured against a specific document version.

    The offset is only meaningful together with ``version``; use
    :meth:`DocumentSnapshot.resolve_anchor` to map it onto a later snapshot.
    Anchors handed out by a :class:`DocumentBuffer` pin the edit history they
    need for as long as they are alive.
    """

    document_id: str
    version: int
    offset: int
    bias: Bias = Bias.RIGHT


@dataclass(slots=True, frozen=True)
class AppliedEdit:
    """Single replacement recorded in the buffer's edit log.

    ``start``/``old_end`` are offsets in the text as it was immediately before
    this replacement ran; ``version`` is the buffer version the edit produced.
    """

    version: int
    start: int
    old_end: int
    text: str

    @property
    def new_end(self) -> int:
        return self.start + len(self.text)

    def transform(self, offset: int, bias: Bias) -> int:
        """Map ``offset`` from before this edit to after it."""

        start, old_end = self.start, self.old_end
        if offset < start:
            return offset
        if offset > old_end or (offset == old_end and old_end > start):
            return offset + len(self.text) - (old_end - start)
        # Anchor sits at a pure insertion point or inside the replaced span.
        if bias is Bias.LEFT:
            return start
        return self.new_end


@dataclass(slots=True)
class DocumentMetadata:
    """Metadata describing the currently loaded document."""

    path: Optional[Path] = None
    updated_at: datetime = field(default_factory=_utcnow)


class EditHistory:
    """Append-only edit log shared between a buffer and its snapshots.

    Holds every edit whose version is greater than ``start_version``. A
    parallel list of edit versions keeps anchor lookups to a bisect.
    """

    __slots__ = ("start_version", "_edits", "_versions")

    def __init__(self, start_version: int, edits: Iterable[AppliedEdit] = ()) -> None:
        self.start_version = start_version
        self._edits: list[AppliedEdit] = list(edits)
        self._versions: list[int] = [edit.version for edit in self._edits]

    def __len__(self) -> int:
        return len(self._edits)

    def extend(self, edits: Sequence[AppliedEdit]) -> None:
        self._edits.extend(edits)
        self._versions.extend(edit.version for edit in edits)

    def since(self, version: int, end: int) -> Iterator[AppliedEdit]:
        """Yield edits newer than ``version`` among the first ``end`` entries."""

        if version < self.start_version:
            raise ValueError(
                f"Anchor version {version} predates retained history (version {self.start_version})"
            )
        for index in range(bisect_right(self._versions, version, 0, end), end):
            yield self._edits[index]

    def trimmed(self, version: int) -> EditHistory | None:
        """Return a copy without edits at or below ``version``, if that frees enough."""

        cut = bisect_right(self._versions, version)
        if not cut or cut * 2 < len(self._edits):
            return None
        return EditHistory(version, self._edits[cut:])


@dataclass(slots=True, frozen=True)
class DocumentSnapshot:
    """Immutable view of the buffer at a single version."""

    document_id: str
    version: int
    text: str
    history: EditHistory = field(default_factory=lambda: EditHistory(0), repr=False, compare=False)
    history_end: int = field(default=0, repr=False, compare=False)

    def __len__(self) -> int:
        return len(self.text)

    def text_for_range(self, start: int, end: int) -> str:
        start, end = self._clamp(start), self._clamp(end)
        if end < start:
            start, end = end, start
        return self.text[start:end]

    def reversed_chars_at(self, offset: int) -> Iterator[str]:
        """Yield characters walking backwards from ``offset`` (exclusive)."""

        for index in range(self._clamp(offset) - 1, -1, -1):
            yield self.text[index]

    def resolve_anchor(self, anchor: Anchor) -> int:
        """Return the offset ``anchor`` maps to in this snapshot."""

        if anchor.document_id != self.document_id:
            raise ValueError("Anchor belongs to a different document")
        if anchor.version > self.version:
            raise ValueError(
                f"Anchor version {anchor.version} is newer than snapshot version {self.version}"
            )
        offset = anchor.offset
        for edit in self.history.since(anchor.version, self.history_end):
            offset = edit.transform(offset, anchor.bias)
        return self._clamp(offset)

    def _clamp(self, offset: int) -> int:
        return max(0, min(int(offset), len(self.text)))


Position = Union[int, Anchor]
RangeLike = Union[TextRange, Tuple[Position, Position]]


class ChangeListener(Protocol):
    """Callback notified after each successful edit."""

    def __call__(self, snapshot: DocumentSnapshot, edits: Sequence[AppliedEdit]) -> None:
        ...


class DocumentBuffer:
    """Mutable text document supporting range edits and anchors.

    Every mutation goes through :meth:`edit`, which serializes writers on an
    internal lock and bumps the version exactly once per call.
    """

    def __init__(
        self,
        text: str = "",
        *,
        document_id: str | None = None,
        metadata: DocumentMetadata | None = None,
    ) -> None:
        self._text = text
        self._version = 1
        self._document_id = document_id or uuid.uuid4().hex
        self._history = EditHistory(self._version)
        self._anchor_versions: Counter[int] = Counter()
        self._released_anchors: deque[int] = deque()
        self._lock = threading.RLock()
        self._listeners: list[ChangeListener] = []
        self.metadata = metadata or DocumentMetadata()

    @property
    def document_id(self) -> str:
        return self._document_id

    @property
    def text(self) -> str:
        return self._text

    @property
    def version(self) -> int:
        return self._version

    def snapshot(self) -> DocumentSnapshot:
        with self._lock:
            return DocumentSnapshot(
                document_id=self._document_id,
                version=self._version,
                text=self._text,
                history=self._history,
                history_end=len(self._history),
            )

    def anchor_before(self, offset: int) -> Anchor:
        return self._anchor(offset, Bias.LEFT)

    def anchor_after(self, offset: int) -> Anchor:
        return self._anchor(offset, Bias.RIGHT)

    def add_change_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_change_listener(self, listener: ChangeListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def edit(self, edits: Iterable[tuple[RangeLike, str] | tuple[Position, Position, str]]) -> DocumentSnapshot:
        """Apply replacements interpreted against the current snapshot.

        Ranges may use integer offsets or anchors as endpoints and must not
        overlap. Replacements that would change nothing are dropped; if none
        remain the version is left untouched.
        """

        with self._lock:
            current = self.snapshot()
            resolved = self._resolve_edits(current, edits)
            if not resolved:
                return current
            version = self._version + 1
            text = self._text
            applied: list[AppliedEdit] = []
            # Apply back to front so earlier offsets stay valid in the current text.
            for span, replacement in reversed(resolved):
                text = text[: span.start] + replacement + text[span.end :]
                applied.append(AppliedEdit(version, span.start, span.end, replacement))
            self._text = text
            self._version = version
            self._history.extend(applied)
            self._trim_history()
            self.metadata.updated_at = _utcnow()
            snapshot = self.snapshot()
            listeners = list(self._listeners)

        LOGGER.debug(
            "Document %s edited to version %s (%s span(s))", self._document_id, version, len(applied)
        )
        for listener in listeners:
            listener(snapshot, tuple(applied))
        return snapshot

    def _anchor(self, offset: int, bias: Bias) -> Anchor:
        with self._lock:
            length = len(self._text)
            if not 0 <= offset <= length:
                raise ValueError(f"Anchor offset {offset} is outside document of length {length}")
            anchor = Anchor(self._document_id, self._version, offset, bias)
            self._anchor_versions[self._version] += 1
            weakref.finalize(anchor, self._released_anchors.append, self._version)
            return anchor

    def _trim_history(self) -> None:
        while self._released_anchors:
            version = self._released_anchors.popleft()
            self._anchor_versions[version] -= 1
            if self._anchor_versions[version] <= 0:
                del self._anchor_versions[version]
        oldest = min(self._anchor_versions, default=self._version)
        trimmed = self._history.trimmed(oldest)
        if trimmed is not None:
            LOGGER.debug(
                "Document %s dropped %s edit(s) at or below version %s",
                self._document_id,
                len(self._history) - len(trimmed),
                oldest,
            )
            self._history = trimmed

    def _resolve_edits(
        self,
        snapshot: DocumentSnapshot,
        edits: Iterable[tuple[RangeLike, str] | tuple[Position, Position, str]],
    ) -> list[tuple[TextRange, str]]:
        resolved: list[tuple[TextRange, str]] = []
        for entry in edits:
            if len(entry) == 3:
                start, end, replacement = entry  # type: ignore[misc]
            else:
                target, replacement = entry  # type: ignore[misc]
                start, end = target
            start_offset = self._resolve_position(snapshot, start)
            end_offset = self._resolve_position(snapshot, end)
            if start_offset > end_offset:
                raise ValueError(f"Edit range start {start_offset} exceeds end {end_offset}")
            if end_offset > len(snapshot):
                raise ValueError(f"Edit range end {end_offset} exceeds document length {len(snapshot)}")
            replacement = str(replacement)
            if start_offset == end_offset and not replacement:
                continue
            resolved.append((TextRange(start_offset, end_offset), replacement))

        # Stable sort keeps same-offset insertions in the order they were given.
        resolved.sort(key=lambda item: item[0].start)
        for (previous, _), (following, _) in zip(resolved, resolved[1:]):
            if previous.end > following.start:
                raise ValueError(f"Edit ranges {previous.to_tuple()} and {following.to_tuple()} overlap")
        return resolved

    @staticmethod
    def _resolve_position(snapshot: DocumentSnapshot, position: Position) -> int:
        if isinstance(position, Anchor):
            return snapshot.resolve_anchor(position)
        if isinstance(position, bool) or not isinstance(position, int):
            raise TypeError("Edit positions must be integers or anchors")
        if position < 0:
            raise ValueError(f"Edit position {position} is negative")
        return position


__all__ = [
    "Anchor",
    "AppliedEdit",
    "Bias",
    "ChangeListener",
    "DocumentBuffer",
    "DocumentMetadata",
    "DocumentSnapshot",
    "EditHistory",
]
