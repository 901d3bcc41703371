"""Data model for persisted annotations.

All nodes are frozen dataclasses; the store builds a new
``AnnotationFile`` for every mutation instead of editing one in place.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

MAX_CONTEXT_LINES = 7
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_timestamp(moment: datetime | None = None) -> str:
    """Format ``moment`` (default: now) as a second-precision UTC timestamp."""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse a timestamp written by ``utc_timestamp``.

    Raises
    ------
    ValueError
        If ``value`` is not in ``TIMESTAMP_FORMAT``.
    """
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def source_hash(text: str) -> str:
    """Return the 12-character SHA-256 prefix used to detect source drift."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:12]


@dataclass(frozen=True)
class Annotation:
    """A note attached to one line of one source file.

    Parameters
    ----------
    line:
        1-based line number; identity within its file.
    author:
        Free-text author name supplied by the caller.
    text:
        Markdown body; never empty.
    timestamp:
        UTC time of the last save, ``TIMESTAMP_FORMAT``.
    context:
        Up to ``MAX_CONTEXT_LINES`` source lines captured around ``line``.
    """

    line: int
    author: str
    text: str
    timestamp: str
    context: tuple[str, ...] = field(default=())

    def to_wire(self) -> dict[str, object]:
        """Return the JSON-ready mapping sent over the host channel."""
        return {
            "line": self.line,
            "author": self.author,
            "timestamp": self.timestamp,
            "text": self.text,
            "context": list(self.context),
        }


@dataclass(frozen=True)
class AnnotatedLine:
    """An ``Annotation`` tagged with the relative path it belongs to."""

    file_path: str
    annotation: Annotation

    def to_wire(self) -> dict[str, object]:
        data = self.annotation.to_wire()
        data["filePath"] = self.file_path
        return data


@dataclass(frozen=True)
class SourceSnapshot:
    """Full source text captured when the file was first annotated."""

    text: str
    hash: str
    captured: str

    @classmethod
    def capture(cls, text: str, moment: datetime | None = None) -> "SourceSnapshot":
        return cls(text=text, hash=source_hash(text), captured=utc_timestamp(moment))


@dataclass(frozen=True)
class AnnotationFile:
    """The complete, ordered annotation set for one (project, relative path).

    ``annotations`` is always sorted by line with at most one entry per
    line; use ``with_annotation`` / ``without_line`` to derive updated
    copies.
    """

    project: str
    file_path: str
    annotations: tuple[Annotation, ...] = field(default=())
    snapshot: SourceSnapshot | None = field(default=None)

    @property
    def source(self) -> str:
        return f"{self.project}/{self.file_path}"

    @property
    def is_empty(self) -> bool:
        return not self.annotations

    def get(self, line: int) -> Annotation | None:
        """Return the annotation at ``line`` or None."""
        for annotation in self.annotations:
            if annotation.line == line:
                return annotation
        return None

    def with_annotation(self, annotation: Annotation) -> "AnnotationFile":
        """Return a copy with ``annotation`` inserted, replacing any on the same line."""
        kept = [a for a in self.annotations if a.line != annotation.line]
        kept.append(annotation)
        kept.sort(key=lambda a: a.line)
        return replace(self, annotations=tuple(kept))

    def without_line(self, line: int) -> "AnnotationFile":
        """Return a copy with the annotation at ``line`` removed."""
        return replace(
            self, annotations=tuple(a for a in self.annotations if a.line != line)
        )

    def with_snapshot(self, snapshot: SourceSnapshot) -> "AnnotationFile":
        return replace(self, snapshot=snapshot)
