"""YAML serialization for annotation files.

The on-disk document is a plain mapping so it stays readable (and
mergeable by hand) on a shared storage root::

    format: 1
    source: demo/a/b.c
    snapshot:
      hash: 0123456789ab
      captured: '2026-10-18T10:00:00Z'
      text: |
        ...
    annotations:
    - line: 10
      author: alice
      timestamp: '2026-10-18T10:00:00Z'
      text: why here?
      context: []

Usage
-----
::

    from linenote.store.serializer import AnnotationSerializer

    serializer = AnnotationSerializer()
    text = serializer.to_yaml(annotation_file)
    annotation_file2 = serializer.from_yaml(text, "demo", "a/b.c")
"""
from __future__ import annotations

from datetime import datetime

import yaml

from linenote.errors import CorruptState
from linenote.store.models import (
    MAX_CONTEXT_LINES,
    Annotation,
    AnnotationFile,
    SourceSnapshot,
    utc_timestamp,
)

FORMAT_VERSION = 1


def _timestamp(value: object) -> str:
    # Unquoted ISO timestamps in hand-edited files load as datetime.
    if isinstance(value, datetime):
        return utc_timestamp(value)
    if isinstance(value, str) and value:
        return value
    raise TypeError(f"timestamp must be a non-empty string, got {value!r}")


def _text(entry: dict[str, object], key: str) -> str:
    value = entry[key]
    if not isinstance(value, str) or not value:
        raise ValueError(f"{key} {value!r} is not a non-empty string")
    return value


class AnnotationSerializer:

    # ------------------------------------------------------------------
    # Dict helpers
    # ------------------------------------------------------------------

    def to_dict(self, annotation_file: AnnotationFile) -> dict[str, object]:
        data: dict[str, object] = {
            "format": FORMAT_VERSION,
            "source": annotation_file.source,
        }
        if annotation_file.snapshot is not None:
            data["snapshot"] = {
                "hash": annotation_file.snapshot.hash,
                "captured": annotation_file.snapshot.captured,
                "text": annotation_file.snapshot.text,
            }
        data["annotations"] = [
            {
                "line": a.line,
                "author": a.author,
                "timestamp": a.timestamp,
                "text": a.text,
                "context": list(a.context),
            }
            for a in annotation_file.annotations
        ]
        return data

    def from_dict(
        self, data: object, project: str, file_path: str
    ) -> AnnotationFile:
        """Rebuild an ``AnnotationFile`` from a loaded mapping.

        Raises
        ------
        CorruptState
            If the mapping does not have the expected shape.
        """
        if not isinstance(data, dict):
            raise CorruptState(f"Annotation file for {project}/{file_path} is not a mapping")
        if data.get("format") != FORMAT_VERSION:
            raise CorruptState(
                f"Annotation file for {project}/{file_path} has unsupported "
                f"format {data.get('format')!r}"
            )

        try:
            snapshot = None
            raw_snapshot = data.get("snapshot")
            if raw_snapshot is not None:
                snapshot = SourceSnapshot(
                    text=str(raw_snapshot["text"]),
                    hash=str(raw_snapshot["hash"]),
                    captured=_timestamp(raw_snapshot["captured"]),
                )

            by_line: dict[int, Annotation] = {}
            for entry in data.get("annotations") or []:
                line = entry["line"]
                if isinstance(line, bool) or not isinstance(line, int) or line < 1:
                    raise ValueError(f"invalid line number {line!r}")
                context = tuple(str(c) for c in (entry.get("context") or ()))
                by_line[line] = Annotation(
                    line=line,
                    author=_text(entry, "author"),
                    text=_text(entry, "text"),
                    timestamp=_timestamp(entry["timestamp"]),
                    context=context[:MAX_CONTEXT_LINES],
                )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise CorruptState(
                f"Annotation file for {project}/{file_path} is malformed: {exc}"
            ) from exc

        return AnnotationFile(
            project=project,
            file_path=file_path,
            annotations=tuple(by_line[line] for line in sorted(by_line)),
            snapshot=snapshot,
        )

    # ------------------------------------------------------------------
    # YAML helpers
    # ------------------------------------------------------------------

    def to_yaml(self, annotation_file: AnnotationFile) -> str:
        """Serialize an ``AnnotationFile`` to a YAML string."""
        return yaml.safe_dump(
            self.to_dict(annotation_file),
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False,
        )

    def from_yaml(self, text: str, project: str, file_path: str) -> AnnotationFile:
        """Deserialize an ``AnnotationFile`` from a YAML string.

        Raises
        ------
        CorruptState
            On YAML syntax errors or an unexpected document shape.
        """
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise CorruptState(
                f"Annotation file for {project}/{file_path} is not valid YAML: {exc}"
            ) from exc
        return self.from_dict(data, project, file_path)
