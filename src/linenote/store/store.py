"""Annotation Store: durable per-file annotation sets under a storage root.

Every mutation follows the same cycle: read the whole current set,
apply the change in memory, serialize the complete new set and
atomically rename it over the old file.  No cross-process write lock is
taken.  Right before the rename the file is compared with what was read;
if another host rewrote it meanwhile the cycle is repeated, so saves to
different lines merge.  Saves to the same line stay last-writer-wins.

Usage
-----
::

    from linenote.store import AnnotationStore

    store = AnnotationStore("/mnt/notes")
    store.save("demo", "a/b.c", 10, "alice", "why here?")
    store.read("demo", "a/b.c")
    store.delete("demo", "a/b.c", 10)
"""
from __future__ import annotations

import logging
import os
from collections.abc import Callable, Sequence
from pathlib import Path

from linenote.errors import CorruptState, InvalidPath, StorageIOError, ValidationError
from linenote.paths import SUFFIX, StorageRoot, decode
from linenote.store import fs
from linenote.store.models import (
    MAX_CONTEXT_LINES,
    AnnotatedLine,
    Annotation,
    AnnotationFile,
    SourceSnapshot,
    utc_timestamp,
)
from linenote.store.serializer import AnnotationSerializer

logger = logging.getLogger(__name__)

MERGE_ATTEMPTS = 5

Change = Callable[[AnnotationFile], "AnnotationFile | None"]


def _check_line(line: object) -> int:
    if isinstance(line, bool) or not isinstance(line, int) or line < 1:
        raise ValidationError(f"Line must be a positive integer, got {line!r}", field="line")
    return line


class AnnotationStore:
    """Read, save and delete annotations for files under one storage root.

    Parameters
    ----------
    root:
        The storage root, as a ``StorageRoot`` or an absolute path.
    serializer:
        Document codec; defaults to ``AnnotationSerializer``.
    """

    def __init__(
        self,
        root: "StorageRoot | str | os.PathLike[str]",
        serializer: AnnotationSerializer | None = None,
    ) -> None:
        self._root = StorageRoot.of(root)
        self._serializer = serializer or AnnotationSerializer()

    @property
    def root(self) -> StorageRoot:
        return self._root

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _read_raw(self, path: Path) -> str | None:
        try:
            return fs.read_text(path)
        except UnicodeDecodeError as exc:
            raise CorruptState(f"{path} is not valid UTF-8: {exc}") from exc

    def _parse(self, raw: str | None, project: str, file_path: str) -> AnnotationFile:
        if raw is None:
            return AnnotationFile(project=project, file_path=file_path)
        return self._serializer.from_yaml(raw, project, file_path)

    def load(self, project: str, file_path: str) -> AnnotationFile:
        """Return the complete ``AnnotationFile``, including any snapshot.

        A corrupt file is reported as empty, as ``read`` does.
        """
        path = self._root.file_for(project, file_path)
        try:
            return self._parse(self._read_raw(path), project, file_path)
        except CorruptState as exc:
            logger.warning("Ignoring corrupt annotation file: %s", exc)
            return AnnotationFile(project=project, file_path=file_path)

    def read(self, project: str, file_path: str) -> list[Annotation]:
        """Return the annotations of ``file_path`` ordered by line.

        Returns an empty list when nothing has been saved yet.

        Raises
        ------
        InvalidPath
            If the project or path cannot be encoded.
        StorageIOError
            If the file exists but cannot be read.
        """
        return list(self.load(project, file_path).annotations)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _load_for_update(
        self, path: Path, project: str, file_path: str
    ) -> tuple[str | None, AnnotationFile]:
        try:
            raw = self._read_raw(path)
            return raw, self._parse(raw, project, file_path)
        except CorruptState as exc:
            logger.warning("Replacing corrupt annotation file: %s", exc)
            fs.quarantine(path)
            return None, AnnotationFile(project=project, file_path=file_path)

    def _commit(self, path: Path, updated: AnnotationFile, expected: object) -> bool:
        if updated.is_empty:
            if fs.remove_file(path, expected):
                return True
            return not path.exists()
        return fs.atomic_write_text(path, self._serializer.to_yaml(updated), expected)

    def _mutate(self, project: str, file_path: str, change: Change) -> AnnotationFile | None:
        """Apply ``change`` to the current set and persist the result.

        ``change`` returns the new set, or None to leave the file alone.
        """
        path = self._root.file_for(project, file_path)
        for attempt in range(1, MERGE_ATTEMPTS + 1):
            raw, current = self._load_for_update(path, project, file_path)
            updated = change(current)
            if updated is None:
                return None
            if self._commit(path, updated, raw):
                return updated
            logger.debug("Concurrent update of %s, retrying (attempt %d)", path, attempt)

        logger.warning("%s keeps changing; writing without merge", path)
        _, current = self._load_for_update(path, project, file_path)
        updated = change(current)
        if updated is not None:
            self._commit(path, updated, fs.UNCHECKED)
        return updated

    def save(
        self,
        project: str,
        file_path: str,
        line: int,
        author: str,
        text: str,
        context: Sequence[str] = (),
        source: str | None = None,
    ) -> Annotation:
        """Insert or replace the annotation at ``line``.

        Parameters
        ----------
        context:
            Up to seven source lines surrounding ``line``.
        source:
            Full text of the annotated file.  Captured as the file's
            snapshot the first time one is supplied; later values are
            ignored so drift stays measurable against the original.

        Returns
        -------
        Annotation
            The stored annotation, with its assigned timestamp.

        Raises
        ------
        ValidationError
            On empty text or author, a non-positive line, or too much context.
        InvalidPath
            If the project or path cannot be encoded.
        StorageIOError
            If the storage root cannot be created or written.
        """
        line = _check_line(line)
        if not text or not text.strip():
            raise ValidationError("Annotation text must not be empty", field="text")
        if not author or not author.strip():
            raise ValidationError("Author must not be empty", field="author")
        context = tuple(context)
        if len(context) > MAX_CONTEXT_LINES:
            raise ValidationError(
                f"Context holds at most {MAX_CONTEXT_LINES} lines, got {len(context)}",
                field="context",
            )

        annotation = Annotation(
            line=line,
            author=author,
            text=text,
            timestamp=utc_timestamp(),
            context=context,
        )

        def insert(current: AnnotationFile) -> AnnotationFile:
            updated = current.with_annotation(annotation)
            if source and updated.snapshot is None:
                updated = updated.with_snapshot(SourceSnapshot.capture(source))
            return updated

        fs.ensure_directory(self._root.path)
        self._mutate(project, file_path, insert)
        logger.debug("Saved %s/%s line %d by %s", project, file_path, line, author)
        return annotation

    def delete(self, project: str, file_path: str, line: int) -> bool:
        """Remove the annotation at ``line``.

        Deleting a line that has no annotation succeeds without touching
        the file.  Removing the last annotation removes the file.

        Returns
        -------
        bool
            True if an annotation was removed.
        """
        line = _check_line(line)
        path = self._root.file_for(project, file_path)
        # A missing root has nothing to delete; don't create it.
        if not self._root.path.is_dir():
            return False
        try:
            if self._parse(self._read_raw(path), project, file_path).get(line) is None:
                return False
        except CorruptState as exc:
            logger.warning("Cannot delete from corrupt annotation file: %s", exc)
            return False

        def remove(current: AnnotationFile) -> AnnotationFile | None:
            if current.get(line) is None:
                return None
            return current.without_line(line)

        removed = self._mutate(project, file_path, remove) is not None
        if removed:
            logger.debug("Deleted %s/%s line %d", project, file_path, line)
        return removed

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_annotated_files(self, project: str) -> list[AnnotatedLine]:
        """Return every annotation in ``project``, tagged with its file path.

        Results are ordered by file path, then line.  Files that cannot
        be decoded or parsed are skipped.
        """
        try:
            names = sorted(os.listdir(self._root.path))
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise fs.io_error("list", self._root.path, exc) from exc

        results: list[AnnotatedLine] = []
        for name in names:
            if not name.endswith(SUFFIX):
                continue
            try:
                file_project, file_path = decode(name)
            except InvalidPath:
                continue
            if file_project != project:
                continue
            try:
                raw = self._read_raw(self._root.join(name))
                annotation_file = self._parse(raw, project, file_path)
            except (CorruptState, InvalidPath, StorageIOError) as exc:
                logger.warning("Skipping %s: %s", name, exc)
                continue
            results.extend(AnnotatedLine(file_path, a) for a in annotation_file.annotations)

        results.sort(key=lambda r: (r.file_path, r.annotation.line))
        return results
