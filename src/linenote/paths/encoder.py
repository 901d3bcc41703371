"""Reversible mapping from (project, relative path) to a flat file name.

Every annotation file lives directly inside the storage root, so the
project name and the ``/``-separated relative path have to be folded
into a single file name without losing information.

Encoding rules
--------------
- ``__`` (``SEPARATOR``) joins the project and each path segment.
- Every literal ``_`` in the input is written as ``_~`` (``ESCAPE``).

Because a literal underscore is always followed by ``~`` after
escaping, ``__`` can only ever mean "separator", and decoding is a
single left-to-right scan.  Names without underscores stay readable::

    >>> encode("demo", "src/main/App.java")
    'demo__src__main__App.java.yaml'
    >>> encode("my_proj", "a__b.c")
    'my_~proj__a_~_~b.c.yaml'
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from linenote.errors import InvalidPath

SEPARATOR = "__"
ESCAPE = "_~"
SUFFIX = ".yaml"

# Most filesystems cap a single path component at 255 bytes.
MAX_NAME_BYTES = 255

_FORBIDDEN_CHARS = ("\\", "\x00")


def _check_project(project: str) -> None:
    if not project:
        raise InvalidPath("Project name must not be empty", field="project")
    if project in (".", ".."):
        raise InvalidPath(f"Project name {project!r} is not allowed", field="project")
    if "/" in project or any(c in project for c in _FORBIDDEN_CHARS):
        raise InvalidPath(
            f"Project name {project!r} must not contain path separators or NUL",
            field="project",
        )


def split_relative_path(relative_path: str) -> list[str]:
    """Split a ``/``-separated relative path into validated segments.

    Raises
    ------
    InvalidPath
        For empty or absolute paths, backslashes, NUL bytes, empty
        segments, and ``.`` / ``..`` segments.
    """
    if not relative_path:
        raise InvalidPath("File path must not be empty", field="filePath")
    if relative_path.startswith("/"):
        raise InvalidPath(
            f"File path {relative_path!r} must be relative to the project root",
            field="filePath",
        )
    if "\\" in relative_path:
        raise InvalidPath(
            f"File path {relative_path!r} must use '/' as separator",
            field="filePath",
        )
    if "\x00" in relative_path:
        raise InvalidPath("File path must not contain NUL bytes", field="filePath")

    segments = relative_path.split("/")
    for segment in segments:
        if segment == "":
            raise InvalidPath(
                f"File path {relative_path!r} contains an empty segment",
                field="filePath",
            )
        if segment in (".", ".."):
            raise InvalidPath(
                f"File path {relative_path!r} must not contain {segment!r} segments",
                field="filePath",
            )
    return segments


def _escape(component: str) -> str:
    return component.replace("_", ESCAPE)


def encode(project: str, relative_path: str) -> str:
    """Return the storage file name for ``relative_path`` inside ``project``.

    The result contains no path separator and is accepted by
    ``decode``, which returns the original pair.

    Raises
    ------
    InvalidPath
        If either component is rejected or the name would be too long.
    """
    _check_project(project)
    segments = split_relative_path(relative_path)

    stem = SEPARATOR.join(_escape(part) for part in [project, *segments])
    name = stem + SUFFIX
    if len(name.encode("utf-8")) > MAX_NAME_BYTES:
        raise InvalidPath(
            f"Encoded name for {project}/{relative_path} exceeds {MAX_NAME_BYTES} bytes",
            field="filePath",
        )
    return name


def decode(file_name: str) -> tuple[str, str]:
    """Invert ``encode``: return ``(project, relative_path)`` for ``file_name``.

    Raises
    ------
    InvalidPath
        If ``file_name`` was not produced by ``encode``.
    """
    if not file_name.endswith(SUFFIX):
        raise InvalidPath(f"{file_name!r} is not an annotation file name")
    stem = file_name[: -len(SUFFIX)]

    parts: list[str] = []
    current: list[str] = []
    i = 0
    while i < len(stem):
        char = stem[i]
        if char != "_":
            current.append(char)
            i += 1
            continue
        follower = stem[i + 1] if i + 1 < len(stem) else ""
        if follower == "~":
            current.append("_")
        elif follower == "_":
            parts.append("".join(current))
            current = []
        else:
            raise InvalidPath(f"{file_name!r} has a dangling '_' at offset {i}")
        i += 2
    parts.append("".join(current))

    if len(parts) < 2:
        raise InvalidPath(f"{file_name!r} has no project separator")

    project, segments = parts[0], parts[1:]
    relative_path = "/".join(segments)
    # Re-validate so a hand-made name cannot smuggle in traversal segments.
    _check_project(project)
    split_relative_path(relative_path)
    return project, relative_path


def is_annotation_file_name(file_name: str) -> bool:
    """Return True if ``file_name`` decodes cleanly."""
    try:
        decode(file_name)
    except InvalidPath:
        return False
    return True


@dataclass(frozen=True)
class StorageRoot:
    """A configured directory holding annotation files.

    Parameters
    ----------
    path:
        Absolute directory path; ``~`` is expanded.  The directory does
        not have to exist yet.
    """

    path: Path

    @classmethod
    def of(cls, value: "str | os.PathLike[str] | StorageRoot") -> "StorageRoot":
        """Coerce a string, path, or existing root into a ``StorageRoot``."""
        if isinstance(value, StorageRoot):
            return value
        raw = os.fspath(value)
        if not raw:
            raise InvalidPath("Storage path must not be empty", field="storagePath")
        if "\x00" in raw:
            raise InvalidPath("Storage path must not contain NUL bytes", field="storagePath")
        expanded = Path(raw).expanduser()
        if not expanded.is_absolute():
            raise InvalidPath(
                f"Storage path {raw!r} must be absolute", field="storagePath"
            )
        return cls(expanded)

    def __str__(self) -> str:
        return str(self.path)

    def join(self, name: str) -> Path:
        """Return ``name`` inside the root, refusing anything that escapes it."""
        if not name or "/" in name or "\\" in name or name in (".", ".."):
            raise InvalidPath(f"{name!r} is not a plain file name")
        target = self.path / name
        root_real = os.path.realpath(self.path)
        parent_real = os.path.dirname(os.path.realpath(target))
        if parent_real != root_real:
            raise InvalidPath(f"{name!r} resolves outside the storage root {self.path}")
        return target

    def file_for(self, project: str, relative_path: str) -> Path:
        """Return the annotation file path for ``(project, relative_path)``."""
        return self.join(encode(project, relative_path))
