"""linenote: durable per-line source annotations on a shared storage root.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
::

    import linenote

    root = "/mnt/team/notes"

    linenote.save(root, "demo", "a/b.c", 10, "alice", "why here?")
    linenote.read(root, "demo", "a/b.c")
    # [Annotation(line=10, author='alice', text='why here?', ...)]

    linenote.start_editing(root, "bob", "a/b.c", 12)
    linenote.get_editing(root)
    # [EditLock(user='bob', file_path='a/b.c', line=12, ...)]

    linenote.encode("demo", "a/b.c")
    'demo__a__b.c.yaml'

    linenote.__version__
    '0.1.0'
"""
from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta
from typing import TYPE_CHECKING

__version__: str = "0.1.0"

if TYPE_CHECKING:
    from linenote.locks.registry import EditLock
    from linenote.store.models import AnnotatedLine, Annotation


def encode(project: str, file_path: str) -> str:
    """Return the storage file name for ``file_path`` in ``project``.

    Raises
    ------
    linenote.errors.InvalidPath
        For traversal segments or names that cannot be encoded.
    """
    from linenote.paths.encoder import encode as _encode

    return _encode(project, file_path)


def decode(file_name: str) -> tuple[str, str]:
    """Return ``(project, file_path)`` for a name produced by ``encode``."""
    from linenote.paths.encoder import decode as _decode

    return _decode(file_name)


def read(storage_path: str, project: str, file_path: str) -> list["Annotation"]:
    """Return the annotations of one file, ordered by line.

    Parameters
    ----------
    storage_path:
        Absolute path of the storage root.
    project:
        Project the file belongs to.
    file_path:
        ``/``-separated path relative to the project root.

    Returns
    -------
    list[Annotation]
        Empty if the file has never been annotated.
    """
    from linenote.store.store import AnnotationStore

    return AnnotationStore(storage_path).read(project, file_path)


def save(
    storage_path: str,
    project: str,
    file_path: str,
    line: int,
    author: str,
    text: str,
    context: Sequence[str] = (),
    source: str | None = None,
) -> "Annotation":
    """Insert or replace the annotation at ``line``.

    Raises
    ------
    linenote.errors.ValidationError
        On empty text or other malformed input.
    linenote.errors.StorageIOError
        If the storage root cannot be written.
    """
    from linenote.store.store import AnnotationStore

    return AnnotationStore(storage_path).save(
        project, file_path, line, author, text, context=context, source=source
    )


def delete(storage_path: str, project: str, file_path: str, line: int) -> bool:
    """Remove the annotation at ``line``; True if one was removed."""
    from linenote.store.store import AnnotationStore

    return AnnotationStore(storage_path).delete(project, file_path, line)


def list_annotated_files(storage_path: str, project: str) -> list["AnnotatedLine"]:
    """Return every annotation in ``project`` tagged with its file path."""
    from linenote.store.store import AnnotationStore

    return AnnotationStore(storage_path).list_annotated_files(project)


def start_editing(
    storage_path: str, user: str, file_path: str, line: int, ttl: timedelta | None = None
) -> "EditLock":
    """Record that ``user`` is composing an annotation on ``file_path``:``line``."""
    from linenote.locks.registry import DEFAULT_TTL, EditLockRegistry

    return EditLockRegistry(storage_path, ttl=ttl or DEFAULT_TTL).start_editing(
        user, file_path, line
    )


def stop_editing(storage_path: str, user: str) -> bool:
    """Clear ``user``'s editing marker; True if one was live."""
    from linenote.locks.registry import EditLockRegistry

    return EditLockRegistry(storage_path).stop_editing(user)


def get_editing(storage_path: str, ttl: timedelta | None = None) -> list["EditLock"]:
    """Return all unexpired editing markers under ``storage_path``."""
    from linenote.locks.registry import DEFAULT_TTL, EditLockRegistry

    return EditLockRegistry(storage_path, ttl=ttl or DEFAULT_TTL).get_editing()


__all__ = [
    "__version__",
    "encode",
    "decode",
    "read",
    "save",
    "delete",
    "list_annotated_files",
    "start_editing",
    "stop_editing",
    "get_editing",
]
