"""Filesystem primitives shared by the annotation store and lock registry.

``atomic_write_text`` writes through a temporary file in the target's
directory and renames it into place, so readers on any host see either
the old or the new content.  ``run_bounded`` caps how long a caller waits
on a storage root that may be a stalled network mount.
"""
from __future__ import annotations

import logging
import os
import tempfile
import threading
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from linenote.errors import StorageIOError
from linenote.store.models import utc_timestamp

logger = logging.getLogger(__name__)

T = TypeVar("T")


def io_error(action: str, path: Path, exc: OSError) -> StorageIOError:
    """Wrap ``exc`` in a ``StorageIOError`` with an actionable message."""
    reason = exc.strerror or str(exc)
    return StorageIOError(
        f"Cannot {action} {path}: {reason}. "
        "Check that the storage path exists, is mounted, and is writable."
    )


def read_text(path: Path) -> str | None:
    """Return the UTF-8 content of ``path``, or None if it does not exist."""
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise io_error("read", path, exc) from exc


def ensure_directory(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise io_error("create storage directory", path, exc) from exc


def _target_mode(path: Path) -> int:
    # mkstemp creates 0600 files; other users of a shared root must be able
    # to read them, so keep the existing mode or fall back to the umask.
    try:
        return path.stat().st_mode & 0o777
    except OSError:
        pass
    current = os.umask(0)
    os.umask(current)
    return 0o666 & ~current


UNCHECKED = object()


def _unchanged(path: Path, expected: object) -> bool:
    try:
        return read_text(path) == expected
    except (UnicodeDecodeError, StorageIOError):
        return False


def atomic_write_text(path: Path, text: str, expected: object = UNCHECKED) -> bool:
    """Replace ``path`` with ``text`` in a single rename.

    The temporary file is created next to ``path`` (a rename is only
    atomic within one filesystem) and removed again on failure.

    Parameters
    ----------
    expected:
        When given, the content ``path`` must still hold (None meaning
        "absent") right before the rename.  If another writer got there
        first the temporary file is discarded and False is returned.
    """
    directory = path.parent
    mode = _target_mode(path)
    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=directory
        )
    except OSError as exc:
        raise io_error("write to", directory, exc) from exc

    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_name, mode)
        if expected is not UNCHECKED and not _unchanged(path, expected):
            os.unlink(tmp_name)
            logger.debug("%s changed underneath us; not replacing", path)
            return False
        os.replace(tmp_name, path)
    except OSError as exc:
        try:
            os.unlink(tmp_name)
        except OSError:
            logger.debug("Could not remove temporary file %s", tmp_name)
        raise io_error("write", path, exc) from exc
    logger.debug("Wrote %s (%d bytes)", path, len(text))
    return True


def remove_file(path: Path, expected: object = UNCHECKED) -> bool:
    """Delete ``path``; return False if it was already gone.

    With ``expected``, also return False (and leave the file alone) when
    ``path`` no longer holds that content.
    """
    if expected is not UNCHECKED and not _unchanged(path, expected):
        return False
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise io_error("delete", path, exc) from exc
    logger.debug("Removed %s", path)
    return True


def quarantine(path: Path) -> Path | None:
    """Move an unreadable file aside so the next write does not destroy it.

    Returns the new location, or None if ``path`` vanished meanwhile.
    """
    stamp = utc_timestamp().replace(":", "")
    target = path.with_name(f"{path.name}.corrupt-{stamp}")
    try:
        os.replace(path, target)
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise io_error("move aside corrupt file", path, exc) from exc
    logger.warning("Moved corrupt file %s to %s", path, target)
    return target


class OperationTimedOut(StorageIOError):
    """Raised by ``run_bounded`` when the caller stopped waiting.

    ``worker`` is the abandoned thread.  It may still finish the work,
    so callers must not start more filesystem work until it has ended.
    """

    def __init__(self, message: str, worker: threading.Thread) -> None:
        super().__init__(message)
        self.worker = worker


def run_bounded(func: Callable[[], T], timeout: float | None, description: str) -> T:
    """Run ``func`` and give up after ``timeout`` seconds.

    The call runs on a daemon thread so a hung filesystem call cannot
    keep the process alive.  On timeout the thread is abandoned and
    ``OperationTimedOut`` is raised.

    Parameters
    ----------
    func:
        Zero-argument callable performing the filesystem work.
    timeout:
        Seconds to wait; None or a non-positive value runs ``func``
        inline without a limit.
    description:
        Short phrase for the error message, e.g. ``"save demo/a.c"``.
    """
    if timeout is None or timeout <= 0:
        return func()

    outcome: dict[str, object] = {}

    def target() -> None:
        try:
            outcome["value"] = func()
        except BaseException as exc:  # noqa: BLE001
            outcome["error"] = exc

    worker = threading.Thread(target=target, name=f"linenote-io:{description}", daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        logger.warning("Timed out after %.1fs: %s", timeout, description)
        raise OperationTimedOut(
            f"Timed out after {timeout:g}s while trying to {description}. "
            "The operation may still complete in the background. "
            "The storage path may be on an unavailable network mount.",
            worker,
        )
    if "error" in outcome:
        error = outcome["error"]
        assert isinstance(error, BaseException)
        raise error
    return outcome["value"]  # type: ignore[return-value]


__all__ = [
    "UNCHECKED",
    "OperationTimedOut",
    "atomic_write_text",
    "ensure_directory",
    "io_error",
    "quarantine",
    "read_text",
    "remove_file",
    "run_bounded",
]
