"""Editing Lock Registry: advisory "who is typing where" markers.

Markers live in one shared coordination record, ``.editing.yaml``, at
the storage root so that every host process (possibly on different
machines) sees the same set.  A marker is a hint, not a mutex: two
users may hold markers on the same line and ``start_editing`` never
refuses.

Expiry is checked lazily whenever the record is read; no process runs
a sweeper.  A host that is killed without ``stop_editing`` therefore
stops being reported once ``ttl`` has elapsed.  An unreadable or
corrupt record reads as empty and is overwritten by the next
``start_editing``.

Usage
-----
::

    from linenote.locks import EditLockRegistry

    registry = EditLockRegistry("/mnt/notes")
    registry.start_editing("alice", "a/b.c", 10)
    registry.get_editing()       # [EditLock(user='alice', ...)]
    registry.stop_editing("alice")
"""
from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import yaml

from linenote.errors import CorruptState, LinenoteError, ValidationError
from linenote.paths import StorageRoot
from linenote.store import fs
from linenote.store.models import parse_timestamp, utc_timestamp

logger = logging.getLogger(__name__)

RECORD_NAME = ".editing.yaml"
RECORD_FORMAT = 1
DEFAULT_TTL = timedelta(minutes=5)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EditLock:
    """One user's editing marker.

    Parameters
    ----------
    user:
        Free-text user name; a user holds at most one marker per root.
    file_path:
        Relative path of the file being annotated.
    line:
        Line the user is composing an annotation for.
    acquired_at:
        UTC timestamp of the latest ``start_editing`` call.
    """

    user: str
    file_path: str
    line: int
    acquired_at: str

    def is_expired(self, now: datetime, ttl: timedelta) -> bool:
        return parse_timestamp(self.acquired_at) + ttl < now

    def to_wire(self) -> dict[str, object]:
        return {
            "user": self.user,
            "filePath": self.file_path,
            "line": self.line,
            "acquiredAt": self.acquired_at,
        }


def _text_field(entry: dict[str, object], key: str) -> str:
    value = entry[key]
    if not isinstance(value, str) or not value:
        raise ValueError(f"{key} {value!r} is not a non-empty string")
    return value


def _lock_from_entry(entry: object) -> EditLock:
    if not isinstance(entry, dict):
        raise ValueError("entry is not a mapping")
    line = entry["line"]
    if isinstance(line, bool) or not isinstance(line, int) or line < 1:
        raise ValueError(f"line {line!r} is not a positive integer")
    acquired = entry["acquiredAt"]
    if isinstance(acquired, datetime):
        acquired = utc_timestamp(acquired)
    lock = EditLock(
        user=_text_field(entry, "user"),
        file_path=_text_field(entry, "filePath"),
        line=line,
        acquired_at=str(acquired),
    )
    parse_timestamp(lock.acquired_at)
    return lock


class EditLockRegistry:
    """Advisory editing markers shared through the storage root.

    Parameters
    ----------
    root:
        The storage root holding the coordination record.
    ttl:
        How long a marker stays visible without being refreshed.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        root: "StorageRoot | str | os.PathLike[str]",
        ttl: timedelta = DEFAULT_TTL,
        clock: Clock | None = None,
    ) -> None:
        self._root = StorageRoot.of(root)
        self._ttl = ttl
        self._clock = clock or _utcnow

    @property
    def record_path(self) -> Path:
        return self._root.join(RECORD_NAME)

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    # ------------------------------------------------------------------
    # Record I/O
    # ------------------------------------------------------------------

    def _load_all(self) -> list[EditLock]:
        """Return every marker in the record, expired or not.

        Raises
        ------
        CorruptState
            If the record exists but cannot be parsed.
        StorageIOError
            If the record exists but cannot be read.
        """
        try:
            text = fs.read_text(self.record_path)
        except UnicodeDecodeError as exc:
            raise CorruptState(f"{RECORD_NAME} is not valid UTF-8") from exc
        if text is None:
            return []
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise CorruptState(f"{RECORD_NAME} is not valid YAML: {exc}") from exc
        if not isinstance(data, dict) or data.get("format") != RECORD_FORMAT:
            raise CorruptState(f"{RECORD_NAME} has an unexpected layout")

        locks: list[EditLock] = []
        for entry in data.get("editors") or []:
            try:
                locks.append(_lock_from_entry(entry))
            except (KeyError, TypeError, ValueError) as exc:
                logger.debug("Dropping unreadable editing entry %r: %s", entry, exc)
        return locks

    def _load_live(self) -> list[EditLock]:
        """Return unexpired markers, treating an unreadable record as empty."""
        try:
            locks = self._load_all()
        except CorruptState as exc:
            logger.warning("Ignoring corrupt editing record in %s: %s", self._root, exc)
            return []
        now = self._clock()
        return [lock for lock in locks if not lock.is_expired(now, self._ttl)]

    def _store(self, locks: list[EditLock]) -> None:
        if not locks:
            fs.remove_file(self.record_path)
            return
        document = {
            "format": RECORD_FORMAT,
            "editors": [
                {
                    "user": lock.user,
                    "filePath": lock.file_path,
                    "line": lock.line,
                    "acquiredAt": lock.acquired_at,
                }
                for lock in locks
            ],
        }
        fs.atomic_write_text(
            self.record_path,
            yaml.safe_dump(document, default_flow_style=False, allow_unicode=True, sort_keys=False),
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def start_editing(self, user: str, file_path: str, line: int) -> EditLock:
        """Record (or refresh) ``user``'s marker on ``file_path``:``line``.

        Replaces any previous marker for ``user`` and prunes expired
        markers of other users.  Never rejects because someone else is
        on the same line.

        Raises
        ------
        ValidationError
            On an empty user or file path, or a non-positive line.
        StorageIOError
            If the record cannot be written.
        """
        if not user or not user.strip():
            raise ValidationError("User must not be empty", field="user")
        if not file_path:
            raise ValidationError("File path must not be empty", field="filePath")
        if isinstance(line, bool) or not isinstance(line, int) or line < 1:
            raise ValidationError(f"Line must be a positive integer, got {line!r}", field="line")

        fs.ensure_directory(self._root.path)
        try:
            live = self._load_live()
        except LinenoteError as exc:
            # Unreadable record: overwrite it rather than fail.
            logger.warning("Rewriting unreadable editing record: %s", exc)
            live = []

        lock = EditLock(
            user=user,
            file_path=file_path,
            line=line,
            acquired_at=utc_timestamp(self._clock()),
        )
        others = [existing for existing in live if existing.user != user]
        self._store([*others, lock])
        logger.debug("%s started editing %s:%d", user, file_path, line)
        return lock

    def stop_editing(self, user: str) -> bool:
        """Remove ``user``'s marker.

        Returns
        -------
        bool
            True if a live marker was removed.
        """
        if not user or not user.strip():
            raise ValidationError("User must not be empty", field="user")
        if not self._root.path.is_dir():
            return False
        live = self._load_live()
        remaining = [lock for lock in live if lock.user != user]
        if len(remaining) == len(live):
            return False
        self._store(remaining)
        logger.debug("%s stopped editing", user)
        return True

    def get_editing(self) -> list[EditLock]:
        """Return all unexpired markers.

        Never fails on a missing or corrupt record; both read as empty.
        """
        try:
            return self._load_live()
        except LinenoteError as exc:
            logger.warning("Cannot read editing record in %s: %s", self._root, exc)
            return []
