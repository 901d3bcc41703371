"""Error taxonomy for linenote.

Every failure that can cross the host channel is a ``LinenoteError``
carrying an ``ErrorKind``.  The kind is the machine-readable tag sent to
callers as ``errorKind``; the message is sent verbatim as ``error``.

Hierarchy
---------
::

    LinenoteError
    ├── ValidationError          malformed caller input, never retried
    │   ├── InvalidPath          traversal / unencodable path
    │   ├── MissingField
    │   └── TypeMismatch
    ├── UnknownAction
    ├── SchemaVersionMismatch
    ├── StorageIOError           root unreachable, permission denied, disk full
    └── CorruptState             unreadable annotation or coordination data
"""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Wire tags for failures, aligned with the protocol's ``errorKind`` field."""

    VALIDATION_ERROR = "ValidationError"
    INVALID_PATH = "InvalidPath"
    MISSING_FIELD = "MissingField"
    TYPE_MISMATCH = "TypeMismatch"
    UNKNOWN_ACTION = "UnknownAction"
    SCHEMA_VERSION_MISMATCH = "SchemaVersionMismatch"
    IO_ERROR = "IOError"
    CORRUPT_STATE = "CorruptState"
    INTERNAL_ERROR = "InternalError"


class LinenoteError(Exception):
    """Base class for all linenote failures.

    Parameters
    ----------
    message:
        Human-readable, actionable description.
    field:
        Name of the request field at fault, when there is one.
    """

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def __str__(self) -> str:
        return self.message


class ValidationError(LinenoteError):
    """Raised when caller input is malformed."""

    kind = ErrorKind.VALIDATION_ERROR


class InvalidPath(ValidationError):
    """Raised for path traversal attempts or names that cannot be encoded."""

    kind = ErrorKind.INVALID_PATH


class MissingField(ValidationError):
    """Raised when a required request field is absent or empty."""

    kind = ErrorKind.MISSING_FIELD


class TypeMismatch(ValidationError):
    """Raised when a request field has the wrong JSON type."""

    kind = ErrorKind.TYPE_MISMATCH


class UnknownAction(LinenoteError):
    """Raised when a request names an action the host does not serve."""

    kind = ErrorKind.UNKNOWN_ACTION

    def __init__(self, action: str) -> None:
        self.action = action
        super().__init__(f"Unknown action: {action!r}", field="action")


class SchemaVersionMismatch(LinenoteError):
    """Raised when a message declares a schema version this host cannot read."""

    kind = ErrorKind.SCHEMA_VERSION_MISMATCH

    def __init__(self, version: object, supported: tuple[int, ...]) -> None:
        self.version = version
        self.supported = supported
        wanted = ", ".join(str(v) for v in supported)
        super().__init__(
            f"Unsupported schema version {version!r}; this host understands: {wanted}",
            field="version",
        )


class StorageIOError(LinenoteError):
    """Raised when the storage root cannot be read or written.

    Network-mounted roots tend to fail for long stretches, so callers
    should surface the message rather than retry automatically.
    """

    kind = ErrorKind.IO_ERROR


class CorruptState(LinenoteError):
    """Raised when persisted data exists but cannot be parsed."""

    kind = ErrorKind.CORRUPT_STATE
