"""Action dispatch for the host.

``Dispatcher.handle`` turns one decoded request message into exactly one
response mapping.  It never raises: every ``LinenoteError`` becomes a
tagged failure and anything unexpected becomes an ``InternalError``
failure, so one bad request cannot end the session.

Stores and registries are built per request from the request's
``storagePath``; nothing about storage is cached between requests, so
changes made by other host processes are always visible.

An action that times out leaves its worker thread running.  Until that
thread ends, requests that touch storage fail fast with ``IOError``
instead of running beside it.
"""
from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from datetime import datetime, timedelta
from functools import partial
from typing import Any

from linenote.config import HostConfig
from linenote.errors import ErrorKind, LinenoteError, StorageIOError
from linenote.locks import EditLockRegistry
from linenote.paths import StorageRoot
from linenote.protocol.schema import SCHEMA_VERSION
from linenote.protocol.validator import Request, RequestValidator, ResponseValidator
from linenote.store import AnnotationStore
from linenote.store.fs import OperationTimedOut, run_bounded

logger = logging.getLogger(__name__)

Response = dict[str, Any]
Handler = Callable[[Request], Response]


def success_response(**fields: Any) -> Response:
    return {"version": SCHEMA_VERSION, "success": True, **fields}


def failure_response(error: LinenoteError) -> Response:
    """Build the wire form of ``error``."""
    response: Response = {
        "version": SCHEMA_VERSION,
        "success": False,
        "error": error.message or error.kind.value,
        "errorKind": error.kind.value,
    }
    if error.field:
        response["errorField"] = error.field
    return response


def internal_failure(message: str) -> Response:
    return {
        "version": SCHEMA_VERSION,
        "success": False,
        "error": message,
        "errorKind": ErrorKind.INTERNAL_ERROR.value,
    }


def check_storage_root(root: StorageRoot) -> None:
    """Raise ``StorageIOError`` unless ``root`` is a usable directory."""
    path = root.path
    if not path.exists():
        raise StorageIOError(
            f"Storage path {path} does not exist. Create it or check that the share is mounted."
        )
    if not path.is_dir():
        raise StorageIOError(f"Storage path {path} is not a directory")
    if not os.access(path, os.R_OK | os.W_OK | os.X_OK):
        raise StorageIOError(f"Storage path {path} is not readable and writable by this user")


class Dispatcher:
    """Validate requests and route them to the store and lock registry.

    Parameters
    ----------
    config:
        Host settings; supplies the default storage root, edit TTL and
        filesystem timeout.
    clock:
        UTC clock handed to lock registries; injectable for tests.
    """

    def __init__(
        self,
        config: HostConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config or HostConfig()
        self._clock = clock
        defaults = {"storagePath": self._config.storage_path} if self._config.storage_path else None
        self._validator = RequestValidator(defaults=defaults)
        self._response_validator = ResponseValidator()
        self._handlers: dict[str, Handler] = {
            "ping": self._ping,
            "read": self._read,
            "save": self._save,
            "delete": self._delete,
            "listAnnotatedFiles": self._list_annotated_files,
            "startEditing": self._start_editing,
            "stopEditing": self._stop_editing,
            "getEditing": self._get_editing,
        }
        # (storage path, user) of every marker this session has set.
        self._held_markers: set[tuple[str, str]] = set()
        # Worker abandoned by a timed-out action; it may still touch storage.
        self._pending: threading.Thread | None = None

    @property
    def held_markers(self) -> frozenset[tuple[str, str]]:
        return frozenset(self._held_markers)

    def wait_for_pending(self, timeout: float | None = None) -> bool:
        """Wait for a timed-out action to finish; return True once none is running."""
        if self._pending is not None:
            self._pending.join(timeout)
            if self._pending.is_alive():
                return False
            self._pending = None
        return True

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def handle(self, message: object) -> Response:
        """Return the response for one decoded request ``message``."""
        action = None
        try:
            request = self._validator.parse(message)
            action = request.action
            response = self._run(request)
        except LinenoteError as exc:
            logger.debug("Request failed with %s: %s", exc.kind.value, exc)
            response = failure_response(exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unhandled error while serving %r", action)
            response = internal_failure(f"Internal error: {exc}")

        violations = self._response_validator.check(action, response)
        if violations:
            logger.error(
                "Response for %r failed validation: %s",
                action,
                "; ".join(str(v) for v in violations),
            )
            response = internal_failure("Internal error: host produced an invalid response")
        return response

    def close(self) -> None:
        """Release every editing marker this session set.  Never raises."""
        held = sorted(self._held_markers)
        self._held_markers.clear()
        if not held:
            return
        if not self.wait_for_pending(self._config.fs_timeout_seconds or None):
            logger.warning("Storage still busy; leaving %d editing marker(s) to expire", len(held))
            return
        for storage_path, user in held:
            try:
                run_bounded(
                    partial(self._registry(storage_path).stop_editing, user),
                    self._config.fs_timeout_seconds,
                    f"release editing marker of {user}",
                )
                logger.debug("Released editing marker of %s on close", user)
            except OperationTimedOut as exc:
                logger.warning("Could not release editing marker of %s: %s", user, exc)
                return
            except LinenoteError as exc:
                logger.warning("Could not release editing marker of %s: %s", user, exc)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _run(self, request: Request) -> Response:
        handler = self._handlers[request.action]
        if request.timeout_ms is not None:
            timeout = request.timeout_ms / 1000
        else:
            timeout = self._config.fs_timeout_seconds
        where = request.get("storagePath")
        if where and not self.wait_for_pending(0):
            raise StorageIOError(
                f"A previous operation on {where} timed out and is still pending. "
                "Try again once the storage path responds."
            )
        try:
            return run_bounded(
                lambda: handler(request), timeout, f"{request.action} in {where or 'host'}"
            )
        except OperationTimedOut as exc:
            self._pending = exc.worker
            raise

    def _store(self, request: Request) -> AnnotationStore:
        return AnnotationStore(request["storagePath"])

    def _registry(self, storage_path: str) -> EditLockRegistry:
        return EditLockRegistry(
            storage_path,
            ttl=timedelta(seconds=self._config.edit_ttl_seconds),
            clock=self._clock,
        )

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _ping(self, request: Request) -> Response:
        storage_path = request.get("storagePath")
        if storage_path:
            check_storage_root(StorageRoot.of(storage_path))
        return success_response()

    def _read(self, request: Request) -> Response:
        annotation_file = self._store(request).load(request["project"], request["filePath"])
        response = success_response(
            annotations=[a.to_wire() for a in annotation_file.annotations]
        )
        if annotation_file.snapshot is not None:
            response["sourceHash"] = annotation_file.snapshot.hash
        return response

    def _save(self, request: Request) -> Response:
        self._store(request).save(
            request["project"],
            request["filePath"],
            request["line"],
            request["author"],
            request["text"],
            context=request.get("context", ()),
            source=request.get("source"),
        )
        return success_response()

    def _delete(self, request: Request) -> Response:
        self._store(request).delete(request["project"], request["filePath"], request["line"])
        return success_response()

    def _list_annotated_files(self, request: Request) -> Response:
        results = self._store(request).list_annotated_files(request["project"])
        return success_response(annotations=[r.to_wire() for r in results])

    def _start_editing(self, request: Request) -> Response:
        storage_path, user = request["storagePath"], request["user"]
        self._registry(storage_path).start_editing(user, request["filePath"], request["line"])
        self._held_markers.add((storage_path, user))
        return success_response()

    def _stop_editing(self, request: Request) -> Response:
        storage_path, user = request["storagePath"], request["user"]
        self._registry(storage_path).stop_editing(user)
        self._held_markers.discard((storage_path, user))
        return success_response()

    def _get_editing(self, request: Request) -> Response:
        editors = self._registry(request["storagePath"]).get_editing()
        return success_response(editors=[lock.to_wire() for lock in editors])
