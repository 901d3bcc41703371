"""Unit tests for linenote.host.dispatcher and linenote.host.channel."""
from __future__ import annotations

import io
import os
import struct
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest

from linenote.config import HostConfig
from linenote.errors import StorageIOError
from linenote.host.channel import ChannelAdapter
from linenote.host.dispatcher import Dispatcher, check_storage_root
from linenote.paths import StorageRoot, encode
from linenote.protocol.framing import decode_message, encode_message
from linenote.store import AnnotationStore

if TYPE_CHECKING:
    from tests.conftest import FakeClock


@pytest.fixture()
def dispatcher(clock: "FakeClock") -> Dispatcher:
    return Dispatcher(clock=clock)


def _ok(response: dict[str, Any]) -> dict[str, Any]:
    assert response["success"] is True, response
    assert response["version"] == 1
    return response


def _failed(response: dict[str, Any], kind: str) -> dict[str, Any]:
    assert response["success"] is False, response
    assert response["errorKind"] == kind, response
    assert response["error"]
    return response


# ===========================================================================
# Round trip through every action
# ===========================================================================


class TestActions:
    def test_ping(self, dispatcher: Dispatcher) -> None:
        assert dispatcher.handle({"action": "ping"}) == {"version": 1, "success": True}

    def test_ping_checks_storage_path(self, dispatcher: Dispatcher, tmp_path: Path) -> None:
        _ok(dispatcher.handle({"action": "ping", "storagePath": str(tmp_path)}))
        response = dispatcher.handle({"action": "ping", "storagePath": str(tmp_path / "gone")})
        assert "does not exist" in _failed(response, "IOError")["error"]

    def test_save_read_delete(self, dispatcher: Dispatcher, storage_root: Path) -> None:
        root = str(storage_root)
        _ok(
            dispatcher.handle(
                {
                    "action": "save",
                    "storagePath": root,
                    "project": "demo",
                    "filePath": "a/b.c",
                    "line": 10,
                    "author": "alice",
                    "text": "why here?",
                }
            )
        )
        read = _ok(
            dispatcher.handle(
                {"action": "read", "storagePath": root, "project": "demo", "filePath": "a/b.c"}
            )
        )
        [annotation] = read["annotations"]
        assert annotation["line"] == 10
        assert annotation["author"] == "alice"
        assert annotation["text"] == "why here?"
        assert annotation["context"] == []
        assert annotation["timestamp"].endswith("Z")
        assert "sourceHash" not in read

        _ok(
            dispatcher.handle(
                {
                    "action": "delete",
                    "storagePath": root,
                    "project": "demo",
                    "filePath": "a/b.c",
                    "line": 10,
                }
            )
        )
        read = _ok(
            dispatcher.handle(
                {"action": "read", "storagePath": root, "project": "demo", "filePath": "a/b.c"}
            )
        )
        assert read["annotations"] == []

    def test_read_reports_source_hash(self, dispatcher: Dispatcher, storage_root: Path) -> None:
        dispatcher.handle(
            {
                "action": "save",
                "storagePath": str(storage_root),
                "project": "demo",
                "filePath": "a.c",
                "line": 1,
                "author": "alice",
                "text": "x",
                "context": ["int a;"],
                "source": "int a;\n",
            }
        )
        read = _ok(
            dispatcher.handle(
                {"action": "read", "storagePath": str(storage_root), "project": "demo", "filePath": "a.c"}
            )
        )
        assert len(read["sourceHash"]) == 12
        assert read["annotations"][0]["context"] == ["int a;"]

    def test_delete_missing_line_succeeds(self, dispatcher: Dispatcher, storage_root: Path) -> None:
        _ok(
            dispatcher.handle(
                {
                    "action": "delete",
                    "storagePath": str(storage_root),
                    "project": "demo",
                    "filePath": "a.c",
                    "line": 3,
                }
            )
        )

    def test_list_annotated_files(self, dispatcher: Dispatcher, storage_root: Path) -> None:
        for path, line in (("b.c", 2), ("a.c", 7)):
            dispatcher.handle(
                {
                    "action": "save",
                    "storagePath": str(storage_root),
                    "project": "demo",
                    "filePath": path,
                    "line": line,
                    "author": "alice",
                    "text": "x",
                }
            )
        response = _ok(
            dispatcher.handle(
                {"action": "listAnnotatedFiles", "storagePath": str(storage_root), "project": "demo"}
            )
        )
        assert [(a["filePath"], a["line"]) for a in response["annotations"]] == [
            ("a.c", 7),
            ("b.c", 2),
        ]

    def test_editing_markers(self, dispatcher: Dispatcher, storage_root: Path) -> None:
        root = str(storage_root)
        _ok(
            dispatcher.handle(
                {"action": "startEditing", "storagePath": root, "user": "bob", "filePath": "a.c", "line": 4}
            )
        )
        editors = _ok(dispatcher.handle({"action": "getEditing", "storagePath": root}))["editors"]
        assert editors == [
            {"user": "bob", "filePath": "a.c", "line": 4, "acquiredAt": "2026-10-18T09:00:00Z"}
        ]
        _ok(dispatcher.handle({"action": "stopEditing", "storagePath": root, "user": "bob"}))
        assert _ok(dispatcher.handle({"action": "getEditing", "storagePath": root}))["editors"] == []

    def test_markers_expire_with_configured_ttl(
        self, clock: "FakeClock", storage_root: Path
    ) -> None:
        dispatcher = Dispatcher(HostConfig(edit_ttl_seconds=30), clock=clock)
        root = str(storage_root)
        dispatcher.handle(
            {"action": "startEditing", "storagePath": root, "user": "bob", "filePath": "a.c", "line": 4}
        )
        clock.advance(31)
        assert _ok(dispatcher.handle({"action": "getEditing", "storagePath": root}))["editors"] == []

    def test_get_editing_on_missing_root(self, dispatcher: Dispatcher, tmp_path: Path) -> None:
        response = dispatcher.handle({"action": "getEditing", "storagePath": str(tmp_path / "x")})
        assert _ok(response)["editors"] == []

    def test_default_storage_path_from_config(self, clock: "FakeClock", storage_root: Path) -> None:
        dispatcher = Dispatcher(HostConfig(storage_path=str(storage_root)), clock=clock)
        _ok(
            dispatcher.handle(
                {"action": "save", "project": "p", "filePath": "f", "line": 1, "author": "a", "text": "t"}
            )
        )
        assert (storage_root / "p__f.yaml").is_file()


# ===========================================================================
# Failures
# ===========================================================================


class TestFailures:
    def test_unknown_action(self, dispatcher: Dispatcher) -> None:
        response = _failed(dispatcher.handle({"action": "frobnicate"}), "UnknownAction")
        assert response["errorField"] == "action"

    def test_missing_field(self, dispatcher: Dispatcher, storage_root: Path) -> None:
        response = dispatcher.handle({"action": "read", "storagePath": str(storage_root)})
        assert _failed(response, "MissingField")["errorField"] == "project"

    def test_type_mismatch(self, dispatcher: Dispatcher, storage_root: Path) -> None:
        response = dispatcher.handle(
            {
                "action": "delete",
                "storagePath": str(storage_root),
                "project": "demo",
                "filePath": "a.c",
                "line": "ten",
            }
        )
        assert _failed(response, "TypeMismatch")["errorField"] == "line"

    def test_version_mismatch(self, dispatcher: Dispatcher) -> None:
        _failed(dispatcher.handle({"action": "ping", "version": 2}), "SchemaVersionMismatch")

    def test_not_an_object(self, dispatcher: Dispatcher) -> None:
        _failed(dispatcher.handle(["ping"]), "ValidationError")

    def test_traversal_is_invalid_path(self, dispatcher: Dispatcher, storage_root: Path) -> None:
        response = dispatcher.handle(
            {
                "action": "save",
                "storagePath": str(storage_root),
                "project": "demo",
                "filePath": "../../etc/passwd",
                "line": 1,
                "author": "mallory",
                "text": "x",
            }
        )
        assert _failed(response, "InvalidPath")["errorField"] == "filePath"
        assert list(storage_root.iterdir()) == []

    def test_relative_storage_path(self, dispatcher: Dispatcher) -> None:
        response = dispatcher.handle({"action": "getEditing", "storagePath": "notes"})
        _failed(response, "InvalidPath")

    def test_empty_text(self, dispatcher: Dispatcher, storage_root: Path) -> None:
        response = dispatcher.handle(
            {
                "action": "save",
                "storagePath": str(storage_root),
                "project": "demo",
                "filePath": "a.c",
                "line": 1,
                "author": "alice",
                "text": "   ",
            }
        )
        assert _failed(response, "ValidationError")["errorField"] == "text"

    def test_unwritable_storage(self, dispatcher: Dispatcher, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")
        response = dispatcher.handle(
            {
                "action": "save",
                "storagePath": str(blocker),
                "project": "demo",
                "filePath": "a.c",
                "line": 1,
                "author": "alice",
                "text": "x",
            }
        )
        _failed(response, "IOError")

    def test_unexpected_exception_is_internal_error(
        self, dispatcher: Dispatcher, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def explode(request: object) -> None:
            raise RuntimeError("kaboom")

        monkeypatch.setitem(dispatcher._handlers, "ping", explode)
        response = _failed(dispatcher.handle({"action": "ping"}), "InternalError")
        assert "kaboom" in response["error"]

    def test_invalid_response_is_replaced(
        self, dispatcher: Dispatcher, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setitem(dispatcher._handlers, "ping", lambda r: {"version": 1})
        _failed(dispatcher.handle({"action": "ping"}), "InternalError")

    def test_timeout_becomes_io_error(
        self, dispatcher: Dispatcher, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        release = threading.Event()
        monkeypatch.setitem(dispatcher._handlers, "ping", lambda r: release.wait(5))
        try:
            response = dispatcher.handle({"action": "ping", "timeoutMs": 50})
        finally:
            release.set()
        assert "Timed out" in _failed(response, "IOError")["error"]

    def test_timed_out_save_holds_off_storage_until_it_lands(
        self, dispatcher: Dispatcher, storage_root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        root = str(storage_root)
        release = threading.Event()
        real_save = AnnotationStore.save

        def stalled_save(self: AnnotationStore, *args: Any, **kwargs: Any) -> Any:
            release.wait(5)
            return real_save(self, *args, **kwargs)

        monkeypatch.setattr(AnnotationStore, "save", stalled_save)
        read = {"action": "read", "storagePath": root, "project": "demo", "filePath": "a.c"}
        try:
            response = dispatcher.handle(
                {
                    "action": "save",
                    "storagePath": root,
                    "project": "demo",
                    "filePath": "a.c",
                    "line": 1,
                    "author": "alice",
                    "text": "late",
                    "timeoutMs": 50,
                }
            )
            assert "may still complete" in _failed(response, "IOError")["error"]
            assert "still pending" in _failed(dispatcher.handle(read), "IOError")["error"]
            _ok(dispatcher.handle({"action": "ping"}))
        finally:
            release.set()

        assert dispatcher.wait_for_pending(5)
        assert [a["text"] for a in _ok(dispatcher.handle(read))["annotations"]] == ["late"]


# ===========================================================================
# Damaged files written by hand or by other tools
# ===========================================================================


class TestDamagedStorage:
    def test_editor_entry_with_line_zero_is_skipped(
        self, dispatcher: Dispatcher, storage_root: Path
    ) -> None:
        (storage_root / ".editing.yaml").write_text(
            "format: 1\n"
            "editors:\n"
            "- {user: alice, filePath: a.c, line: 4, acquiredAt: '2026-10-18T09:00:00Z'}\n"
            "- {user: bob, filePath: b.c, line: 0, acquiredAt: '2026-10-18T09:00:00Z'}\n",
            encoding="utf-8",
        )
        response = dispatcher.handle({"action": "getEditing", "storagePath": str(storage_root)})
        assert [e["user"] for e in _ok(response)["editors"]] == ["alice"]

    def test_annotation_with_emptied_text_reads_as_absent(
        self, dispatcher: Dispatcher, storage_root: Path
    ) -> None:
        root = str(storage_root)
        store = AnnotationStore(root)
        store.save("demo", "a.c", 1, "alice", "original")
        path = storage_root / encode("demo", "a.c")
        path.write_text(
            path.read_text(encoding="utf-8").replace("text: original", "text: ''"),
            encoding="utf-8",
        )
        read = {"action": "read", "storagePath": root, "project": "demo", "filePath": "a.c"}
        assert _ok(dispatcher.handle(read))["annotations"] == []
        listed = dispatcher.handle(
            {"action": "listAnnotatedFiles", "storagePath": root, "project": "demo"}
        )
        assert _ok(listed)["annotations"] == []


# ===========================================================================
# Session cleanup
# ===========================================================================


class TestClose:
    def test_close_releases_held_marker(self, dispatcher: Dispatcher, storage_root: Path) -> None:
        root = str(storage_root)
        dispatcher.handle(
            {"action": "startEditing", "storagePath": root, "user": "bob", "filePath": "a.c", "line": 4}
        )
        assert dispatcher.held_markers == {(root, "bob")}
        dispatcher.close()
        assert dispatcher.held_markers == frozenset()
        assert _ok(dispatcher.handle({"action": "getEditing", "storagePath": root}))["editors"] == []

    def test_stop_editing_forgets_marker(self, dispatcher: Dispatcher, storage_root: Path) -> None:
        root = str(storage_root)
        dispatcher.handle(
            {"action": "startEditing", "storagePath": root, "user": "bob", "filePath": "a.c", "line": 4}
        )
        dispatcher.handle({"action": "stopEditing", "storagePath": root, "user": "bob"})
        assert dispatcher.held_markers == frozenset()

    def test_close_without_marker(self, dispatcher: Dispatcher) -> None:
        dispatcher.close()

    def test_close_releases_markers_under_every_user_and_root(
        self, dispatcher: Dispatcher, storage_root: Path, tmp_path: Path
    ) -> None:
        other_root = tmp_path / "other-notes"
        other_root.mkdir()
        roots = [str(storage_root), str(other_root)]
        for root in roots:
            for user in ("bob", "bob-laptop"):
                _ok(
                    dispatcher.handle(
                        {
                            "action": "startEditing",
                            "storagePath": root,
                            "user": user,
                            "filePath": "a.c",
                            "line": 4,
                        }
                    )
                )
        assert len(dispatcher.held_markers) == 4
        dispatcher.close()
        for root in roots:
            response = dispatcher.handle({"action": "getEditing", "storagePath": root})
            assert _ok(response)["editors"] == []

    def test_close_leaves_other_users(
        self, dispatcher: Dispatcher, storage_root: Path, clock: "FakeClock"
    ) -> None:
        root = str(storage_root)
        Dispatcher(clock=clock).handle(
            {"action": "startEditing", "storagePath": root, "user": "carol", "filePath": "b.c", "line": 1}
        )
        dispatcher.handle(
            {"action": "startEditing", "storagePath": root, "user": "bob", "filePath": "a.c", "line": 4}
        )
        dispatcher.close()
        editors = Dispatcher(clock=clock).handle({"action": "getEditing", "storagePath": root})["editors"]
        assert [e["user"] for e in editors] == ["carol"]


class TestCheckStorageRoot:
    def test_usable_directory(self, tmp_path: Path) -> None:
        check_storage_root(StorageRoot.of(tmp_path))

    def test_not_a_directory(self, tmp_path: Path) -> None:
        target = tmp_path / "f"
        target.write_text("", encoding="utf-8")
        with pytest.raises(StorageIOError, match="not a directory"):
            check_storage_root(StorageRoot.of(target))

    @pytest.mark.skipif(
        not hasattr(os, "geteuid") or os.geteuid() == 0, reason="needs POSIX permissions as non-root"
    )
    def test_read_only_directory(self, tmp_path: Path) -> None:
        os.chmod(tmp_path, 0o500)
        try:
            with pytest.raises(StorageIOError, match="readable and writable"):
                check_storage_root(StorageRoot.of(tmp_path))
        finally:
            os.chmod(tmp_path, 0o700)


# ===========================================================================
# ChannelAdapter
# ===========================================================================


def _frames(*messages: object) -> io.BytesIO:
    data = b""
    for message in messages:
        payload = message if isinstance(message, bytes) else encode_message(message)  # type: ignore[arg-type]
        data += struct.pack("<I", len(payload)) + payload
    return io.BytesIO(data)


def _responses(stream: io.BytesIO) -> list[dict[str, Any]]:
    data = stream.getvalue()
    responses = []
    while data:
        (length,) = struct.unpack("<I", data[:4])
        responses.append(decode_message(data[4 : 4 + length]))
        data = data[4 + length :]
    return responses  # type: ignore[return-value]


class TestChannelAdapter:
    def test_one_response_per_request_in_order(self, storage_root: Path) -> None:
        root = str(storage_root)
        reader = _frames(
            {"action": "ping"},
            {"action": "frobnicate"},
            {"action": "getEditing", "storagePath": root},
        )
        writer = io.BytesIO()
        handled = ChannelAdapter(Dispatcher(), reader, writer).serve()
        responses = _responses(writer)
        assert handled == 3
        assert [r["success"] for r in responses] == [True, False, True]
        assert responses[1]["errorKind"] == "UnknownAction"

    def test_malformed_json_does_not_end_session(self) -> None:
        reader = _frames(b"{not json", {"action": "ping"})
        writer = io.BytesIO()
        ChannelAdapter(Dispatcher(), reader, writer).serve()
        first, second = _responses(writer)
        assert first["errorKind"] == "ValidationError"
        assert first["error"].startswith("Failed to parse request")
        assert second["success"] is True

    def test_oversized_request(self) -> None:
        reader = _frames({"action": "ping", "pad": "x" * 200}, {"action": "ping"})
        writer = io.BytesIO()
        config = HostConfig(max_inbound_bytes=100)
        ChannelAdapter(Dispatcher(config), reader, writer, config).serve()
        first, second = _responses(writer)
        assert first["errorKind"] == "ValidationError"
        assert "exceeds" in first["error"]
        assert second["success"] is True

    def test_oversized_response(self, storage_root: Path) -> None:
        root = str(storage_root)
        save = {
            "action": "save",
            "storagePath": root,
            "project": "demo",
            "filePath": "a.c",
            "line": 1,
            "author": "alice",
            "text": "x" * 500,
        }
        read = {"action": "read", "storagePath": root, "project": "demo", "filePath": "a.c"}
        writer = io.BytesIO()
        config = HostConfig(max_outbound_bytes=300)
        ChannelAdapter(Dispatcher(config), _frames(save, read), writer, config).serve()
        saved, too_big = _responses(writer)
        assert saved["success"] is True
        assert too_big["success"] is False
        assert "Response of" in too_big["error"]

    def test_end_of_stream_releases_marker(self, storage_root: Path) -> None:
        root = str(storage_root)
        reader = _frames(
            {"action": "startEditing", "storagePath": root, "user": "bob", "filePath": "a.c", "line": 1}
        )
        ChannelAdapter(Dispatcher(), reader, io.BytesIO()).serve()
        editors = Dispatcher().handle({"action": "getEditing", "storagePath": root})["editors"]
        assert editors == []

    def test_truncated_frame_ends_session(self) -> None:
        reader = io.BytesIO(struct.pack("<I", 50) + b'{"action"')
        writer = io.BytesIO()
        assert ChannelAdapter(Dispatcher(), reader, writer).serve() == 0
        assert writer.getvalue() == b""
