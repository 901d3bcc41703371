"""Unit tests for linenote.cli.main using Click's CliRunner."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from linenote.cli.main import cli
from linenote.locks import EditLockRegistry
from linenote.store import AnnotationStore


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


class TestVersion:
    def test_version_option(self, runner: CliRunner, expected_version: str) -> None:
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert expected_version in result.output

    def test_version_command(self, runner: CliRunner, expected_version: str) -> None:
        result = runner.invoke(cli, ["version"])
        assert result.exit_code == 0
        assert expected_version in result.output
        assert "Protocol" in result.output


class TestAnnotationCommands:
    def test_add_show_rm(self, runner: CliRunner, storage_root: Path) -> None:
        root = str(storage_root)
        result = runner.invoke(
            cli, ["add", "demo", "a/b.c", "10", "why here?", "--author", "alice", "-s", root]
        )
        assert result.exit_code == 0, result.output
        assert "Saved" in result.output

        result = runner.invoke(cli, ["show", "demo", "a/b.c", "-s", root])
        assert result.exit_code == 0
        assert "why here?" in result.output
        assert "alice" in result.output

        result = runner.invoke(cli, ["rm", "demo", "a/b.c", "10", "-s", root])
        assert result.exit_code == 0
        assert "Deleted" in result.output
        assert AnnotationStore(root).read("demo", "a/b.c") == []

    def test_show_json(self, runner: CliRunner, storage_root: Path) -> None:
        AnnotationStore(storage_root).save("demo", "a.c", 3, "alice", "note")
        result = runner.invoke(cli, ["show", "demo", "a.c", "--json", "-s", str(storage_root)])
        assert result.exit_code == 0
        assert '"author": "alice"' in result.output

    def test_add_with_source_file(
        self, runner: CliRunner, storage_root: Path, tmp_path: Path
    ) -> None:
        source = tmp_path / "main.c"
        source.write_text("\n".join(f"line {i}" for i in range(1, 21)) + "\n", encoding="utf-8")
        result = runner.invoke(
            cli,
            ["add", "demo", "main.c", "10", "note", "-a", "alice", "--source", str(source), "-s", str(storage_root)],
        )
        assert result.exit_code == 0, result.output
        annotation_file = AnnotationStore(storage_root).load("demo", "main.c")
        [annotation] = annotation_file.annotations
        assert annotation.context == tuple(f"line {i}" for i in range(7, 14))
        assert annotation_file.snapshot is not None

    def test_add_rejects_traversal(self, runner: CliRunner, storage_root: Path) -> None:
        result = runner.invoke(
            cli, ["add", "demo", "../x.c", "1", "note", "-a", "alice", "-s", str(storage_root)]
        )
        assert result.exit_code == 1

    def test_rm_missing(self, runner: CliRunner, storage_root: Path) -> None:
        result = runner.invoke(cli, ["rm", "demo", "a.c", "1", "-s", str(storage_root)])
        assert result.exit_code == 0
        assert "No annotation" in result.output

    def test_ls(self, runner: CliRunner, storage_root: Path) -> None:
        store = AnnotationStore(storage_root)
        store.save("demo", "a.c", 1, "alice", "first\nsecond line")
        store.save("demo", "z/y.c", 2, "bob", "other")
        result = runner.invoke(cli, ["ls", "demo", "-s", str(storage_root)])
        assert result.exit_code == 0
        assert "a.c" in result.output
        assert "z/y.c" in result.output
        assert "2 annotation(s)" in result.output

    def test_storage_from_environment(
        self, runner: CliRunner, storage_root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("LINENOTE_STORAGE_PATH", str(storage_root))
        result = runner.invoke(cli, ["ls", "demo"])
        assert result.exit_code == 0
        assert "No annotations" in result.output

    def test_missing_storage(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["ls", "demo"])
        assert result.exit_code == 1

    def test_relative_storage_is_config_error(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["ls", "demo", "-s", "relative/notes"])
        assert result.exit_code == 1


class TestEditors:
    def test_editors(self, runner: CliRunner, storage_root: Path) -> None:
        EditLockRegistry(storage_root).start_editing("bob", "a.c", 4)
        result = runner.invoke(cli, ["editors", "-s", str(storage_root)])
        assert result.exit_code == 0
        assert "bob" in result.output

    def test_nobody(self, runner: CliRunner, storage_root: Path) -> None:
        result = runner.invoke(cli, ["editors", "-s", str(storage_root)])
        assert "Nobody" in result.output


class TestPathCommands:
    def test_encode(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["encode", "my_proj", "src/a.c"])
        assert result.output.strip() == "my_~proj__src__a.c.yaml"

    def test_decode(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["decode", "my_~proj__src__a.c.yaml"])
        assert result.output.strip() == "my_proj\tsrc/a.c"

    def test_encode_rejects_traversal(self, runner: CliRunner) -> None:
        assert runner.invoke(cli, ["encode", "demo", "../etc"]).exit_code == 1

    def test_decode_rejects_garbage(self, runner: CliRunner) -> None:
        assert runner.invoke(cli, ["decode", "hello.txt"]).exit_code == 1


class TestSchemaCommand:
    def test_schema_to_file(self, runner: CliRunner, tmp_path: Path) -> None:
        output = tmp_path / "save.json"
        result = runner.invoke(cli, ["schema", "save", "-o", str(output)])
        assert result.exit_code == 0
        assert json.loads(output.read_text(encoding="utf-8"))["request"]["properties"]["action"] == {
            "const": "save"
        }

    def test_schema_unknown_action(self, runner: CliRunner) -> None:
        assert runner.invoke(cli, ["schema", "nope"]).exit_code == 1
