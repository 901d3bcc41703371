"""CLI entry point for linenote.

Invoked as::

    linenote [OPTIONS] COMMAND [ARGS]...

or, during development::

    python -m linenote

Commands
--------
serve       Run the host loop on stdin/stdout
show        Print the annotations of one file
add         Save an annotation
rm          Delete an annotation
ls          List every annotated line in a project
editors     Show who is currently composing annotations
encode      Print the storage file name for a project path
decode      Print the project path behind a storage file name
schema      Export the JSON Schema of one host action
version     Show version information
"""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING, NoReturn

import click
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

if TYPE_CHECKING:
    from linenote.config import HostConfig
    from linenote.errors import LinenoteError

console = Console()
err_console = Console(stderr=True)


def _fail(exc: "LinenoteError") -> NoReturn:
    err_console.print(f"[red]{exc.kind.value}:[/red] {exc.message}")
    sys.exit(1)


def _config(config_file: str | None, storage: str | None) -> "HostConfig":
    """Resolve the host configuration, exiting on an unusable value."""
    from linenote.config import ConfigError, load_config

    try:
        return load_config(
            Path(config_file) if config_file else None,
            overrides={"storage_path": storage},
        )
    except ConfigError as exc:
        err_console.print(f"[red]Config error:[/red] {exc}")
        sys.exit(1)


def _storage_path(config: "HostConfig") -> str:
    if not config.storage_path:
        err_console.print(
            "[red]Error:[/red] No storage path. Pass --storage or set LINENOTE_STORAGE_PATH."
        )
        sys.exit(1)
    return config.storage_path


storage_option = click.option(
    "--storage",
    "-s",
    default=None,
    help="Storage root (defaults to the configured storage_path)",
)
config_option = click.option(
    "--config",
    "config_file",
    default=None,
    type=click.Path(dir_okay=False),
    help="Config file (defaults to $LINENOTE_CONFIG or ~/.config/linenote/config.yaml)",
)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="linenote")
def cli() -> None:
    """Per-line source annotations stored on a shared directory."""


# ---------------------------------------------------------------------------
# version command
# ---------------------------------------------------------------------------


@cli.command(name="version")
def version_command() -> None:
    """Show detailed version information."""
    from linenote import __version__
    from linenote.protocol.schema import SUPPORTED_VERSIONS

    table = Table(show_header=False, box=None)
    table.add_row("[bold]linenote[/bold]", f"v{__version__}")
    table.add_row("Protocol", ", ".join(f"v{v}" for v in SUPPORTED_VERSIONS))
    table.add_row("Python", f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}")
    table.add_row("Platform", sys.platform)
    console.print(table)


# ---------------------------------------------------------------------------
# serve command
# ---------------------------------------------------------------------------


@cli.command(name="serve")
@storage_option
@config_option
@click.option("--edit-ttl", type=float, default=None, help="Seconds an editing marker stays visible")
@click.option("--fs-timeout", type=float, default=None, help="Seconds allowed for filesystem work per request")
@click.option("--log-level", default=None, help="Override the configured log level")
@click.option("--log-file", default=None, help="Also write the log to this file")
def serve_command(
    storage: str | None,
    config_file: str | None,
    edit_ttl: float | None,
    fs_timeout: float | None,
    log_level: str | None,
    log_file: str | None,
) -> None:
    """Serve framed requests on stdin/stdout until the caller disconnects."""
    from linenote.config import ConfigError, load_config
    from linenote.host.channel import install_signal_handlers, run
    from linenote.logs import configure_logging

    try:
        config = load_config(
            Path(config_file) if config_file else None,
            overrides={
                "storage_path": storage,
                "edit_ttl_seconds": edit_ttl,
                "fs_timeout_seconds": fs_timeout,
                "log_level": log_level,
                "log_file": log_file,
            },
        )
    except ConfigError as exc:
        err_console.print(f"[red]Config error:[/red] {exc}")
        sys.exit(1)
    configure_logging(config.log_level, config.log_file)
    install_signal_handlers()
    run(config)


# ---------------------------------------------------------------------------
# show command
# ---------------------------------------------------------------------------


@cli.command(name="show")
@click.argument("project")
@click.argument("file_path")
@storage_option
@config_option
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the wire form")
def show_command(
    project: str, file_path: str, storage: str | None, config_file: str | None, as_json: bool
) -> None:
    """Print the annotations of FILE_PATH in PROJECT."""
    from linenote.errors import LinenoteError
    from linenote.store import AnnotationStore

    root = _storage_path(_config(config_file, storage))
    try:
        annotation_file = AnnotationStore(root).load(project, file_path)
    except LinenoteError as exc:
        _fail(exc)

    if as_json:
        text = json.dumps([a.to_wire() for a in annotation_file.annotations], indent=2)
        console.print(Syntax(text, "json"))
        return
    if annotation_file.is_empty:
        console.print(f"[dim]No annotations for {project}/{file_path}[/dim]")
        return

    table = Table(title=f"{project}/{file_path}", show_lines=True)
    table.add_column("Line", style="bold", justify="right")
    table.add_column("Author")
    table.add_column("Saved", min_width=20)
    table.add_column("Text")
    for annotation in annotation_file.annotations:
        table.add_row(str(annotation.line), annotation.author, annotation.timestamp, annotation.text)
    console.print(table)
    if annotation_file.snapshot is not None:
        console.print(f"[dim]source snapshot {annotation_file.snapshot.hash}[/dim]")


# ---------------------------------------------------------------------------
# add / rm commands
# ---------------------------------------------------------------------------


@cli.command(name="add")
@click.argument("project")
@click.argument("file_path")
@click.argument("line", type=click.IntRange(min=1))
@click.argument("text")
@click.option("--author", "-a", required=True, help="Name recorded with the annotation")
@click.option(
    "--source",
    "source_file",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="Local copy of the file; supplies context lines and the source snapshot",
)
@storage_option
@config_option
def add_command(
    project: str,
    file_path: str,
    line: int,
    text: str,
    author: str,
    source_file: str | None,
    storage: str | None,
    config_file: str | None,
) -> None:
    """Save TEXT as the annotation on LINE of FILE_PATH in PROJECT."""
    from linenote.errors import LinenoteError
    from linenote.store import MAX_CONTEXT_LINES, AnnotationStore

    root = _storage_path(_config(config_file, storage))
    source = None
    context: list[str] = []
    if source_file:
        source = Path(source_file).read_text(encoding="utf-8")
        lines = source.splitlines()
        half = MAX_CONTEXT_LINES // 2
        start = max(line - 1 - half, 0)
        context = lines[start : start + MAX_CONTEXT_LINES]

    try:
        annotation = AnnotationStore(root).save(
            project, file_path, line, author, text, context=context, source=source
        )
    except LinenoteError as exc:
        _fail(exc)
    console.print(
        f"[green]Saved[/green] {project}/{file_path}:{annotation.line} at {annotation.timestamp}"
    )


@cli.command(name="rm")
@click.argument("project")
@click.argument("file_path")
@click.argument("line", type=click.IntRange(min=1))
@storage_option
@config_option
def rm_command(
    project: str, file_path: str, line: int, storage: str | None, config_file: str | None
) -> None:
    """Delete the annotation on LINE of FILE_PATH in PROJECT."""
    from linenote.errors import LinenoteError
    from linenote.store import AnnotationStore

    root = _storage_path(_config(config_file, storage))
    try:
        removed = AnnotationStore(root).delete(project, file_path, line)
    except LinenoteError as exc:
        _fail(exc)
    if removed:
        console.print(f"[green]Deleted[/green] {project}/{file_path}:{line}")
    else:
        console.print(f"[yellow]No annotation[/yellow] at {project}/{file_path}:{line}")


# ---------------------------------------------------------------------------
# ls command
# ---------------------------------------------------------------------------


@cli.command(name="ls")
@click.argument("project")
@storage_option
@config_option
def ls_command(project: str, storage: str | None, config_file: str | None) -> None:
    """List every annotated line in PROJECT."""
    from linenote.errors import LinenoteError
    from linenote.store import AnnotationStore

    root = _storage_path(_config(config_file, storage))
    try:
        results = AnnotationStore(root).list_annotated_files(project)
    except LinenoteError as exc:
        _fail(exc)
    if not results:
        console.print(f"[dim]No annotations in {project}[/dim]")
        return

    table = Table(title=f"Annotations: {project}")
    table.add_column("File")
    table.add_column("Line", justify="right")
    table.add_column("Author")
    table.add_column("Text")
    for result in results:
        first_line = result.annotation.text.splitlines()[0] if result.annotation.text else ""
        table.add_row(result.file_path, str(result.annotation.line), result.annotation.author, first_line)
    console.print(table)
    console.print(f"\n[bold]{len(results)}[/bold] annotation(s)")


# ---------------------------------------------------------------------------
# editors command
# ---------------------------------------------------------------------------


@cli.command(name="editors")
@storage_option
@config_option
def editors_command(storage: str | None, config_file: str | None) -> None:
    """Show the live editing markers in the storage root."""
    from datetime import timedelta

    from linenote.errors import LinenoteError
    from linenote.locks import EditLockRegistry

    config = _config(config_file, storage)
    root = _storage_path(config)
    try:
        editors = EditLockRegistry(root, ttl=timedelta(seconds=config.edit_ttl_seconds)).get_editing()
    except LinenoteError as exc:
        _fail(exc)
    if not editors:
        console.print("[dim]Nobody is editing[/dim]")
        return

    table = Table(title="Editing")
    table.add_column("User", style="bold")
    table.add_column("File")
    table.add_column("Line", justify="right")
    table.add_column("Since")
    for lock in editors:
        table.add_row(lock.user, lock.file_path, str(lock.line), lock.acquired_at)
    console.print(table)


# ---------------------------------------------------------------------------
# encode / decode commands
# ---------------------------------------------------------------------------


@cli.command(name="encode")
@click.argument("project")
@click.argument("file_path")
def encode_command(project: str, file_path: str) -> None:
    """Print the storage file name for FILE_PATH in PROJECT."""
    from linenote.errors import LinenoteError
    from linenote.paths import encode

    try:
        click.echo(encode(project, file_path))
    except LinenoteError as exc:
        _fail(exc)


@cli.command(name="decode")
@click.argument("file_name")
def decode_command(file_name: str) -> None:
    """Print the project and relative path encoded in FILE_NAME."""
    from linenote.errors import LinenoteError
    from linenote.paths import decode

    try:
        project, file_path = decode(file_name)
    except LinenoteError as exc:
        _fail(exc)
    click.echo(f"{project}\t{file_path}")


# ---------------------------------------------------------------------------
# schema command
# ---------------------------------------------------------------------------


@cli.command(name="schema")
@click.argument("action")
@click.option("--output", "-o", default=None, help="Output file path (defaults to stdout)")
def schema_command(action: str, output: str | None) -> None:
    """Export the request and response JSON Schema of ACTION."""
    from linenote.protocol.schema import ACTIONS, to_json_schema

    if action not in ACTIONS:
        err_console.print(
            f"[red]Error:[/red] Unknown action {action!r}; expected one of {', '.join(ACTIONS)}"
        )
        sys.exit(1)

    schema_text = json.dumps(to_json_schema(action), indent=2)
    if output:
        Path(output).write_text(schema_text, encoding="utf-8")
        console.print(f"[green]Schema written to[/green] {output}")
    else:
        console.print(Syntax(schema_text, "json", line_numbers=True))


if __name__ == "__main__":
    cli()
