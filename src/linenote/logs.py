"""Logging setup for the host and the CLI.

stdout carries protocol frames while the host runs, so log records are
only ever written to stderr (through Rich) and, optionally, to a file.
"""
from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

_FILE_FORMAT = "%(asctime)s %(process)d %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "WARNING", log_file: str | None = None) -> logging.Logger:
    """Attach handlers to the ``linenote`` logger and return it.

    Calling this again replaces the handlers installed by the previous
    call instead of stacking new ones.  A log file that cannot be opened
    is reported on stderr and skipped.
    """
    logger = logging.getLogger("linenote")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(level)
    logger.propagate = False

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    if log_file:
        path = Path(log_file).expanduser()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(path, encoding="utf-8")
        except OSError as exc:
            # Keep going with stderr only.
            logger.warning("Cannot open log file %s: %s", path, exc)
            return logger
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

    return logger
