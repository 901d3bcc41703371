"""Allow ``python -m linenote``."""
from __future__ import annotations

from linenote.cli.main import cli

if __name__ == "__main__":
    cli()
