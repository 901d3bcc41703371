"""Shared test fixtures for linenote.

Fixtures defined here are available to all tests in the suite without
needing an explicit import. Add project-wide fixtures here; keep
domain-specific fixtures close to the tests that use them.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest


class FakeClock:
    """A settable UTC clock for TTL tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 10, 18, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture()
def package_name() -> str:
    """Return the importable package name for assertions."""
    return "linenote"


@pytest.fixture()
def expected_version() -> str:
    """Return the current expected version string.

    Update this fixture when cutting a release so that the version
    test immediately catches stale ``__version__`` values.
    """
    return "0.1.0"


@pytest.fixture()
def storage_root(tmp_path: Path) -> Path:
    """Return an existing, empty storage root directory."""
    root = tmp_path / "notes"
    root.mkdir()
    return root


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's own config file and LINENOTE_* variables out of tests."""
    for name in (
        "LINENOTE_STORAGE_PATH",
        "LINENOTE_EDIT_TTL",
        "LINENOTE_FS_TIMEOUT",
        "LINENOTE_MAX_INBOUND",
        "LINENOTE_MAX_OUTBOUND",
        "LINENOTE_LOG_LEVEL",
        "LINENOTE_LOG_FILE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("LINENOTE_CONFIG", str(tmp_path / "no-such-config.yaml"))
