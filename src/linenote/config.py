"""Host configuration.

``HostConfig`` values are resolved in this order, later sources
overriding earlier ones:

1. Built-in defaults
2. YAML config file (``$LINENOTE_CONFIG`` or ``~/.config/linenote/config.yaml``)
3. ``LINENOTE_*`` environment variables
4. Explicit overrides (command-line options)

Example config file::

    storage_path: /mnt/team/notes
    edit_ttl_seconds: 300
    fs_timeout_seconds: 10
    log_level: INFO
    log_file: ~/.cache/linenote/host.log
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG_PATH = Path("~/.config/linenote/config.yaml")

_ENV_PREFIX = "LINENOTE_"
_ENV_NAMES: dict[str, str] = {
    "storage_path": "STORAGE_PATH",
    "edit_ttl_seconds": "EDIT_TTL",
    "fs_timeout_seconds": "FS_TIMEOUT",
    "max_inbound_bytes": "MAX_INBOUND",
    "max_outbound_bytes": "MAX_OUTBOUND",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
}
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    """Raised when a configuration value cannot be used."""

    def __init__(self, key: str, value: object, reason: str, source: str) -> None:
        self.key = key
        self.value = value
        self.source = source
        super().__init__(f"Invalid {key}={value!r} from {source}: {reason}")


@dataclass(frozen=True)
class HostConfig:
    """Settings for one host process.

    Parameters
    ----------
    storage_path:
        Default storage root for requests that omit ``storagePath``.
    edit_ttl_seconds:
        Lifetime of an editing marker without refresh.
    fs_timeout_seconds:
        Upper bound on filesystem work per request; 0 disables it.
    max_inbound_bytes:
        Largest request frame accepted.
    max_outbound_bytes:
        Largest response frame sent; browsers reject frames above 1 MiB.
    log_level:
        Name of the stdlib logging level.
    log_file:
        Optional file receiving a copy of the log.
    """

    storage_path: str | None = None
    edit_ttl_seconds: float = 300.0
    fs_timeout_seconds: float = 10.0
    max_inbound_bytes: int = 64 * 1024 * 1024
    max_outbound_bytes: int = 1024 * 1024
    log_level: str = "WARNING"
    log_file: str | None = field(default=None)

    def merged(self, values: Mapping[str, Any], source: str) -> "HostConfig":
        """Return a copy with ``values`` applied after validation.

        Unknown keys and None values are ignored.
        """
        known = {f.name for f in fields(self)}
        changes: dict[str, Any] = {}
        for key, value in values.items():
            if key not in known or value is None:
                continue
            changes[key] = _coerce(key, value, source)
        return replace(self, **changes)


def _coerce(key: str, value: object, source: str) -> object:
    if key in ("storage_path", "log_file"):
        text = os.path.expanduser(str(value))
        if key == "storage_path" and not os.path.isabs(text):
            raise ConfigError(key, value, "must be an absolute path", source)
        return text
    if key == "log_level":
        level = str(value).upper()
        if level not in _LOG_LEVELS:
            raise ConfigError(key, value, f"expected one of {', '.join(_LOG_LEVELS)}", source)
        return level
    if key in ("edit_ttl_seconds", "fs_timeout_seconds"):
        try:
            number = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            raise ConfigError(key, value, "expected a number of seconds", source) from None
        if number < 0 or (key == "edit_ttl_seconds" and number == 0):
            raise ConfigError(key, value, "must be positive", source)
        return number
    try:
        size = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        raise ConfigError(key, value, "expected a byte count", source) from None
    if size <= 0:
        raise ConfigError(key, value, "must be positive", source)
    return size


def read_config_file(path: Path) -> dict[str, Any]:
    """Load a YAML config file; a missing file yields an empty mapping."""
    try:
        text = path.expanduser().read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError("config", str(path), f"cannot be read: {exc}", str(path)) from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError("config", str(path), f"not valid YAML: {exc}", str(path)) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("config", str(path), "expected a mapping", str(path))
    return data


def env_values(environ: Mapping[str, str]) -> dict[str, str]:
    """Extract ``HostConfig`` fields from ``LINENOTE_*`` variables."""
    values: dict[str, str] = {}
    for key, suffix in _ENV_NAMES.items():
        raw = environ.get(_ENV_PREFIX + suffix)
        if raw:
            values[key] = raw
    return values


def load_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> HostConfig:
    """Resolve a ``HostConfig`` from file, environment and overrides.

    Parameters
    ----------
    path:
        Config file to read; defaults to ``$LINENOTE_CONFIG`` or
        ``DEFAULT_CONFIG_PATH``.
    environ:
        Environment mapping; defaults to ``os.environ``.
    overrides:
        Highest-priority values, typically from command-line options.

    Raises
    ------
    ConfigError
        If any source supplies an unusable value.
    """
    environ = os.environ if environ is None else environ
    if path is None:
        configured = environ.get(_ENV_PREFIX + "CONFIG")
        path = Path(configured) if configured else DEFAULT_CONFIG_PATH

    config = HostConfig()
    config = config.merged(read_config_file(path), str(path))
    config = config.merged(env_values(environ), "environment")
    if overrides:
        config = config.merged(overrides, "command line")
    return config
