"""Path encoding module.

Exports the reversible ``encode`` / ``decode`` pair and ``StorageRoot``.
"""
from __future__ import annotations

from linenote.paths.encoder import (
    ESCAPE,
    MAX_NAME_BYTES,
    SEPARATOR,
    SUFFIX,
    StorageRoot,
    decode,
    encode,
    is_annotation_file_name,
    split_relative_path,
)

__all__ = [
    "ESCAPE",
    "MAX_NAME_BYTES",
    "SEPARATOR",
    "SUFFIX",
    "StorageRoot",
    "decode",
    "encode",
    "is_annotation_file_name",
    "split_relative_path",
]
