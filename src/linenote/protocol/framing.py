"""Length-prefixed framing for the host byte stream.

Each frame is a 4-byte unsigned little-endian length followed by that
many bytes of UTF-8 encoded JSON, the layout browsers use for native
messaging hosts.  Frames may be far larger than one line of text.
"""
from __future__ import annotations

import json
import struct
from typing import BinaryIO

from linenote.errors import ValidationError

HEADER = struct.Struct("<I")
HEADER_SIZE = HEADER.size

_DRAIN_CHUNK = 64 * 1024


class EndOfStream(Exception):
    """Raised when the peer closed its end, cleanly or mid-frame."""

    def __init__(self, message: str = "stream closed", clean: bool = True) -> None:
        super().__init__(message)
        self.clean = clean


class FrameTooLarge(ValidationError):
    """Raised for a frame above the configured size limit.

    Inbound oversized frames have already been drained from the stream
    when this is raised, so the next frame can still be read.
    """

    def __init__(self, size: int, limit: int, direction: str = "Request") -> None:
        self.size = size
        self.limit = limit
        super().__init__(f"{direction} of {size} bytes exceeds the {limit}-byte limit")


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    chunks: list[bytes] = []
    remaining = size
    while remaining:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _drain(stream: BinaryIO, size: int) -> None:
    remaining = size
    while remaining:
        chunk = stream.read(min(remaining, _DRAIN_CHUNK))
        if not chunk:
            raise EndOfStream("stream closed inside an oversized frame", clean=False)
        remaining -= len(chunk)


def read_frame(stream: BinaryIO, max_size: int) -> bytes:
    """Read one frame body from ``stream``.

    Raises
    ------
    EndOfStream
        When the stream ends before or inside a frame.
    FrameTooLarge
        When the declared length exceeds ``max_size``; the body has been
        skipped.
    """
    header = _read_exact(stream, HEADER_SIZE)
    if not header:
        raise EndOfStream()
    if len(header) < HEADER_SIZE:
        raise EndOfStream("stream closed inside a frame header", clean=False)

    (length,) = HEADER.unpack(header)
    if length > max_size:
        _drain(stream, length)
        raise FrameTooLarge(length, max_size)

    body = _read_exact(stream, length)
    if len(body) < length:
        raise EndOfStream(
            f"stream closed after {len(body)} of {length} frame bytes", clean=False
        )
    return body


def write_frame(stream: BinaryIO, payload: bytes) -> None:
    """Write ``payload`` as one frame and flush."""
    stream.write(HEADER.pack(len(payload)) + payload)
    stream.flush()


def decode_message(body: bytes) -> object:
    """Parse a frame body as JSON.

    Raises
    ------
    ValidationError
        If the body is not UTF-8 JSON.
    """
    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError(f"Failed to parse request: {exc}") from exc


def encode_message(message: dict[str, object]) -> bytes:
    """Serialize ``message`` to compact UTF-8 JSON."""
    return json.dumps(message, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
