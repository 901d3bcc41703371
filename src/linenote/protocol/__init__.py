"""Protocol module.

Exports the action schemas, the request/response validators and the
frame codec used on the host channel.
"""
from __future__ import annotations

from linenote.protocol.framing import (
    EndOfStream,
    FrameTooLarge,
    decode_message,
    encode_message,
    read_frame,
    write_frame,
)
from linenote.protocol.schema import (
    ACTIONS,
    SCHEMA_VERSION,
    SUPPORTED_VERSIONS,
    ActionSchema,
    FieldSpec,
    FieldType,
    to_json_schema,
)
from linenote.protocol.validator import (
    Request,
    RequestValidator,
    ResponseValidator,
    Violation,
    validate_request,
)

__all__ = [
    "ACTIONS",
    "SCHEMA_VERSION",
    "SUPPORTED_VERSIONS",
    "ActionSchema",
    "EndOfStream",
    "FieldSpec",
    "FieldType",
    "FrameTooLarge",
    "Request",
    "RequestValidator",
    "ResponseValidator",
    "Violation",
    "decode_message",
    "encode_message",
    "read_frame",
    "to_json_schema",
    "validate_request",
    "write_frame",
]
