"""Versioned message schemas for the host protocol.

Each action has an ``ActionSchema`` listing the fields its request may
carry and the fields a successful response must carry.  The schemas are
plain data so the validator, the documentation exporter
(``to_json_schema``) and the tests all read the same source of truth.

Version history
---------------
1   Initial protocol: ping, read, save, delete, listAnnotatedFiles,
    startEditing, stopEditing, getEditing.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto

from linenote.store.models import MAX_CONTEXT_LINES

SCHEMA_VERSION = 1
SUPPORTED_VERSIONS: tuple[int, ...] = (1,)


class FieldType(Enum):
    """JSON value shapes understood by the validator."""

    STRING = auto()
    INTEGER = auto()
    BOOLEAN = auto()
    STRING_LIST = auto()
    OBJECT_LIST = auto()


@dataclass(frozen=True)
class FieldSpec:
    """Declaration of one message field.

    Parameters
    ----------
    name:
        JSON key.
    type:
        Expected value shape.
    required:
        Absent (or null) required fields are a ``MissingField`` error.
    non_empty:
        For strings: an empty string counts as missing.
    positive:
        For integers: values below 1 are rejected.
    max_items:
        For lists: upper bound on the number of items.
    default:
        Value used when an optional field is absent.
    items:
        For ``OBJECT_LIST``: the fields of each element.
    """

    name: str
    type: FieldType
    required: bool = True
    non_empty: bool = False
    positive: bool = False
    max_items: int | None = None
    default: object = None
    items: tuple["FieldSpec", ...] = field(default=())


@dataclass(frozen=True)
class ActionSchema:
    """Request and success-response layout for one action."""

    action: str
    request: tuple[FieldSpec, ...]
    response: tuple[FieldSpec, ...] = field(default=())
    touches_storage: bool = True

    def request_field(self, name: str) -> FieldSpec | None:
        for spec in self.request:
            if spec.name == name:
                return spec
        return None


def _str(name: str, required: bool = True) -> FieldSpec:
    return FieldSpec(name, FieldType.STRING, required=required, non_empty=required)


def _line(name: str = "line") -> FieldSpec:
    return FieldSpec(name, FieldType.INTEGER, positive=True)


STORAGE_PATH = _str("storagePath")

# Fields every request and every response may carry.
ENVELOPE_REQUEST: tuple[FieldSpec, ...] = (
    FieldSpec("action", FieldType.STRING, non_empty=True),
    FieldSpec("version", FieldType.INTEGER, required=False, default=SCHEMA_VERSION),
    FieldSpec("timeoutMs", FieldType.INTEGER, required=False, positive=True),
)
ENVELOPE_RESPONSE: tuple[FieldSpec, ...] = (
    FieldSpec("version", FieldType.INTEGER),
    FieldSpec("success", FieldType.BOOLEAN),
)
FAILURE_RESPONSE: tuple[FieldSpec, ...] = (
    FieldSpec("error", FieldType.STRING, non_empty=True),
    FieldSpec("errorKind", FieldType.STRING, non_empty=True),
    FieldSpec("errorField", FieldType.STRING, required=False),
)

ANNOTATION_ITEM: tuple[FieldSpec, ...] = (
    _line(),
    _str("author"),
    _str("timestamp"),
    _str("text"),
    FieldSpec("context", FieldType.STRING_LIST, max_items=MAX_CONTEXT_LINES),
)
ANNOTATED_LINE_ITEM: tuple[FieldSpec, ...] = (*ANNOTATION_ITEM, _str("filePath"))
EDITOR_ITEM: tuple[FieldSpec, ...] = (
    _str("user"),
    _str("filePath"),
    _line(),
    _str("acquiredAt"),
)

ACTIONS: dict[str, ActionSchema] = {
    schema.action: schema
    for schema in (
        ActionSchema(
            "ping",
            request=(_str("storagePath", required=False),),
            touches_storage=False,
        ),
        ActionSchema(
            "read",
            request=(STORAGE_PATH, _str("project"), _str("filePath")),
            response=(
                FieldSpec("annotations", FieldType.OBJECT_LIST, items=ANNOTATION_ITEM),
                FieldSpec("sourceHash", FieldType.STRING, required=False),
            ),
        ),
        ActionSchema(
            "save",
            request=(
                STORAGE_PATH,
                _str("project"),
                _str("filePath"),
                _line(),
                _str("author"),
                _str("text"),
                FieldSpec(
                    "context",
                    FieldType.STRING_LIST,
                    required=False,
                    max_items=MAX_CONTEXT_LINES,
                    default=(),
                ),
                FieldSpec("source", FieldType.STRING, required=False),
            ),
        ),
        ActionSchema(
            "delete",
            request=(STORAGE_PATH, _str("project"), _str("filePath"), _line()),
        ),
        ActionSchema(
            "listAnnotatedFiles",
            request=(STORAGE_PATH, _str("project")),
            response=(
                FieldSpec("annotations", FieldType.OBJECT_LIST, items=ANNOTATED_LINE_ITEM),
            ),
        ),
        ActionSchema(
            "startEditing",
            request=(STORAGE_PATH, _str("user"), _str("filePath"), _line()),
        ),
        ActionSchema(
            "stopEditing",
            request=(STORAGE_PATH, _str("user")),
        ),
        ActionSchema(
            "getEditing",
            request=(STORAGE_PATH,),
            response=(FieldSpec("editors", FieldType.OBJECT_LIST, items=EDITOR_ITEM),),
        ),
    )
}


# ---------------------------------------------------------------------------
# JSON Schema export
# ---------------------------------------------------------------------------

_JSON_TYPES = {
    FieldType.STRING: "string",
    FieldType.INTEGER: "integer",
    FieldType.BOOLEAN: "boolean",
    FieldType.STRING_LIST: "array",
    FieldType.OBJECT_LIST: "array",
}


def _field_schema(spec: FieldSpec) -> dict[str, object]:
    schema: dict[str, object] = {"type": _JSON_TYPES[spec.type]}
    if spec.type is FieldType.STRING and spec.non_empty:
        schema["minLength"] = 1
    if spec.type is FieldType.INTEGER and spec.positive:
        schema["minimum"] = 1
    if spec.type is FieldType.STRING_LIST:
        schema["items"] = {"type": "string"}
    if spec.type is FieldType.OBJECT_LIST:
        schema["items"] = _object_schema(spec.items)
    if spec.max_items is not None:
        schema["maxItems"] = spec.max_items
    return schema


def _object_schema(specs: tuple[FieldSpec, ...]) -> dict[str, object]:
    return {
        "type": "object",
        "properties": {spec.name: _field_schema(spec) for spec in specs},
        "required": [spec.name for spec in specs if spec.required],
    }


def to_json_schema(action: str) -> dict[str, object]:
    """Return JSON Schema (draft 2020-12) documents for ``action``.

    The result maps ``"request"`` and ``"response"`` to schemas; the
    response schema covers the success shape only.

    Raises
    ------
    KeyError
        If ``action`` is not a known action.
    """
    schema = ACTIONS[action]
    request = _object_schema((*ENVELOPE_REQUEST, *schema.request))
    request["properties"]["action"] = {"const": action}  # type: ignore[index]
    response = _object_schema((*ENVELOPE_RESPONSE, *schema.response))
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "title": f"linenote {action} v{SCHEMA_VERSION}",
        "request": request,
        "response": response,
    }
