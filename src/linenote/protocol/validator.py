"""Request Validator: check raw messages against the action schemas.

``RequestValidator.check`` returns every ``Violation`` found in a raw
message; ``RequestValidator.parse`` returns a normalized ``Request`` or
raises the first violation as the matching ``LinenoteError``.  Nothing
in this module touches storage.

Checks run in a fixed order and stop early where later checks would be
meaningless:

1. The message must be a JSON object.
2. ``version`` (if present) must be a supported schema version.
3. ``action`` must be present and name a known action.
4. Every declared field is checked for presence and type.

Usage
-----
::

    from linenote.protocol import RequestValidator

    validator = RequestValidator()
    request = validator.parse({"action": "ping"})
    request.action      # 'ping'
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from linenote.errors import (
    ErrorKind,
    LinenoteError,
    MissingField,
    SchemaVersionMismatch,
    TypeMismatch,
    UnknownAction,
    ValidationError,
)
from linenote.protocol.schema import (
    ACTIONS,
    ENVELOPE_REQUEST,
    ENVELOPE_RESPONSE,
    FAILURE_RESPONSE,
    SCHEMA_VERSION,
    SUPPORTED_VERSIONS,
    ActionSchema,
    FieldSpec,
    FieldType,
)

_TYPE_NAMES = {
    FieldType.STRING: "a string",
    FieldType.INTEGER: "an integer",
    FieldType.BOOLEAN: "a boolean",
    FieldType.STRING_LIST: "a list of strings",
    FieldType.OBJECT_LIST: "a list of objects",
}


@dataclass(frozen=True)
class Violation:
    """A single schema violation.

    Parameters
    ----------
    kind:
        Error category reported to the caller.
    field:
        Dotted path of the offending field, e.g. ``"annotations[0].line"``.
    message:
        Human-readable description.
    """

    kind: ErrorKind
    field: str | None
    message: str

    def __str__(self) -> str:
        where = f" ({self.field})" if self.field else ""
        return f"[{self.kind.value}]{where} {self.message}"

    def to_error(self) -> LinenoteError:
        """Return the exception matching this violation's kind."""
        if self.kind is ErrorKind.MISSING_FIELD:
            return MissingField(self.message, field=self.field)
        if self.kind is ErrorKind.TYPE_MISMATCH:
            return TypeMismatch(self.message, field=self.field)
        return ValidationError(self.message, field=self.field)


@dataclass(frozen=True)
class Request:
    """A validated request with optional fields defaulted.

    Parameters
    ----------
    action:
        The action name.
    version:
        Schema version the caller spoke.
    params:
        Action fields, keyed by their JSON names.
    timeout_ms:
        Caller-supplied bound on filesystem work, if any.
    """

    action: str
    version: int = SCHEMA_VERSION
    params: Mapping[str, Any] = field(default_factory=dict)
    timeout_ms: int | None = None

    def __getitem__(self, name: str) -> Any:
        return self.params[name]

    def get(self, name: str, default: Any = None) -> Any:
        return self.params.get(name, default)


def _normalize_number(value: object) -> object:
    # JSON encoders may send 10.0 for an integer-valued number.
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def check_field(spec: FieldSpec, value: object, path: str) -> list[Violation]:
    """Check one present, non-null value against ``spec``."""
    expected = _TYPE_NAMES[spec.type]
    mismatch = Violation(
        ErrorKind.TYPE_MISMATCH,
        path,
        f"Field {path!r} must be {expected}, got {type(value).__name__}",
    )

    if spec.type is FieldType.STRING:
        if not isinstance(value, str):
            return [mismatch]
        if spec.non_empty and value == "":
            return [Violation(ErrorKind.MISSING_FIELD, path, f"Field {path!r} must not be empty")]
        return []

    if spec.type is FieldType.INTEGER:
        value = _normalize_number(value)
        if isinstance(value, bool) or not isinstance(value, int):
            return [mismatch]
        if spec.positive and value < 1:
            return [
                Violation(
                    ErrorKind.VALIDATION_ERROR,
                    path,
                    f"Field {path!r} must be a positive integer, got {value}",
                )
            ]
        return []

    if spec.type is FieldType.BOOLEAN:
        return [] if isinstance(value, bool) else [mismatch]

    if not isinstance(value, list):
        return [mismatch]
    violations: list[Violation] = []
    if spec.max_items is not None and len(value) > spec.max_items:
        violations.append(
            Violation(
                ErrorKind.VALIDATION_ERROR,
                path,
                f"Field {path!r} holds at most {spec.max_items} items, got {len(value)}",
            )
        )
    for index, item in enumerate(value):
        item_path = f"{path}[{index}]"
        if spec.type is FieldType.STRING_LIST:
            if not isinstance(item, str):
                violations.append(
                    Violation(
                        ErrorKind.TYPE_MISMATCH,
                        item_path,
                        f"Field {item_path!r} must be a string, got {type(item).__name__}",
                    )
                )
        elif not isinstance(item, dict):
            violations.append(
                Violation(
                    ErrorKind.TYPE_MISMATCH,
                    item_path,
                    f"Field {item_path!r} must be an object, got {type(item).__name__}",
                )
            )
        else:
            violations.extend(check_object(spec.items, item, prefix=f"{item_path}."))
    return violations


def check_object(
    specs: tuple[FieldSpec, ...], message: Mapping[str, object], prefix: str = ""
) -> list[Violation]:
    """Check every field in ``specs`` against ``message``."""
    violations: list[Violation] = []
    for spec in specs:
        path = prefix + spec.name
        value = message.get(spec.name)
        if value is None:
            if spec.required:
                violations.append(
                    Violation(ErrorKind.MISSING_FIELD, path, f"Missing required field {path!r}")
                )
            continue
        violations.extend(check_field(spec, value, path))
    return violations


def _check_version(message: Mapping[str, object]) -> Violation | None:
    raw = message.get("version")
    version = SCHEMA_VERSION if raw is None else _normalize_number(raw)
    if isinstance(version, bool) or version not in SUPPORTED_VERSIONS:
        error = SchemaVersionMismatch(version, SUPPORTED_VERSIONS)
        return Violation(ErrorKind.SCHEMA_VERSION_MISMATCH, "version", error.message)
    return None


class RequestValidator:
    """Validate and normalize inbound request messages.

    Parameters
    ----------
    actions:
        Action schemas to accept; defaults to all protocol actions.
    defaults:
        Values for absent fields, applied before required-field checks
        and only to fields the action declares (e.g. a host-wide
        ``storagePath``).
    """

    def __init__(
        self,
        actions: Mapping[str, ActionSchema] | None = None,
        defaults: Mapping[str, object] | None = None,
    ) -> None:
        self._actions = dict(actions if actions is not None else ACTIONS)
        self._defaults = dict(defaults or {})

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(self._actions)

    def _with_defaults(self, schema: ActionSchema, message: Mapping[str, object]) -> dict[str, object]:
        filled = dict(message)
        for name, value in self._defaults.items():
            if schema.request_field(name) is not None and filled.get(name) in (None, ""):
                filled[name] = value
        return filled

    def check(self, message: object) -> list[Violation]:
        """Return all violations in ``message``; empty means valid."""
        if not isinstance(message, dict):
            return [
                Violation(
                    ErrorKind.VALIDATION_ERROR,
                    None,
                    f"Request must be a JSON object, got {type(message).__name__}",
                )
            ]

        version_violation = _check_version(message)
        if version_violation is not None:
            return [version_violation]

        envelope = check_object(
            tuple(s for s in ENVELOPE_REQUEST if s.name != "version"), message
        )
        if envelope:
            return envelope

        action = message["action"]
        schema = self._actions.get(action)  # type: ignore[arg-type]
        if schema is None:
            return [Violation(ErrorKind.UNKNOWN_ACTION, "action", UnknownAction(str(action)).message)]

        return check_object(schema.request, self._with_defaults(schema, message))

    def parse(self, message: object) -> Request:
        """Validate ``message`` and return the normalized ``Request``.

        Raises
        ------
        SchemaVersionMismatch
            If ``version`` is not supported.
        UnknownAction
            If ``action`` is not served.
        ValidationError
            (or its subclasses ``MissingField`` / ``TypeMismatch``) for
            any other violation.
        """
        violations = self.check(message)
        if violations:
            first = violations[0]
            if first.kind is ErrorKind.SCHEMA_VERSION_MISMATCH:
                raise SchemaVersionMismatch(
                    _normalize_number(message.get("version")),  # type: ignore[union-attr]
                    SUPPORTED_VERSIONS,
                )
            if first.kind is ErrorKind.UNKNOWN_ACTION:
                raise UnknownAction(str(message["action"]))  # type: ignore[index]
            raise first.to_error()

        assert isinstance(message, dict)
        schema = self._actions[message["action"]]
        filled = self._with_defaults(schema, message)
        params: dict[str, object] = {}
        for spec in schema.request:
            value = filled.get(spec.name)
            if value is None:
                if isinstance(spec.default, tuple):
                    value = list(spec.default)
                else:
                    value = spec.default
            else:
                value = _normalize_number(value) if spec.type is FieldType.INTEGER else value
            if value is not None:
                params[spec.name] = value

        timeout = message.get("timeoutMs")
        return Request(
            action=schema.action,
            version=int(_normalize_number(message.get("version") or SCHEMA_VERSION)),  # type: ignore[arg-type]
            params=MappingProxyType(params),
            timeout_ms=int(_normalize_number(timeout)) if timeout is not None else None,  # type: ignore[arg-type]
        )


class ResponseValidator:
    """Check outbound responses before they are framed."""

    def __init__(self, actions: Mapping[str, ActionSchema] | None = None) -> None:
        self._actions = dict(actions if actions is not None else ACTIONS)

    def check(self, action: str | None, response: object) -> list[Violation]:
        """Return all violations in ``response`` for ``action``.

        ``action`` may be None (or unknown) for failures produced before
        the request could be understood; only the envelope and failure
        fields are checked then.
        """
        if not isinstance(response, dict):
            return [
                Violation(
                    ErrorKind.INTERNAL_ERROR,
                    None,
                    f"Response must be an object, got {type(response).__name__}",
                )
            ]
        violations = check_object(ENVELOPE_RESPONSE, response)
        if violations:
            return violations
        if response.get("version") != SCHEMA_VERSION:
            return [
                Violation(ErrorKind.SCHEMA_VERSION_MISMATCH, "version", "Response version mismatch")
            ]
        if response["success"] is False:
            return check_object(FAILURE_RESPONSE, response)
        schema = self._actions.get(action) if action else None
        if schema is None:
            return [
                Violation(
                    ErrorKind.UNKNOWN_ACTION,
                    "action",
                    f"Successful response for unknown action {action!r}",
                )
            ]
        return check_object(schema.response, response)


def validate_request(message: object) -> Request:
    """Convenience function: parse ``message`` with the default schemas."""
    return RequestValidator().parse(message)
