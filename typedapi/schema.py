"""
typedapi — Schema Validator
============================

What:  Immutable, composable descriptions of acceptable value shapes, with
       bidirectional conversion: decode (raw wire value → typed value) and
       encode (typed value → raw wire value).
Why:   One schema drives request decoding on the server, response encoding,
       the client's mirrored encode/decode steps, and the OpenAPI document.
How:   Decoding is delegated to Pydantic: every schema compiles (once, lazily)
       into a Pydantic type — structs become frozen models created with
       `create_model`, primitives become `PlainValidator` annotations — and
       Pydantic's field-level errors are converted into our ValidationError.
       Encoding walks the schema tree directly so that a value of the wrong
       type is rejected instead of being serialized best-effort.

Building blocks:
    String, NonEmptyTrimmedString, Number, Integer, Boolean       primitives
    NumberFromString, BooleanFromString                           coercions
    DateTimeUtc                                                   ISO 8601 ⇄ aware datetime
    Literal("asc", "desc")                                        enumerations
    Struct({...}), Array(s), UndefinedOr(s), Union(a, b, ...)     composition
    File, Files                                                   multipart file parts

Policies:
    - Struct decoding ignores unknown fields (forward compatible).
    - Union decoding is ordered: the first member that decodes wins.
    - Optional (UndefinedOr) fields decode a missing key or null to None,
      and encode None by omitting the key.

Example:
    User = Struct({
        "name": NonEmptyTrimmedString,
        "id": Number,
        "createdAt": DateTimeUtc,
    }, title="User")

    user = User.decode({"name": "James", "id": 123, "createdAt": "2024-01-15T12:00:00Z"})
    user.createdAt          # datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)
    User.encode(user)       # {"name": "James", "id": 123, "createdAt": "2024-01-15T12:00:00Z"}
"""

import keyword
import math
import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from functools import cached_property
from typing import Annotated, Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, PlainValidator, TypeAdapter, create_model
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticCustomError

from typedapi.exceptions import EncodingError, ValidationError
from typedapi.multipart import PersistedFile

# ── Encoding Kinds ────────────────────────────────────────────────────────
# What: How a schema's wire value travels in a request or response body
JSON = "json"
URL_PARAMS = "url_params"
MULTIPART = "multipart"
TEXT = "text"

DEFAULT_CONTENT_TYPES = {
    JSON: "application/json",
    URL_PARAMS: "application/x-www-form-urlencoded",
    MULTIPART: "multipart/form-data",
    TEXT: "text/plain",
}

_MISSING = object()


@dataclass(frozen=True)
class Encoding:
    """Body encoding attached to a payload or response schema."""

    kind: str = JSON
    content_type: str = DEFAULT_CONTENT_TYPES[JSON]


class StructValue(BaseModel):
    """
    Base class of every decoded struct.

    Fields are readable as attributes (identifier-safe names, e.g.
    `headers.x_api_key`) or by their wire name (`headers["X-API-Key"]`).
    Instances are frozen: decoded request inputs cannot be mutated by
    one handler and observed by another.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    def __getitem__(self, key: str) -> Any:
        for name, info in type(self).model_fields.items():
            if key == name or key == info.alias:
                return getattr(self, name)
        raise KeyError(key)

    def to_dict(self) -> Dict[str, Any]:
        """Typed field values keyed by wire name."""
        return {
            info.alias or name: getattr(self, name)
            for name, info in type(self).model_fields.items()
        }


def attribute_name(wire_name: str) -> str:
    """
    Map a wire field name onto a Python attribute name.

    Identifiers are kept as-is ("createdAt"); anything else is
    snake-cased ("X-API-Key" → "x_api_key"). "*" (the catch-all path
    value) becomes "wildcard".
    """
    if wire_name == "*":
        return "wildcard"
    name = wire_name
    if not name.isidentifier():
        name = re.sub(r"\W+", "_", name).strip("_").lower() or "value"
        if name[0].isdigit():
            name = f"f_{name}"
    name = name.lstrip("_") or "value"
    if keyword.iskeyword(name) or hasattr(StructValue, name):
        name = f"{name}_"
    return name


# ══════════════════════════════════════════════════════════════════════════
# Primitive Decoders (run inside Pydantic via PlainValidator)
# ══════════════════════════════════════════════════════════════════════════


def _describe(value: Any) -> str:
    text = repr(value)
    if len(text) > 40:
        text = text[:37] + "..."
    return f"{type(value).__name__} {text}"


def _fail(error_type: str, expected: str, value: Any) -> PydanticCustomError:
    return PydanticCustomError(
        error_type,
        "Expected {expected}, got {actual}",
        {"expected": expected, "actual": _describe(value)},
    )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _decode_string(value: Any) -> str:
    if not isinstance(value, str):
        raise _fail("string_type", "a string", value)
    return value


def _decode_non_empty_trimmed_string(value: Any) -> str:
    if not isinstance(value, str):
        raise _fail("string_type", "a string", value)
    if not value or value != value.strip():
        raise _fail("non_empty_trimmed_string", "a non-empty string without surrounding whitespace", value)
    return value


def _decode_number(value: Any) -> Any:
    if not _is_number(value):
        raise _fail("number_type", "a number", value)
    return value


def _decode_integer(value: Any) -> int:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if not isinstance(value, int) or isinstance(value, bool):
        raise _fail("integer_type", "an integer", value)
    return value


def _decode_boolean(value: Any) -> bool:
    if not isinstance(value, bool):
        raise _fail("boolean_type", "a boolean", value)
    return value


_INTEGER_TEXT = re.compile(r"[+-]?\d+")


def _decode_number_from_string(value: Any) -> Any:
    if not isinstance(value, str):
        raise _fail("number_from_string", "a string containing a number", value)
    text = value.strip()
    try:
        number = int(text) if _INTEGER_TEXT.fullmatch(text) else float(text)
    except ValueError:
        raise _fail("number_from_string", "a string containing a number", value) from None
    if isinstance(number, float) and not math.isfinite(number):
        raise _fail("number_from_string", "a string containing a finite number", value)
    return number


def _decode_boolean_from_string(value: Any) -> bool:
    if value == "true":
        return True
    if value == "false":
        return False
    raise _fail("boolean_from_string", "'true' or 'false'", value)


def _decode_date_time_utc(value: Any) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise _fail("date_time_utc", "an ISO 8601 date-time", value) from None
    if not isinstance(value, datetime):
        raise _fail("date_time_utc", "an ISO 8601 date-time", value)
    if value.tzinfo is None:
        raise _fail("date_time_utc", "a date-time with a UTC offset", value)
    return value.astimezone(timezone.utc)


def _decode_file(value: Any) -> PersistedFile:
    if not isinstance(value, PersistedFile):
        raise _fail("file_type", "an uploaded file", value)
    return value


_PRIMITIVE_DECODERS = {
    "string": _decode_string,
    "non_empty_trimmed_string": _decode_non_empty_trimmed_string,
    "number": _decode_number,
    "integer": _decode_integer,
    "boolean": _decode_boolean,
    "number_from_string": _decode_number_from_string,
    "boolean_from_string": _decode_boolean_from_string,
    "date_time_utc": _decode_date_time_utc,
    "file": _decode_file,
}

_LABELS = {
    "string": "String",
    "non_empty_trimmed_string": "NonEmptyTrimmedString",
    "number": "Number",
    "integer": "Integer",
    "boolean": "Boolean",
    "number_from_string": "NumberFromString",
    "boolean_from_string": "BooleanFromString",
    "date_time_utc": "DateTimeUtc",
    "file": "File",
}


def _format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _issues(exc: PydanticValidationError) -> List[Dict[str, Any]]:
    return [
        {
            "path": ".".join(str(part) for part in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]


# ══════════════════════════════════════════════════════════════════════════
# Schema
# ══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, eq=False)
class Schema:
    """
    An immutable shape description.

    Attributes:
        kind:        Primitive kind or one of struct/array/optional/union/literal
        fields:      Struct fields as (wire name, schema) pairs, in order
        members:     Array item, optional inner schema, or union members
        literals:    Allowed values of a literal schema
        title:       Name used in errors and documentation (e.g. "User")
        description: Free-text documentation
        encoding:    Body encoding when used as a payload or response
    """

    kind: str
    fields: Tuple[Tuple[str, "Schema"], ...] = ()
    members: Tuple["Schema", ...] = ()
    literals: Tuple[Any, ...] = ()
    title: Optional[str] = None
    description: Optional[str] = None
    encoding: Encoding = Encoding()

    def __repr__(self) -> str:
        return f"<Schema {self.label}>"

    # ── Builders ──────────────────────────────────────────────────────────

    def annotate(self, description: Optional[str] = None, title: Optional[str] = None) -> "Schema":
        """Return a copy carrying documentation metadata."""
        return replace(
            self,
            description=description if description is not None else self.description,
            title=title if title is not None else self.title,
        )

    def with_encoding(self, kind: str, content_type: Optional[str] = None) -> "Schema":
        """Return a copy that travels in a body with the given encoding."""
        if kind not in DEFAULT_CONTENT_TYPES:
            raise ValueError(f"Unknown encoding kind '{kind}'")
        if kind in (URL_PARAMS, MULTIPART) and self.kind != "struct":
            raise ValueError(f"Encoding '{kind}' requires a Struct schema")
        return replace(
            self,
            encoding=Encoding(kind=kind, content_type=content_type or DEFAULT_CONTENT_TYPES[kind]),
        )

    # ── Introspection ─────────────────────────────────────────────────────

    @property
    def label(self) -> str:
        if self.title:
            return self.title
        if self.kind in _LABELS:
            return _LABELS[self.kind]
        if self.kind == "array":
            return f"Array<{self.members[0].label}>"
        if self.kind == "optional":
            return f"UndefinedOr<{self.members[0].label}>"
        if self.kind == "union":
            return " | ".join(member.label for member in self.members)
        if self.kind == "literal":
            return " | ".join(repr(value) for value in self.literals)
        return "Struct"

    @property
    def is_optional(self) -> bool:
        return self.kind == "optional"

    @property
    def unwrapped(self) -> "Schema":
        """The schema inside an UndefinedOr, or self."""
        return self.members[0] if self.kind == "optional" else self

    @property
    def accepts_many(self) -> bool:
        """True when the value is a list (repeated query keys, form fields, files)."""
        return self.unwrapped.kind == "array"

    @property
    def is_file(self) -> bool:
        inner = self.unwrapped
        if inner.kind == "array":
            inner = inner.members[0]
        return inner.kind == "file"

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.fields)

    def field(self, name: str) -> "Schema":
        for field_name, schema in self.fields:
            if field_name == name:
                return schema
        raise KeyError(name)

    # ── Pydantic Compilation ──────────────────────────────────────────────

    @cached_property
    def python_type(self) -> Any:
        """The Pydantic-compatible type this schema decodes with (built once)."""
        if self.kind in _PRIMITIVE_DECODERS:
            return Annotated[Any, PlainValidator(_PRIMITIVE_DECODERS[self.kind])]
        if self.kind == "literal":
            return Annotated[Any, PlainValidator(self._decode_literal)]
        if self.kind == "array":
            return List[self.members[0].python_type]
        if self.kind == "optional":
            return Optional[self.members[0].python_type]
        if self.kind == "union":
            return Annotated[Any, PlainValidator(self._decode_union)]
        if self.kind == "struct":
            definitions = {}
            for wire_name, schema in self.fields:
                if schema.is_optional:
                    info = Field(default=None, alias=wire_name, description=schema.description)
                else:
                    info = Field(alias=wire_name, description=schema.description)
                definitions[attribute_name(wire_name)] = (schema.python_type, info)
            model_name = re.sub(r"\W", "", self.title or "") or "Struct"
            return create_model(model_name, __base__=StructValue, **definitions)
        raise ValueError(f"Unknown schema kind '{self.kind}'")

    @cached_property
    def _adapter(self) -> TypeAdapter:
        return TypeAdapter(self.python_type)

    def _decode_literal(self, value: Any) -> Any:
        if value in self.literals:
            return value
        raise _fail("literal_error", self.label, value)

    def _decode_union(self, value: Any) -> Any:
        for member in self.members:
            try:
                return member._adapter.validate_python(value)
            except PydanticValidationError:
                continue
        raise _fail("union_error", f"one of {self.label}", value)

    # ── Decode / Encode ───────────────────────────────────────────────────

    def decode(self, raw: Any) -> Any:
        """
        Decode a raw wire value into its typed value.

        Raises:
            ValidationError naming each failing field and what was expected.
        """
        try:
            return self._adapter.validate_python(raw)
        except PydanticValidationError as exc:
            issues = _issues(exc)
            first = issues[0]
            message = f"{first['path']}: {first['message']}" if first["path"] else first["message"]
            raise ValidationError(message=message, issues=issues) from None

    def encode(self, value: Any) -> Any:
        """
        Encode a typed value into its raw wire value.

        Raises:
            EncodingError when the value does not have the declared shape.
        """
        return self._encode(value, "")

    def _encode(self, value: Any, path: str) -> Any:
        kind = self.kind

        if kind == "optional":
            return None if value is None else self.members[0]._encode(value, path)

        if kind == "array":
            if not isinstance(value, (list, tuple)):
                raise self._mismatch(value, path)
            item = self.members[0]
            return [
                item._encode(element, f"{path}.{index}" if path else str(index))
                for index, element in enumerate(value)
            ]

        if kind == "union":
            for member in self.members:
                try:
                    return member._encode(value, path)
                except EncodingError:
                    continue
            raise self._mismatch(value, path)

        if kind == "struct":
            return self._encode_struct(value, path)

        if kind == "literal":
            if value not in self.literals:
                raise self._mismatch(value, path)
            return value

        # Primitives: the typed value must already satisfy the decoder
        if kind == "number_from_string":
            if not _is_number(value):
                raise self._mismatch(value, path)
            return _format_number(value)
        if kind == "boolean_from_string":
            if not isinstance(value, bool):
                raise self._mismatch(value, path)
            return "true" if value else "false"
        if kind == "date_time_utc":
            if not isinstance(value, datetime) or value.tzinfo is None:
                raise self._mismatch(value, path)
            return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

        try:
            return _PRIMITIVE_DECODERS[kind](value)
        except PydanticCustomError:
            raise self._mismatch(value, path) from None

    def _encode_struct(self, value: Any, path: str) -> Dict[str, Any]:
        if value is None or isinstance(value, (str, bytes, int, float, list, tuple)):
            raise self._mismatch(value, path)
        encoded: Dict[str, Any] = {}
        for wire_name, schema in self.fields:
            attr = attribute_name(wire_name)
            if isinstance(value, Mapping):
                field_value = value.get(wire_name, value.get(attr, _MISSING))
            else:
                field_value = getattr(value, attr, _MISSING)
            field_path = f"{path}.{wire_name}" if path else wire_name
            if field_value is _MISSING or field_value is None:
                if schema.is_optional:
                    continue
                raise EncodingError(
                    message=f"{field_path}: required field is missing",
                    path=field_path,
                )
            encoded[wire_name] = schema._encode(field_value, field_path)
        return encoded

    def _mismatch(self, value: Any, path: str) -> EncodingError:
        where = f"{path}: " if path else ""
        return EncodingError(
            message=f"{where}expected {self.label}, got {_describe(value)}",
            path=path,
        )

    # ── Documentation ─────────────────────────────────────────────────────

    def json_schema(self) -> Dict[str, Any]:
        """JSON Schema (OpenAPI 3.1 dialect) of the wire form."""
        kind = self.kind
        if kind == "optional":
            document = dict(self.members[0].json_schema())
        elif kind in ("string", "non_empty_trimmed_string"):
            document = {"type": "string"}
            if kind == "non_empty_trimmed_string":
                document["minLength"] = 1
        elif kind == "number":
            document = {"type": "number"}
        elif kind == "integer":
            document = {"type": "integer"}
        elif kind == "boolean":
            document = {"type": "boolean"}
        elif kind == "number_from_string":
            document = {"type": "string", "pattern": r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?\s*$"}
        elif kind == "boolean_from_string":
            document = {"type": "string", "enum": ["true", "false"]}
        elif kind == "date_time_utc":
            document = {"type": "string", "format": "date-time"}
        elif kind == "file":
            document = {"type": "string", "format": "binary"}
        elif kind == "literal":
            document = {"enum": list(self.literals)}
        elif kind == "array":
            document = {"type": "array", "items": self.members[0].json_schema()}
        elif kind == "union":
            document = {"anyOf": [member.json_schema() for member in self.members]}
        else:
            document = {
                "type": "object",
                "properties": {name: schema.json_schema() for name, schema in self.fields},
                "required": [name for name, schema in self.fields if not schema.is_optional],
                "additionalProperties": True,
            }
            if self.title:
                document["title"] = self.title
        if self.description:
            document["description"] = self.description
        return document


# ══════════════════════════════════════════════════════════════════════════
# Constructors
# ══════════════════════════════════════════════════════════════════════════

String = Schema("string")
NonEmptyTrimmedString = Schema("non_empty_trimmed_string")
Number = Schema("number")
Integer = Schema("integer")
Boolean = Schema("boolean")
NumberFromString = Schema("number_from_string")
BooleanFromString = Schema("boolean_from_string")
DateTimeUtc = Schema("date_time_utc")
File = Schema("file")


def Struct(fields: Mapping[str, Schema], title: Optional[str] = None) -> Schema:
    """
    A record of named fields.

    Fields wrapped in UndefinedOr may be absent; every other field is
    required. Raises ValueError when two wire names would share one
    attribute name (e.g. "x-id" and "x_id").
    """
    seen: Dict[str, str] = {}
    for wire_name in fields:
        attr = attribute_name(wire_name)
        if attr in seen:
            raise ValueError(
                f"Fields '{seen[attr]}' and '{wire_name}' both map to attribute '{attr}'"
            )
        seen[attr] = wire_name
    return Schema("struct", fields=tuple(fields.items()), title=title)


def Array(item: Schema) -> Schema:
    return Schema("array", members=(item,))


def UndefinedOr(inner: Schema) -> Schema:
    """Value may be absent (decoded as None); absent values are omitted when encoding."""
    return Schema("optional", members=(inner,))


def Union(*members: Schema) -> Schema:
    """Ordered union: decoding and encoding use the first member that accepts the value."""
    if not members:
        raise ValueError("Union requires at least one member")
    return Schema("union", members=tuple(members))


def Literal(*values: Any) -> Schema:
    if not values:
        raise ValueError("Literal requires at least one value")
    return Schema("literal", literals=tuple(values))


# One or more uploaded file parts under the same form field
Files = Array(File)


def Multipart(struct: Schema) -> Schema:
    """Mark a struct payload as multipart/form-data (file parts + text fields)."""
    return struct.with_encoding(MULTIPART)


def decode(schema: Schema, raw: Any) -> Any:
    return schema.decode(raw)


def encode(schema: Schema, value: Any) -> Any:
    return schema.encode(value)
